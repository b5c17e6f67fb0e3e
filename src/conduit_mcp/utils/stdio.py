"""
Custom implementation of stdio_client that handles stderr through rich console
and ties the child process lifetime to the connection.
"""

from contextlib import asynccontextmanager, suppress
import subprocess
from typing import Optional

import anyio
from anyio.abc import Process
from anyio.streams.text import TextReceiveStream
from mcp.client.stdio import StdioServerParameters, get_default_environment
from mcp.shared.message import SessionMessage
import mcp.types as types

from conduit_mcp.errors import ServerConnectionError
from conduit_mcp.utils.logging import get_logger

logger = get_logger(__name__)

# Seconds to wait for a server to exit on its own, then after SIGTERM
PROCESS_EXIT_TIMEOUT = 2.0


async def terminate_process(process: Process, label: str) -> None:
    """
    Close stdin, then escalate to terminate and kill until the process is reaped.
    """
    if process.returncode is None and process.stdin is not None:
        with suppress(anyio.ClosedResourceError, anyio.BrokenResourceError, OSError):
            await process.stdin.aclose()
        with anyio.move_on_after(PROCESS_EXIT_TIMEOUT):
            await process.wait()

    if process.returncode is None:
        logger.debug(f"{label}: terminating process {process.pid}")
        with suppress(ProcessLookupError):
            process.terminate()
        with anyio.move_on_after(PROCESS_EXIT_TIMEOUT):
            await process.wait()

    if process.returncode is None:
        logger.warning(f"{label}: killing process {process.pid}")
        with suppress(ProcessLookupError):
            process.kill()
        await process.wait()

    logger.debug(f"{label}: process {process.pid} exited with code {process.returncode}")


@asynccontextmanager
async def stdio_client_with_rich_stderr(server: StdioServerParameters, server_name: Optional[str] = None):
    """
    Modified version of stdio_client that captures stderr and routes it through rich console.

    The child process is terminated and reaped on every exit path of the context.

    Args:
        server: The server parameters for the stdio connection.
        server_name: Identifier used in log lines and errors.

    Yields:
        A tuple of (read_stream, write_stream) for communication with the server.

    Raises:
        ServerConnectionError: If the process cannot be spawned.
    """
    label = server_name or server.command

    read_stream_writer, read_stream = anyio.create_memory_object_stream(0)
    write_stream, write_stream_reader = anyio.create_memory_object_stream(0)

    try:
        process = await anyio.open_process(
            [server.command, *server.args],
            env=server.env if server.env is not None else get_default_environment(),
            stderr=subprocess.PIPE,
            cwd=server.cwd,
        )
    except OSError as exc:
        logger.error(f"{label}: Failed to open process '{server.command}': {exc}")
        # Make sure to close stream writers if process creation fails
        for stream in (read_stream_writer, read_stream, write_stream, write_stream_reader):
            await stream.aclose()
        raise ServerConnectionError(
            f"Failed to start '{server.command}': {exc}",
            server_name=server_name,
            details={"errno": exc.errno, "strerror": exc.strerror},
        ) from exc

    logger.debug(f"{label}: Started process '{server.command}' with PID: {process.pid}")

    async def stdout_reader():
        assert process.stdout, "Opened process is missing stdout"
        try:
            async with read_stream_writer:
                buffer = ""
                async for chunk in TextReceiveStream(
                    process.stdout,
                    encoding=server.encoding,
                    errors=server.encoding_error_handler,
                ):
                    lines = (buffer + chunk).split("\n")
                    buffer = lines.pop()

                    for line in lines:
                        if not line.strip():
                            continue
                        try:
                            message = types.JSONRPCMessage.model_validate_json(line)
                        except Exception as exc:
                            logger.warning(f"{label}: Malformed message from server: {line[:200]}")
                            await read_stream_writer.send(exc)
                            continue

                        await read_stream_writer.send(SessionMessage(message))
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            logger.debug(f"{label}: Stdout stream closed")

    async def stderr_reader():
        assert process.stderr, "Opened process is missing stderr"
        try:
            async for chunk in TextReceiveStream(
                process.stderr,
                encoding=server.encoding,
                errors=server.encoding_error_handler,
            ):
                for stderr_line in chunk.splitlines():
                    if not stderr_line.strip():
                        continue
                    if "[ERROR]" in stderr_line or "Error" in stderr_line:
                        logger.error(f"{label} STDERR: {stderr_line}")
                    else:
                        logger.debug(f"{label} STDERR: {stderr_line}")
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            logger.debug(f"{label}: Stderr stream closed")

    async def stdin_writer():
        assert process.stdin, "Opened process is missing stdin"
        try:
            async with write_stream_reader:
                async for session_message in write_stream_reader:
                    json = session_message.message.model_dump_json(by_alias=True, exclude_none=True)
                    await process.stdin.send(
                        (json + "\n").encode(
                            encoding=server.encoding,
                            errors=server.encoding_error_handler,
                        )
                    )
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            logger.debug(f"{label}: Stdin stream closed")

    async with anyio.create_task_group() as tg:
        tg.start_soon(stdout_reader)
        tg.start_soon(stdin_writer)
        tg.start_soon(stderr_reader)
        try:
            yield read_stream, write_stream
        finally:
            with anyio.CancelScope(shield=True):
                await terminate_process(process, label)
                await process.aclose()
                await read_stream.aclose()
                await write_stream.aclose()
            tg.cancel_scope.cancel()
