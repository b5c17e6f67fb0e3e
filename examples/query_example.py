"""
Ask a question that the model answers with tools from every connected server.

Usage:
    ANTHROPIC_API_KEY=... python examples/query_example.py "Is 'Rocket Boots' a valid product name?"
"""

import asyncio
import sys

from conduit_mcp import ConduitApp
from conduit_mcp.config import MCPServerSettings, Settings, StdioTransportSettings
from conduit_mcp.utils.secrets import get_secret, load_env_files


async def main(question: str):
    load_env_files()

    settings = Settings(
        servers={
            "validator": MCPServerSettings(
                description="Product name validation",
                transport=StdioTransportSettings(
                    command=sys.executable,
                    args=["examples/validate_server.py"],
                ),
            ),
        },
        anthropic={"api_key": get_secret("ANTHROPIC_API_KEY")},
    )

    app = ConduitApp(name="query_example", settings=settings)

    async with app.run() as running_app:
        for outcome in running_app.connection_outcomes:
            print(f"{outcome.server_name}: {'connected' if outcome.success else outcome.error}")

        # Direct call, no model involved
        result = await running_app.dispatcher.call_tool(
            "validator", "validate", {"productName": "Rocket Boots"}
        )
        print(f"Direct call: {result.content[0].text}")

        if running_app.orchestrator.llm_provider is None:
            print("Set ANTHROPIC_API_KEY to try the LLM query.")
            return

        answer = await running_app.orchestrator.query(question)
        print(f"\nAnswer:\n{answer}")


if __name__ == "__main__":
    asyncio.run(main(" ".join(sys.argv[1:]) or "Is 'Rocket Boots' a valid product name?"))
