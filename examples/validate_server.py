"""
Product name validation server for trying out the client.

Run it through the client with the `validator` entry of mcp-config.example.yaml.
"""

import os
import re
import sys

from mcp.server.fastmcp import FastMCP


app = FastMCP("validate-server")

STRICT = os.environ.get("VALIDATOR_STRICT") == "1"
RESERVED_WORDS = {"test", "sample", "demo"}


@app.tool()
async def validate(productName: str) -> str:
    """
    Check a product name against the naming rules.

    Args:
        productName: The product name to check.

    Returns:
        "valid", or a description of the first broken rule.
    """
    print(f"Received validation request for: {productName}", file=sys.stderr)

    if not productName.strip():
        return "invalid: name is empty"
    if len(productName) > 40:
        return "invalid: name is longer than 40 characters"
    if not re.match(r"^[A-Za-z0-9][A-Za-z0-9 \-]*$", productName):
        return "invalid: only letters, digits, spaces and hyphens are allowed"
    if STRICT and productName.lower() in RESERVED_WORDS:
        return f"invalid: '{productName}' is a reserved word"
    return "valid"


@app.resource("rules://naming")
def naming_rules() -> str:
    """The product naming rules."""
    return (
        "1. Not empty\n"
        "2. At most 40 characters\n"
        "3. Letters, digits, spaces and hyphens only\n"
    )


@app.prompt()
def suggest_names(category: str) -> str:
    """Ask for product name suggestions in a category."""
    return f"Suggest five product names for a {category} product that follow rules://naming."


if __name__ == "__main__":
    app.run()
