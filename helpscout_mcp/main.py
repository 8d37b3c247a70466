"""CLI entry point for the Help Scout MCP server.

Usage:
    uv run python -m helpscout_mcp.main                     # stdio (desktop assistants)
    uv run python -m helpscout_mcp.main --transport http    # FastAPI + streamable HTTP
    uv run python -m helpscout_mcp.main --debug             # log every API call
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool = False) -> None:
    """Log to stderr: in stdio mode stdout carries the MCP protocol."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
        stream=sys.stderr,
    )

    if not debug:
        # Silence chatty HTTP loggers even if root is WARNING
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.getLogger("helpscout_mcp").setLevel(logging.DEBUG if debug else logging.INFO)


async def _serve_stdio() -> None:
    from helpscout_mcp.services.helpscout_client import get_helpscout_client
    from helpscout_mcp.tools.helpscout import mcp

    client = get_helpscout_client()
    if not await client.test_connection():
        logger.warning("Help Scout API is not reachable yet; tools will report errors")
    try:
        await mcp.run_stdio_async()
    finally:
        await client.close_pool()


def main():
    """Run the MCP server over the selected transport."""
    parser = argparse.ArgumentParser(description="Help Scout MCP server")
    parser.add_argument(
        "--transport", choices=("stdio", "http"), default="stdio",
        help="stdio for local assistants, http for the FastAPI server",
    )
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including HTTP requests",
    )
    args = parser.parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)

    if args.transport == "http":
        import uvicorn

        from helpscout_mcp.config import SERVER_HOST, SERVER_PORT
        from helpscout_mcp.server import app

        logger.info("Starting Help Scout MCP server on %s:%d", SERVER_HOST, SERVER_PORT)
        uvicorn.run(app, host=SERVER_HOST, port=SERVER_PORT)
        return

    try:
        asyncio.run(_serve_stdio())
    except KeyboardInterrupt:
        logger.info("Interrupted; shutting down")


if __name__ == "__main__":
    main()
