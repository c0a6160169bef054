"""
Main entry point for running the WispHub MCP server.

Commands:
- mcp: run the MCP server over stdio (MCP hosts) or streamable HTTP
- config: print the effective configuration (API key redacted)

Logs go to stderr; with the stdio transport stdout carries the protocol.
"""

import argparse
import logging
import os
import sys

# Add project root to path
project_root = os.path.dirname(os.path.abspath(__file__))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

logger = logging.getLogger("run_servers")


def run_mcp_server(transport: str = "stdio", host: str = "0.0.0.0", port: int = 8080):
    """Run the MCP server."""
    from src.mcp.mcp_server import run_server, run_http_server

    if transport == "stdio":
        logger.info("Starting MCP server with stdio transport")
        run_server()
    elif transport == "http":
        logger.info(f"Starting MCP server with HTTP transport at http://{host}:{port}/mcp")
        run_http_server(host=host, port=port)
    else:
        logger.error(f"Unknown transport: {transport}. Use 'stdio' or 'http'")
        sys.exit(1)


def show_config(env_file: str = None):
    """Print the effective configuration."""
    from dataclasses import asdict
    import json

    from src.wisphub.config import load_config

    config = load_config(env_file, validate=False)
    data = asdict(config)
    data["api_key"] = "[REDACTED]" if config.api_key else ""
    print(json.dumps(data, indent=2, ensure_ascii=False))


def main():
    """Main entry point with CLI argument parsing."""
    parser = argparse.ArgumentParser(
        description="Run the WispHub customer-care MCP server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run MCP server with stdio (for MCP clients like Claude Desktop)
  python run_servers.py mcp

  # Run MCP server with HTTP transport
  python run_servers.py mcp --transport http --port 8080

  # Show the configuration read from the environment / .env
  python run_servers.py config
"""
    )
    parser.add_argument("--log-level", default=None, help="Log level (default: WISPHUB_LOG_LEVEL or INFO)")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # MCP server command
    mcp_parser = subparsers.add_parser("mcp", help="Run the MCP server")
    mcp_parser.add_argument(
        "--transport",
        choices=["stdio", "http"],
        default="stdio",
        help="Transport type (default: stdio)"
    )
    mcp_parser.add_argument("--host", default="0.0.0.0", help="Host for HTTP transport")
    mcp_parser.add_argument("--port", type=int, default=8080, help="Port for HTTP transport")

    # Config command
    config_parser = subparsers.add_parser("config", help="Show the effective configuration")
    config_parser.add_argument("--env-file", default=None, help="Path to a .env file")

    args = parser.parse_args()

    from src.wisphub.logging_config import configure_logging
    configure_logging(args.log_level)

    if args.command == "mcp":
        try:
            run_mcp_server(transport=args.transport, host=args.host, port=args.port)
        except KeyboardInterrupt:
            logger.info("Shutting down server")
    elif args.command == "config":
        show_config(args.env_file)
    else:
        parser.print_help()
        print("\nNo command specified. Use one of: mcp, config")
        sys.exit(1)


if __name__ == "__main__":
    main()
