"""CLI entry point for contacts-mcp-server.

Runs the MCP server with its OAuth 2.1 proxy under uvicorn, or prints the
effective configuration.
"""
import argparse
import sys
from pathlib import Path
from typing import Optional

import uvicorn
from dotenv import load_dotenv

from config import config_path, load_config
from logging_config import setup_logging

VERSION = "0.1.0"


def load_env() -> None:
    """Load .env from the working directory, if present."""
    env_file = Path(".env")
    if env_file.exists():
        load_dotenv(env_file)


# ============== Commands ==============

def cmd_serve(host: Optional[str] = None, port: Optional[int] = None):
    """Run the server in the foreground."""
    config = load_config()
    setup_logging(level=config.log_level, json_format=config.log_json)

    uvicorn.run(
        "main:create_app",
        factory=True,
        host=host or config.host,
        port=port or config.port,
        log_level=config.log_level.lower(),
    )


def cmd_config():
    """Show the effective configuration (secrets are never printed)."""
    config = load_config()
    path = config_path()

    print("\n" + "=" * 50)
    print("  Contacts MCP Server Config")
    print("=" * 50)

    print("\n[Server]")
    print(f"  Base URL: {config.base_url}")
    print(f"  Listen:   {config.host}:{config.port}")
    print(f"  MCP URL:  {config.base_url}/mcp")

    print("\n[OAuth]")
    if config.secret_project and config.secret_name:
        print(f"  Secret:   {config.secret_project}/{config.secret_name}")
    else:
        print("  Secret:   Not configured")
    print(f"  File:     {Path(config.credential_file).expanduser()}")
    print(f"  Auto-registration: {config.auto_register_clients}")

    print("\n[Config]")
    print(f"  File:     {path}")
    print(f"  Exists:   {path.exists()}")

    print("\n" + "=" * 50 + "\n")


def cmd_version():
    """Show version information."""
    print(f"contacts-mcp-server v{VERSION}")


# ============== Main Entry Point ==============

def main(argv: Optional[list] = None):
    """Main entry point for CLI."""
    load_env()

    parser = argparse.ArgumentParser(
        prog="contacts-mcp-server",
        description="Contacts MCP Server - MCP server with an OAuth 2.1 proxy for Google",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  serve     Run the server (default)
  config    Show the effective configuration
  version   Show version

Examples:
  contacts-mcp-server serve --port 9000
  contacts-mcp-server config
"""
    )

    parser.add_argument(
        "command",
        nargs="?",
        default="serve",
        choices=["serve", "config", "version"],
        help="Command to run (default: serve)"
    )
    parser.add_argument("--host", help="Listen address (overrides MCP_HOST)")
    parser.add_argument("--port", type=int, help="Listen port (overrides MCP_PORT)")

    args = parser.parse_args(argv)

    if args.command == "serve":
        cmd_serve(host=args.host, port=args.port)
    elif args.command == "config":
        cmd_config()
    elif args.command == "version":
        cmd_version()
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
