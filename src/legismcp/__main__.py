"""
Command-line access to a LegisMCP server.

    python -m legismcp tools
    python -m legismcp call search_bills --args '{"query": "climate"}'
    python -m legismcp read congress://bills/118/hr/1

Connection settings come from LEGISMCP_* environment variables, a .env file
or ~/.legismcp/config.py; --url and --api-key override them.
"""

import argparse
import asyncio
import json
import logging
import sys

from .client import MCPClient
from .config import load_options
from .core import set_log_level
from .errors import MCPError
from .usage import UsageTracker


async def _run(args) -> int:
    options = load_options(server_url=args.url, api_key=args.api_key)
    tracker = UsageTracker()
    async with MCPClient(options, usage=tracker) as client:
        if args.command == 'tools':
            result = await client.list_tools()
        elif args.command == 'call':
            result = await client.call_tool(args.name, json.loads(args.args))
        elif args.command == 'resources':
            result = await client.list_resources()
        elif args.command == 'read':
            result = await client.read_resource(args.uri)
        elif args.command == 'prompts':
            result = await client.list_prompts()
        elif args.command == 'prompt':
            result = await client.get_prompt(args.name, json.loads(args.args))
        else:
            result = {'state': client.state.model_dump(mode='json'), 'usage': client.usage_info}
        print(json.dumps(result, indent=2))
    if args.verbose:
        tracker.print_stats()
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="legismcp",
        description=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('--url', help="MCP endpoint URL")
    parser.add_argument('--api-key', help="Bearer API key")
    parser.add_argument('--verbose', '-v', action='store_true', help="Log protocol traffic")
    sub = parser.add_subparsers(dest='command', required=True)
    sub.add_parser('status', help="Connect and print session state")
    sub.add_parser('tools', help="List tools")
    call = sub.add_parser('call', help="Call a tool")
    call.add_argument('name')
    call.add_argument('--args', default='{}', help="Tool arguments as JSON")
    sub.add_parser('resources', help="List resources")
    read = sub.add_parser('read', help="Read a resource")
    read.add_argument('uri')
    sub.add_parser('prompts', help="List prompts")
    prompt = sub.add_parser('prompt', help="Render a prompt")
    prompt.add_argument('name')
    prompt.add_argument('--args', default='{}', help="Prompt arguments as JSON")
    args = parser.parse_args(argv)

    if args.verbose:
        set_log_level(logging.DEBUG)

    try:
        return asyncio.run(_run(args))
    except (MCPError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
