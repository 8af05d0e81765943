"""Command-line interface for Ternity desktop sign-in."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import webbrowser

from typing import TYPE_CHECKING

from .auth.session import SessionManager
from .config import get_settings
from .document import SettingsDocument
from .exceptions import UnknownEnvironmentError
from .log import configure, enable_debug


if TYPE_CHECKING:
    from .config import TernitySettings


#: Environment used when none is given and none was selected before.
DEFAULT_ENVIRONMENT = "prod"


def main(argv: list[str] | None = None) -> int:
    """Run the main CLI entry point.

    Returns
    -------
    int
        Exit code.
    """
    parser = argparse.ArgumentParser(
        prog="ternity-auth",
        description="Sign in to Ternity from the command line",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Log every step of the flow",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    for name, help_text in (
        ("sign-in", "Sign in through the system browser"),
        ("sign-out", "Forget the stored session and show the sign-out page"),
        ("status", "Show whether a session is stored"),
        ("token", "Print a usable access token, refreshing it if needed"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument(
            "env",
            nargs="?",
            default=None,
            help="Environment id (default: last selected, else prod)",
        )
        if name == "sign-out":
            sub.add_argument(
                "--no-browser",
                action="store_true",
                help="Print the sign-out page URL instead of opening it",
            )

    api_parser = subparsers.add_parser(
        "api",
        help="Send an authenticated request to the environment's API",
    )
    api_parser.add_argument("path", help="API path, e.g. /api/projects")
    api_parser.add_argument(
        "--env",
        default=None,
        help="Environment id (default: last selected, else prod)",
    )
    api_parser.add_argument(
        "--method",
        "-X",
        default="GET",
        help="HTTP method (default: GET)",
    )
    api_parser.add_argument(
        "--data",
        "-d",
        default=None,
        help="JSON request body for non-GET requests",
    )

    config_parser = subparsers.add_parser(
        "config",
        help="Show current configuration",
    )
    config_parser.add_argument(
        "--show",
        action="store_true",
        help="Show current configuration",
    )

    args = parser.parse_args(argv)

    settings = get_settings()
    configure(settings.log)
    if args.verbose:
        enable_debug()

    if args.command == "config":
        print(settings.show())
        return 0
    if args.command is None:
        parser.print_help()
        return 0

    document = SettingsDocument(settings.auth.document_path)
    env_id = args.env or document.get_selected_environment() or DEFAULT_ENVIRONMENT
    try:
        settings.environment(env_id)
    except UnknownEnvironmentError as exc:
        print(exc.message, file=sys.stderr)
        return 2

    handlers = {
        "sign-in": handle_sign_in,
        "sign-out": handle_sign_out,
        "status": handle_status,
        "token": handle_token,
        "api": handle_api,
    }
    return asyncio.run(handlers[args.command](settings, document, env_id, args))


async def handle_sign_in(
    settings: TernitySettings,
    document: SettingsDocument,
    env_id: str,
    _args: argparse.Namespace,
) -> int:
    """Handle the sign-in command."""
    async with SessionManager(settings) as manager:
        print("Waiting for sign-in in the browser...")
        result = await manager.sign_in(env_id)

    if not result.success:
        print(f"Sign-in failed: {result.error}", file=sys.stderr)
        return 1

    document.set_selected_environment(env_id)
    user = result.user
    who = (user.name or user.email or user.sub) if user else "unknown user"
    print(f"Signed in to {env_id} as {who}")
    return 0


async def handle_sign_out(
    settings: TernitySettings,
    _document: SettingsDocument,
    env_id: str,
    args: argparse.Namespace,
) -> int:
    """Handle the sign-out command.

    The sign-out pages are served by this process, so it stays alive
    until their TTL expires unless ``--no-browser`` was given.
    """
    async with SessionManager(settings) as manager:
        result = await manager.sign_out(env_id)
        print(f"Signed out of {env_id}")
        if args.no_browser:
            print(result.sign_out_page_url)
            return 0

        webbrowser.open(result.sign_out_page_url)
        holder = manager.port.holder
        if holder is not None and holder.serve_task is not None:
            await asyncio.wait({holder.serve_task})
    return 0


async def handle_status(
    settings: TernitySettings,
    _document: SettingsDocument,
    env_id: str,
    _args: argparse.Namespace,
) -> int:
    """Handle the status command."""
    async with SessionManager(settings) as manager:
        state = await manager.get_auth_state(env_id)

    if not state.is_authenticated:
        print(f"{env_id}: not signed in")
        return 1
    user = state.user
    if user is None:
        print(f"{env_id}: signed in")
        return 0
    print(f"{env_id}: signed in as {user.name or user.sub}")
    if user.email:
        print(f"  email: {user.email}")
    if user.roles:
        print(f"  roles: {', '.join(user.roles)}")
    return 0


async def handle_token(
    settings: TernitySettings,
    _document: SettingsDocument,
    env_id: str,
    _args: argparse.Namespace,
) -> int:
    """Handle the token command."""
    async with SessionManager(settings) as manager:
        token = await manager.get_access_token(env_id)

    if token is None:
        print(f"No usable session for {env_id}; run 'ternity-auth sign-in {env_id}'", file=sys.stderr)
        return 1
    print(token)
    return 0


async def handle_api(
    settings: TernitySettings,
    _document: SettingsDocument,
    env_id: str,
    args: argparse.Namespace,
) -> int:
    """Handle the api command."""
    body = None
    if args.data is not None:
        try:
            body = json.loads(args.data)
        except ValueError as exc:
            print(f"--data is not valid JSON: {exc}", file=sys.stderr)
            return 2

    async with SessionManager(settings) as manager:
        response = await manager.api_request(env_id, args.path, method=args.method, body=body)

    if not response.ok:
        print(f"Request failed ({response.status}): {response.error}", file=sys.stderr)
        return 1
    if response.data is not None:
        print(json.dumps(response.data, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
