"""Command line tools for operating the FreeAgent mirror.

Example usages::

    # Refresh invoices for the shared connection.
    freeagent-sync sync

    # Refresh only one contact's invoices for a per-user connection.
    freeagent-sync sync --owner user:42 --contact https://api.freeagent.com/v2/contacts/7

    # Give a principal access to one contact's invoices.
    freeagent-sync link-contact alice https://api.freeagent.com/v2/contacts/7
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Callable

from pydantic import ValidationError

from freeagent_sync.core.config import get_settings
from freeagent_sync.core.exceptions import ApiError, ConfigurationError, OAuthError
from freeagent_sync.core.logging import configure_logging
from freeagent_sync.dependencies import clients
from freeagent_sync.models.principal import DirectoryPrincipal
from freeagent_sync.services.owners import SYSTEM_OWNER_ID
from freeagent_sync.services.token_cipher import TokenCipherService

EXIT_OK = 0
EXIT_USAGE_ERROR = 2
EXIT_CONFIG_ERROR = 3
EXIT_REMOTE_ERROR = 4


def _sync(args: argparse.Namespace) -> int:
    filters = {"contact": args.contact} if args.contact else {}
    stats = asyncio.run(clients.get_sync_engine().sync_invoices(args.owner, filters))
    print(json.dumps({"owner_id": args.owner, "invoices": stats.model_dump()}))
    return EXIT_OK


def _clear_cache(args: argparse.Namespace) -> int:
    engine = clients.get_sync_engine()
    if args.all:
        removed = engine.clear_all_caches()
    else:
        removed = {args.owner: engine.clear_cache(args.owner)}
    print(json.dumps({"entries_removed": removed}))
    return EXIT_OK


def _status(args: argparse.Namespace) -> int:
    oauth = clients.get_oauth_manager()
    engine = clients.get_sync_engine()
    mirror = clients.get_mirror_store()
    token = oauth.stored_token(args.owner)
    payload = {
        "owner_id": args.owner,
        "environment": clients.get_freeagent_config().environment,
        "connected": token is not None and token.is_valid(),
        "expires_at": token.expires_at.isoformat() if token else None,
        "stale": {kind: engine.is_stale(args.owner, kind) for kind in ("contacts", "invoices")},
        "mirrored": {
            kind: mirror.count(kind) for kind in ("contacts", "projects", "invoices")
        },
    }
    print(json.dumps(payload, indent=2))
    return EXIT_OK


def _link_contact(args: argparse.Namespace) -> int:
    mirror = clients.get_mirror_store()
    contact_id = None if args.unlink else args.contact
    if args.admin is not None:
        mirror.save_principal(
            DirectoryPrincipal(
                principal_id=args.principal,
                is_admin=args.admin,
                contact_remote_id=contact_id,
            )
        )
    else:
        mirror.link_contact(args.principal, contact_id)
    print(f"Principal {args.principal} linked to {contact_id or 'no contact'}.")
    return EXIT_OK


def _set_credentials(args: argparse.Namespace) -> int:
    # Without a dedicated encryption secret, stored tokens are keyed on the
    # client secret and must move to the new key before it is stored.
    if not get_settings().security.token_encryption_secret:
        current_secret = clients.get_freeagent_config().client_secret
        if current_secret and current_secret != args.client_secret:
            moved = clients.get_token_store().reencrypt(
                TokenCipherService(secret=args.client_secret)
            )
            print(f"Re-encrypted {moved} stored token(s) under the new client secret.")

    store = clients.get_settings_store()
    store.set("client_id", args.client_id)
    store.set("client_secret", args.client_secret)
    clients.reset_factories()
    print("FreeAgent client credentials stored.")
    return EXIT_OK


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="freeagent-sync",
        description="Operate the local FreeAgent mirror.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_owner_argument(subparser: argparse.ArgumentParser) -> None:
        subparser.add_argument(
            "--owner",
            default=SYSTEM_OWNER_ID,
            help=f"Owner key of the connection to use (default: {SYSTEM_OWNER_ID}).",
        )

    sync_parser = subparsers.add_parser("sync", help="Sync contacts, projects and invoices.")
    add_owner_argument(sync_parser)
    sync_parser.add_argument(
        "--contact", help="Only sync invoices for this contact URL."
    )

    clear_parser = subparsers.add_parser(
        "clear-cache", help="Forget staleness markers and cached API responses."
    )
    add_owner_argument(clear_parser)
    clear_parser.add_argument(
        "--all", action="store_true", help="Clear the cache for every known owner."
    )

    status_parser = subparsers.add_parser("status", help="Show connection and mirror state.")
    add_owner_argument(status_parser)

    link_parser = subparsers.add_parser(
        "link-contact", help="Link a principal to the FreeAgent contact it may see."
    )
    link_parser.add_argument("principal", help="Principal identifier.")
    link_parser.add_argument("contact", nargs="?", help="FreeAgent contact URL.")
    link_parser.add_argument(
        "--unlink", action="store_true", help="Remove the principal's contact link."
    )
    link_parser.add_argument(
        "--admin",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Grant or revoke administrator access.",
    )

    credentials_parser = subparsers.add_parser(
        "set-credentials",
        help="Store OAuth client credentials, overriding the environment.",
    )
    credentials_parser.add_argument("--client-id", required=True)
    credentials_parser.add_argument("--client-secret", required=True)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command == "link-contact" and not args.unlink and not args.contact:
        print("Provide a contact URL or pass --unlink.", file=sys.stderr)
        return EXIT_USAGE_ERROR

    try:
        configure_logging(get_settings().log_level)
    except ValidationError as exc:
        print(
            "Settings validation failed. Missing or invalid values detected:\n"
            f"{exc.json(indent=2)}",
            file=sys.stderr,
        )
        return EXIT_CONFIG_ERROR

    handlers: dict[str, Callable[[argparse.Namespace], int]] = {
        "sync": _sync,
        "clear-cache": _clear_cache,
        "status": _status,
        "link-contact": _link_contact,
        "set-credentials": _set_credentials,
    }
    try:
        return handlers[args.command](args)
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except (ApiError, OAuthError) as exc:
        print(f"FreeAgent request failed: {exc}", file=sys.stderr)
        return EXIT_REMOTE_ERROR


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
