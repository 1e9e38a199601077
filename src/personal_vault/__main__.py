# Main Entry Point - Command Line
#
# Maintenance commands for a vault on disk. The application itself uses the
# Vault API; this is for setup, password checks and integrity scans.

import argparse
import asyncio
import getpass
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from . import __version__
from .config import VaultSettings
from .vault import Vault, VaultError, WrongPassword


def _read_password(args, prompt: str = "Master password: ") -> str:
    if args.password_stdin:
        return sys.stdin.readline().rstrip("\r\n")
    return getpass.getpass(prompt)


async def _cmd_init(vault: Vault, args) -> int:
    password = _read_password(args)
    if not args.password_stdin:
        if getpass.getpass("Confirm master password: ") != password:
            print("Passwords do not match", file=sys.stderr)
            return 2
    await vault.create(password)
    print(f"Vault created at {vault.root}")
    return 0


async def _cmd_unlock_check(vault: Vault, args) -> int:
    try:
        await vault.unlock(_read_password(args))
    except WrongPassword:
        print("Incorrect master password", file=sys.stderr)
        return 1
    print("Password OK")
    return 0


async def _cmd_collections(vault: Vault, args) -> int:
    await vault.unlock(_read_password(args))
    for name in vault.collections.list_collections():
        records = await vault.get(name)
        print(f"{name}\t{len(records)}")
    return 0


async def _cmd_integrity(vault: Vault, args) -> int:
    await vault.unlock(_read_password(args))
    report = await vault.check_integrity()
    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print(f"Records:              {report.total_records}")
        print(f"Documents matched:    {len(report.matched)}")
        print(f"Documents missing:    {len(report.missing)}")
        print(f"Legacy attachments:   {len(report.legacy)}")
        print(f"Orphaned blobs:       {len(report.orphaned_blobs)}")
        print(f"Orphaned thumbnails:  {len(report.orphaned_thumbnails)}")
        for name in report.unreadable_collections:
            print(f"Unreadable:           {name}")

    if args.purge:
        purged = await vault.purge_orphans()
        print(f"Purged {purged} orphaned files")
    return 0 if report.is_clean else 3


COMMANDS = {
    "init": _cmd_init,
    "unlock-check": _cmd_unlock_check,
    "collections": _cmd_collections,
    "integrity": _cmd_integrity,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="personal-vault",
        description="Personal Vault - encrypted local storage for records and documents",
    )
    parser.add_argument(
        "--root",
        type=Path,
        help="Vault directory (default: PERSONAL_VAULT_ROOT or ~/Documents/PersonalVault)",
    )
    parser.add_argument("--env-file", help="Load settings from this .env file")
    parser.add_argument(
        "--password-stdin",
        action="store_true",
        help="Read the master password from the first line of stdin",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument(
        "--version",
        action="version",
        version=f"Personal Vault v{__version__}",
    )

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("init", help="Create a new vault")
    sub.add_parser("unlock-check", help="Verify the master password")
    sub.add_parser("collections", help="List collections and record counts")
    integrity = sub.add_parser("integrity", help="Cross-check records against documents")
    integrity.add_argument("--json", action="store_true", help="Print the full report as JSON")
    integrity.add_argument(
        "--purge",
        action="store_true",
        help="Delete orphaned documents older than one hour",
    )
    return parser


async def _run(args) -> int:
    settings = VaultSettings.from_env(args.env_file)
    vault = Vault(root=args.root, settings=settings)
    try:
        return await COMMANDS[args.command](vault, args)
    finally:
        vault.close()


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the personal-vault command."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        return asyncio.run(_run(args))
    except VaultError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
