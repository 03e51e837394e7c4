"""
Version CLI tool for the Workflow Vault.

Browse and restore document versions without a running server:
- list: Show entries of a document, newest first
- show: Print the document held by an entry
- restore: Write an entry back as the live document
- prune: Apply the retention cap to a document

Usage:
    vault-versions list wf-1758279897913
    vault-versions show wf-1758279897913_20250921_184637123456.json
    vault-versions restore wf-1758279897913_20250921_184637123456.json
    vault-versions prune wf-1758279897913

Invariants:
    - restore does not snapshot the state it replaces
    - Exit code is non-zero when the requested entry does not exist
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from ..config import ServerConfig
from ..errors import VaultError
from ..store import RecordStore, StoreLayout
from ..versions import VersionLedger

logger = logging.getLogger(__name__)


class VersionsCLI:
    """CLI commands over a VersionLedger.

    Example:
        >>> cli = VersionsCLI(ledger)
        >>> await cli.list("wf-1")
        [{'file': 'wf-1_20250921_184637123456.json', 'id': 'wf-1', ...}]
    """

    def __init__(self, ledger: VersionLedger) -> None:
        self.ledger = ledger

    async def list(self, document_id: str) -> list[dict[str, Any]]:
        return [entry.to_dict() for entry in await self.ledger.list(document_id)]

    async def show(self, key: str) -> str:
        document = await self.ledger.read(key)
        return json.dumps(document, indent=2, ensure_ascii=False)

    async def restore(self, key: str) -> str:
        """Restore an entry and return the restored document id."""
        owner = self.ledger.entry_for(key).document_id
        async with self.ledger.record_store.locks.writing(owner):
            entry = await self.ledger.restore_to_live(key)
        return entry.document_id

    async def prune(self, document_id: str) -> int:
        return await self.ledger.prune(document_id)


async def _dispatch(cli: VersionsCLI, args: argparse.Namespace) -> int:
    if args.command == "list":
        entries = await cli.list(args.document_id)
        print(f"Available versions for {args.document_id}:")
        for entry in entries:
            print(f"  {entry['file']}  {entry['date']}")
    elif args.command == "show":
        print(await cli.show(args.key))
    elif args.command == "restore":
        document_id = await cli.restore(args.key)
        print(f"Restored {document_id} from {args.key}")
    elif args.command == "prune":
        deleted = await cli.prune(args.document_id)
        print(f"Pruned {deleted} versions of {args.document_id}")
    return 0


def main() -> None:
    """CLI entry point for the version tool."""
    parser = argparse.ArgumentParser(description="Browse and restore workflow versions")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    subparsers = parser.add_subparsers(dest="command", required=True)

    list_parser = subparsers.add_parser("list", help="List versions of a document")
    list_parser.add_argument("document_id", help="Workflow document id")

    show_parser = subparsers.add_parser("show", help="Print the document held by a version")
    show_parser.add_argument("key", help="Version file name")

    restore_parser = subparsers.add_parser("restore", help="Restore a version to live")
    restore_parser.add_argument("key", help="Version file name")

    prune_parser = subparsers.add_parser("prune", help="Apply the retention cap")
    prune_parser.add_argument("document_id", help="Workflow document id")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)

    layout = StoreLayout.from_config(config.storage)
    ledger = VersionLedger(
        RecordStore(layout),
        keep_limit=config.versions.keep_limit,
        compression=config.versions.compression,
    )

    try:
        sys.exit(asyncio.run(_dispatch(VersionsCLI(ledger), args)))
    except VaultError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
