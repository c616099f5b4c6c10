#!/usr/bin/env python3
"""Rebuild restaurant knowledge chunks from live menu and table data.

Usage:
    python scripts/reindex_knowledge.py --tenant-id rest_123 [--tenant-id rest_456]
    python scripts/reindex_knowledge.py --tenant-id rest_123 --document "House rules" rules.txt

Run it after bulk menu imports, or nightly:
    0 3 * * * cd /path/to/dine-agent && /path/to/venv/bin/python scripts/reindex_knowledge.py --tenant-id rest_123
"""

import argparse
import asyncio
import sys
from pathlib import Path

from dine_agent.api.dependencies import get_indexer
from dine_agent.infra.error_handler import StorageUnavailableError, UpstreamUnavailableError
from dine_agent.infra.validation import validate_identifier


async def main():
    parser = argparse.ArgumentParser(description="Rebuild restaurant knowledge chunks")
    parser.add_argument(
        "--tenant-id",
        action="append",
        required=True,
        help="Tenant to re-index (repeat for several tenants)",
    )
    parser.add_argument(
        "--document",
        nargs=2,
        metavar=("TITLE", "PATH"),
        default=None,
        help="Also add an extracted text document to every given tenant",
    )

    args = parser.parse_args()
    indexer = get_indexer()

    document_text = None
    if args.document:
        document_text = Path(args.document[1]).read_text(encoding="utf-8")

    failed = False
    for tenant_id in args.tenant_id:
        try:
            validate_identifier(tenant_id, "tenant_id")
            summary = await indexer.index_tenant(tenant_id)
            print(f"✓ {tenant_id}: {summary['chunks']} chunks {summary['by_kind']}")
            if document_text is not None:
                added = await indexer.add_document_text(tenant_id, args.document[0], document_text)
                print(f"  + {added} chunks from '{args.document[0]}'")
        except (ValueError, StorageUnavailableError, UpstreamUnavailableError) as e:
            print(f"✗ {tenant_id}: {e}", file=sys.stderr)
            failed = True

    if failed:
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
