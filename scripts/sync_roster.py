#!/usr/bin/env python3
"""
Push member roster documents to the Meilisearch roster index.

The roster file is a JSON array of member records (id, member_id,
group_name, name, address, city, state, ...). Each record is validated
before anything is sent.

Usage:
    python scripts/sync_roster.py rosters.json
    python scripts/sync_roster.py --delete r-1001 r-1002
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from pydantic import TypeAdapter

from rebate_trace.clients import MeilisearchClient
from rebate_trace.config import get_settings
from rebate_trace.errors import SearchError
from rebate_trace.logging import configure_logging, get_logger
from rebate_trace.models import RosterHit

logger = get_logger(__name__)

_roster_adapter = TypeAdapter(list[RosterHit])


def load_roster(path: Path) -> list[RosterHit]:
    """Load and validate a roster file."""
    with open(path) as f:
        return _roster_adapter.validate_python(json.load(f))


async def main() -> int:
    parser = argparse.ArgumentParser(description='Sync the member roster index')
    parser.add_argument('roster', nargs='?', type=Path, help='JSON roster file to upload')
    parser.add_argument('--delete', nargs='+', metavar='ID', help='Roster ids to remove')
    args = parser.parse_args()

    if not args.roster and not args.delete:
        parser.error('give a roster file or --delete ids')

    settings = get_settings()
    configure_logging(json_output=settings.LOG_JSON, log_level=settings.LOG_LEVEL)

    client = MeilisearchClient(
        url=settings.MEILISEARCH_URL,
        api_key=settings.MEILISEARCH_KEY,
        index=settings.MEILISEARCH_INDEX,
        timeout=settings.SEARCH_REQUEST_TIMEOUT_SECONDS,
    )

    try:
        health = await client.health_check()
        if not health['healthy']:
            print(f"Meilisearch unreachable: {health['error']}")
            return 1

        if args.roster:
            roster = load_roster(args.roster)
            print(f'Uploading {len(roster)} roster documents to {client.index}...')
            task = await client.add_documents(roster)
            print(json.dumps(task, indent=2))

        if args.delete:
            print(f'Deleting {len(args.delete)} roster documents from {client.index}...')
            task = await client.delete_documents(args.delete)
            print(json.dumps(task, indent=2))
    except SearchError as e:
        logger.error('roster_sync.failed', error=str(e))
        return 1
    finally:
        await client.close()

    return 0


if __name__ == '__main__':
    sys.exit(asyncio.run(main()))
