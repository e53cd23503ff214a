"""
Command line entry point for a rebate trace run.

Usage:
    rebate-trace --file 2750-082022-Rebate_File.xlsx --month 08 --year 2022
    rebate-trace --file ... --month 08 --year 2022 --period AUGUST2022 --dry-run
"""

import argparse
import asyncio
import json
import sys

from pydantic import ValidationError as PydanticValidationError

from .config import RunConfig, get_settings
from .errors import RebateTraceError
from .logging import configure_logging, get_logger
from .pipeline import TracePipeline
from .sources import DEFAULT_SOURCE

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='rebate-trace',
        description='Normalize warehouse rebate claims into enriched traces.',
    )
    parser.add_argument('--file', required=True, help='Rebate file name pattern (__file__ column)')
    parser.add_argument('--month', required=True, help='Two-digit month, e.g. 08')
    parser.add_argument('--year', required=True, help='Four-digit year, e.g. 2022')
    parser.add_argument('--source', default=DEFAULT_SOURCE, help='Source profile name')
    parser.add_argument('--period', help='Period label (defaults to PERIOD env var)')
    parser.add_argument('--dry-run', action='store_true', help='Skip writing the output collection')
    parser.add_argument('--json-logs', action='store_true', help='Emit JSON log lines')
    return parser


async def _run(args: argparse.Namespace) -> int:
    settings = get_settings()
    configure_logging(
        json_output=args.json_logs or settings.LOG_JSON,
        log_level=settings.LOG_LEVEL,
    )

    period = args.period or settings.PERIOD
    config = RunConfig.for_file(
        file_name=args.file,
        month=args.month,
        year=args.year,
        period=period,
        source=args.source,
        settings=settings,
    )

    pipeline = await TracePipeline.from_settings(settings, config)
    try:
        result = await pipeline.run(dry_run=args.dry_run)
    finally:
        await pipeline.close()

    print(json.dumps(result.to_dict(), indent=2, default=str))
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(_run(args))
    except PydanticValidationError as e:
        logger.error('cli.invalid_configuration', error=str(e))
        return 1
    except RebateTraceError as e:
        logger.error('cli.run_failed', error=str(e), error_type=type(e).__name__)
        return 1


if __name__ == '__main__':
    sys.exit(main())
