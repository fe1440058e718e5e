import argparse
import asyncio
from typing import Sequence

from storefront.core.config import settings
from storefront.core.logging_config import configure_logging
from storefront.db.session import SessionLocal
from storefront.services import shipping_store


async def seed_shipping() -> int:
    async with SessionLocal() as session:
        return await shipping_store.seed_default_carriers(session)


async def purge_calculations(older_than_hours: int) -> int:
    async with SessionLocal() as session:
        return await shipping_store.purge_calculations(session, older_than_hours=older_than_hours)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Storefront pricing maintenance")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("seed-shipping", help="Create the default Correios carrier and its methods")

    purge = subparsers.add_parser("purge-calculations", help="Delete old shipping calculation records")
    purge.add_argument(
        "--older-than-hours",
        type=int,
        default=settings.shipping_calculation_retention_hours,
        help="Retention window in hours",
    )
    return parser


def _run_cli_command(args: argparse.Namespace) -> bool:
    if args.command == "seed-shipping":
        added = asyncio.run(seed_shipping())
        print(f"Seeded {added} shipping methods")
        return True

    if args.command == "purge-calculations":
        if args.older_than_hours < 0:
            raise SystemExit("--older-than-hours must not be negative")
        removed = asyncio.run(purge_calculations(args.older_than_hours))
        print(f"Removed {removed} shipping calculations")
        return True

    return False


def main(argv: Sequence[str] | None = None) -> None:
    configure_logging(settings.log_json)
    parser = _build_parser()
    args = parser.parse_args(argv)
    if not _run_cli_command(args):
        parser.print_help()


if __name__ == "__main__":
    main()
