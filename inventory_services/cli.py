"""
Command-line entry point (``inventory-kernel``).

Usage:
    inventory-kernel [--config PATH] init-db
    inventory-kernel [--config PATH] sweep [--organization ID]
    inventory-kernel [--config PATH] run-sweeper
    inventory-kernel [--config PATH] stock ORG PRODUCT [--warehouse ID] [--unit CODE]

Settings come from ``--config``, else ``$INVENTORY_CONFIG``, else defaults;
``$DATABASE_URL`` overrides the configured database.
"""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Sequence
from uuid import UUID

from inventory_config import InventorySettings, load_settings
from inventory_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
)
from inventory_kernel.db.immutability import register_immutability_listeners
from inventory_kernel.exceptions import InventoryKernelError
from inventory_kernel.logging_config import configure_logging, get_logger

logger = get_logger("cli")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="inventory-kernel",
        description="Inventory kernel maintenance commands.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--config",
        default=None,
        help="YAML settings file (default: $INVENTORY_CONFIG or built-in defaults).",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create all inventory tables.")

    sweep = commands.add_parser("sweep", help="Release expired reservations once.")
    sweep.add_argument(
        "--organization",
        type=UUID,
        default=None,
        help="Only sweep this organization (default: all).",
    )

    commands.add_parser(
        "run-sweeper",
        help="Run the expiry sweeper on its cron schedule until interrupted.",
    )

    stock = commands.add_parser("stock", help="Print current stock of a product.")
    stock.add_argument("organization", type=UUID)
    stock.add_argument("product", type=UUID)
    stock.add_argument("--warehouse", type=UUID, default=None)
    stock.add_argument("--unit", default=None, help="Report in this unit instead of the base unit.")
    return parser


def _print_json(payload: dict) -> None:
    print(json.dumps(payload, default=str, sort_keys=True))


def _facade(settings: InventorySettings):
    from inventory_services.facade import InventoryFacade

    return InventoryFacade(get_session_factory(), settings=settings)


def _run_sweeper(settings: InventorySettings) -> int:
    from inventory_batch.services.scheduler import SweepScheduler
    from inventory_batch.tasks.reservation_expiry import ReservationExpirySweeper

    sweeper = ReservationExpirySweeper(
        get_session_factory(),
        batch_size=settings.sweep.batch_size,
    )
    scheduler = SweepScheduler(
        sweeper,
        cron_expression=settings.sweep.cron,
        poll_seconds=settings.sweep.poll_seconds,
        organization_id=settings.sweep.organization_id,
    )
    scheduler.start()
    try:
        scheduler.wait()
    except KeyboardInterrupt:
        pass
    finally:
        scheduler.stop()
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    try:
        settings = load_settings(args.config)
    except (OSError, ValueError) as exc:
        print(f"ERROR: invalid configuration: {exc}", file=sys.stderr)
        return 2

    configure_logging(level=settings.log_level)
    init_engine_from_url(
        settings.database_url,
        echo=settings.database_echo,
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
    )
    register_immutability_listeners()

    try:
        if args.command == "init-db":
            create_tables()
            print("Tables created.")
            return 0

        if args.command == "sweep":
            result = _facade(settings).sweep_expired_reservations(args.organization)
            _print_json(result.to_dict())
            return 0 if result.failed_batches == 0 else 1

        if args.command == "run-sweeper":
            return _run_sweeper(settings)

        if args.command == "stock":
            level = _facade(settings).current_stock(
                args.organization, args.product, args.warehouse, args.unit,
            )
            _print_json(level.to_dict())
            return 0
    except InventoryKernelError as exc:
        logger.error("cli_command_failed", extra={"command": args.command, "error_code": exc.code})
        print(f"ERROR [{exc.code}]: {exc}", file=sys.stderr)
        return 1

    return 2


if __name__ == "__main__":
    sys.exit(main())
