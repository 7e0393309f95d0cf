"""Re-runs the idempotent batch jobs: flow recalculation, sweep and cascade.

Usage:
    python -m pos_shifts.scripts.maintenance recalculate
    python -m pos_shifts.scripts.maintenance sweep CLOSING_ID REGISTER
    python -m pos_shifts.scripts.maintenance cascade USER_ID
"""

import argparse
import logging

from pos_shifts.config import settings
from pos_shifts.services.assignments import ShiftServiceError
from pos_shifts.services.balance_flows import recompute_all
from pos_shifts.services.closings import sweep_pending_records
from pos_shifts.services.lifecycle import deactivate_same_day_records

logger = logging.getLogger(__name__)


def _print_fan_out(title: str, result) -> None:
    print(f"{title}: {result.total_rows} rows, {result.succeeded} tables ok, {result.failed} failed")
    for name, count in sorted(result.affected.items()):
        print(f"  {name}: {count}")
    for name, error in sorted(result.errors.items()):
        print(f"  {name}: ERROR {error}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pos_shifts.scripts.maintenance")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("recalculate", help="recalculate active balance flows")

    sweep = commands.add_parser("sweep", help="bind pending records to a closing")
    sweep.add_argument("closing_id", type=int)
    sweep.add_argument("register", type=int)

    cascade = commands.add_parser("cascade", help="deactivate a user's records of today")
    cascade.add_argument("user_id", type=int)
    return parser


def main(argv=None) -> int:
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s:pos_shifts:%(levelname)s:%(message)s",
    )
    args = build_parser().parse_args(argv)

    try:
        if args.command == "recalculate":
            result = recompute_all()
            print(f"Balance flows: {result.updated} updated, {result.errors} errors")
            return 1 if result.errors else 0
        if args.command == "sweep":
            result = sweep_pending_records(args.closing_id, args.register)
            _print_fan_out(f"Sweep of closing {args.closing_id}", result)
            return 1 if result.failed else 0
        result = deactivate_same_day_records(args.user_id)
        _print_fan_out(f"Cascade for user {args.user_id}", result)
        return 1 if result.failed else 0
    except ShiftServiceError as exc:
        logger.error("%s failed: %s", args.command, exc)
        print(exc)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
