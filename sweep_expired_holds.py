from __future__ import annotations

import argparse
import logging
from datetime import datetime

from availability.holds import cleanup_expired_temporary_reservations
from config import get_settings
from db.session import validate_db_compatibility

logger = logging.getLogger("sweep_expired_holds")


def run_sweep(*, now: datetime | None) -> int:
    validate_db_compatibility()
    result = cleanup_expired_temporary_reservations(now=now)
    logger.info("Expired %d temporary reservations", result.cleaned_count)
    return result.cleaned_count


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Expire PENDING temporary reservations whose hold time has passed.",
    )
    parser.add_argument(
        "--now",
        type=datetime.fromisoformat,
        default=None,
        help="Reference time in ISO 8601 (default: current UTC time)",
    )
    return parser.parse_args()


def main() -> None:
    logging.basicConfig(
        level=get_settings().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    args = parse_args()
    cleaned = run_sweep(now=args.now)
    print(f"cleaned_count={cleaned}")


if __name__ == "__main__":
    main()
