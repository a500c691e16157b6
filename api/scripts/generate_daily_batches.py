import argparse
import logging
import sys
from datetime import date
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from app.config import BATCH_MAX_WORKERS
from app.main import build_match_facade


def main() -> None:
    parser = argparse.ArgumentParser(description="Generate the daily curated match batches")
    parser.add_argument("--date", type=date.fromisoformat, default=None, help="batch date (YYYY-MM-DD), default today")
    parser.add_argument("--workers", type=int, default=BATCH_MAX_WORKERS)
    parser.add_argument("--user-id", action="append", dest="user_ids", default=None)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")

    facade = build_match_facade()
    summary = facade.batch_generator.generate_for_all(args.user_ids, day=args.date, max_workers=args.workers)

    print("Daily batch generation completed")
    print(f"- batch_date: {summary.batch_date.isoformat()}")
    print(f"- generated: {summary.generated}")
    print(f"- failed: {summary.failed}")
    for uid in summary.failed_user_ids:
        print(f"  - {uid}")
    if summary.failed:
        sys.exit(1)


if __name__ == "__main__":
    main()
