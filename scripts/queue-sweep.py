#!/usr/bin/env python3
from __future__ import annotations

from argparse import ArgumentParser
import logging
import os

from db.session import SessionLocal
from pipeline.queue import trigger_worker
from pipeline.state import fail_expired, max_age_hours, stuck_minutes, unlock_stuck


def main() -> None:
    parser = ArgumentParser(description="Recover stuck jobs, expire stale ones, then run due jobs")
    parser.add_argument("--stuck-min", type=int, default=stuck_minutes())
    parser.add_argument("--max-age-hours", type=int, default=max_age_hours())
    parser.add_argument("--run", type=int, default=0, help="Run up to N due jobs after sweeping")
    args = parser.parse_args()

    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))

    session = SessionLocal()
    try:
        unlocked = unlock_stuck(session, args.stuck_min)
        print(f"[sweep] unlocked {unlocked} stuck job(s) (> {args.stuck_min} min)")
        expired = fail_expired(session, args.max_age_hours)
        print(f"[sweep] failed {expired} expired job(s) (> {args.max_age_hours} h)")
    finally:
        session.close()

    if args.run > 0:
        processed = trigger_worker(args.run)
        print(f"[sweep] processed {processed} due job(s)")


if __name__ == "__main__":
    main()
