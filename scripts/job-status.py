#!/usr/bin/env python3
from __future__ import annotations

from argparse import ArgumentParser
from uuid import UUID

from sqlalchemy import desc, select

from db.models import Job, Order
from db.session import SessionLocal
from pipeline.state import job_summary


def main() -> None:
    parser = ArgumentParser(description="Show recent job statuses")
    parser.add_argument("--limit", type=int, default=10)
    parser.add_argument("--summary", action="store_true")
    parser.add_argument("--failed", action="store_true", help="Show failed jobs with their error")
    parser.add_argument("--order", type=UUID, default=None, help="Show the pipeline of one order")
    args = parser.parse_args()

    session = SessionLocal()
    try:
        if args.summary:
            for status, count in job_summary(session).items():
                print(f"[summary] {status}: {count}")
            return
        if args.order is not None:
            order = session.get(Order, args.order)
            if order is None:
                print(f"[order] not found: {args.order}")
                return
            print(f"[order] id={order.id} status={order.status}")
            stmt = select(Job).where(Job.order_id == order.id).order_by(Job.created_at)
        else:
            stmt = select(Job)
            if args.failed:
                stmt = stmt.where(Job.status == "failed")
            stmt = stmt.order_by(desc(Job.created_at)).limit(args.limit)
        jobs = session.execute(stmt).scalars().all()
        for job in jobs:
            print(
                f"[job] id={job.id} kind={job.kind} status={job.status} "
                f"attempt={job.attempt}/{job.max_attempts}"
            )
            if job.error and (args.failed or args.order is not None):
                print(f"[job] error={job.error}")
    finally:
        session.close()


if __name__ == "__main__":
    main()
