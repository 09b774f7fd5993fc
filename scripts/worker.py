#!/usr/bin/env python3
from __future__ import annotations

from argparse import ArgumentParser
import logging
import os

from rq import SimpleWorker, Worker

from db.session import engine
from pipeline.queue import enqueue_worker_run, get_queue, get_redis


def main() -> None:
    parser = ArgumentParser(description="Start the RQ worker for pipeline stages and clip renders")
    parser.add_argument("--queue", default="default")
    parser.add_argument("--burst", action="store_true", help="Process queued jobs and exit")
    parser.add_argument(
        "--drain",
        type=int,
        default=0,
        help="Enqueue a run over N due pipeline jobs before starting",
    )
    args = parser.parse_args()

    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))

    if hasattr(os, "register_at_fork"):
        os.register_at_fork(after_in_child=lambda: engine.dispose())

    if args.drain > 0:
        rq_id = enqueue_worker_run(args.drain)
        print(f"[worker] enqueued drain of {args.drain} job(s): {rq_id}")

    queue = get_queue(args.queue)
    worker_cls = SimpleWorker if os.getenv("RQ_SIMPLE_WORKER", "1") == "1" else Worker
    worker = worker_cls([queue], connection=get_redis())
    worker.work(with_scheduler=False, burst=args.burst)


if __name__ == "__main__":
    main()
