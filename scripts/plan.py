#!/usr/bin/env python3
from __future__ import annotations

from argparse import ArgumentParser
import json
from pathlib import Path
from uuid import UUID

import yaml

from db.session import SessionLocal
from pipeline.errors import PipelineError
from planner import plan_order


def main() -> None:
    parser = ArgumentParser(description="Plan an order from an intent file (YAML/JSON)")
    parser.add_argument("intent", help="Path to the intent file")
    parser.add_argument("--user-id", type=UUID, required=True)
    args = parser.parse_args()

    path = Path(args.intent)
    raw = path.read_text(encoding="utf-8")
    intent = json.loads(raw) if path.suffix.lower() == ".json" else yaml.safe_load(raw)

    session = SessionLocal()
    try:
        result = plan_order(session, intent, args.user_id)
    except PipelineError as exc:
        print(f"[plan] rejected: {exc}")
        raise SystemExit(1)
    finally:
        session.close()

    print("[plan] order_id:", result.order_id)
    print("[plan] stages:", " -> ".join(result.plan_kinds))
    for warning in result.warnings:
        print("[plan] warning:", warning)


if __name__ == "__main__":
    main()
