from __future__ import annotations
import argparse
import json
import logging
from pathlib import Path

import dotenv
dotenv.load_dotenv()

from asset_audit.config import load_config
from asset_audit.db import connect
from asset_audit.pipeline import BatchOrchestrator
from asset_audit.report import summarize, summarize_conflicts


def main(argv=None):
    root = Path(__file__).resolve().parent
    parser = argparse.ArgumentParser(description="Print matching and reconciliation figures for a lot")
    parser.add_argument("--lot", required=True)
    parser.add_argument("--highway", required=True)
    parser.add_argument("--type", dest="asset_type")
    parser.add_argument("--detect", action="store_true", help="run conflict detection first (needs --type)")
    parser.add_argument("--config", default=str(root / "data" / "config.default.json"))
    args = parser.parse_args(argv)
    if args.detect and not args.asset_type:
        parser.error("--detect requires --type")

    logging.basicConfig(level=logging.WARNING)
    cfg = load_config(args.config)
    pipe = BatchOrchestrator(cfg, connect(cfg.db_path))
    if args.detect:
        created = pipe.detect_conflicts(args.lot, args.highway, args.asset_type)
        print(f"New conflicts: {len(created)}")

    needs = pipe.needs.list(args.lot, args.highway, args.asset_type)
    conflicts = pipe.conflicts.list(args.lot, args.highway, args.asset_type)
    print("Needs:", json.dumps(summarize(needs), ensure_ascii=False, indent=2))
    print("Conflicts:", json.dumps(summarize_conflicts(conflicts), ensure_ascii=False, indent=2))


if __name__ == "__main__":
    main()
