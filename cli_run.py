from __future__ import annotations
import argparse
import json
import logging
import os
from pathlib import Path

import dotenv
dotenv.load_dotenv()

from asset_audit.config import load_config
from asset_audit.db import connect
from asset_audit.models import ConfigurationError
from asset_audit.pipeline import BatchOrchestrator
from asset_audit.utils import EnhancedJSONEncoder


def main(argv=None) -> int:
    root = Path(__file__).resolve().parent
    parser = argparse.ArgumentParser(description="Match project needs against the asset inventory")
    parser.add_argument("--lot", required=True)
    parser.add_argument("--highway", required=True)
    parser.add_argument("--type", required=True, dest="asset_type")
    parser.add_argument("--force", action="store_true", help="reprocess already reconciled needs")
    parser.add_argument("--conflicts", action="store_true", help="also run conflict detection")
    parser.add_argument("--config", default=str(root / "data" / "config.default.json"))
    args = parser.parse_args(argv)

    logging.basicConfig(level=os.getenv("ASSET_AUDIT_LOG_LEVEL", "INFO"),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        cfg = load_config(args.config)
        conn = connect(cfg.db_path)
        pipe = BatchOrchestrator(cfg, conn)
        report = pipe.run(args.lot, args.highway, args.asset_type, force_reprocess=args.force)
    except ConfigurationError as exc:
        logging.getLogger(__name__).error("%s", exc)
        return 2

    out = {"batch": report}
    if args.conflicts:
        out["new_conflicts"] = pipe.detect_conflicts(args.lot, args.highway, args.asset_type)
    print(json.dumps(out, cls=EnhancedJSONEncoder, ensure_ascii=False, indent=2))
    print("Excel 数据位于:", cfg.db_path)
    return 1 if report.persistence_error else 0


if __name__ == "__main__":
    raise SystemExit(main())
