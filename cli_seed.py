from __future__ import annotations
import argparse
import logging
from pathlib import Path

import dotenv
dotenv.load_dotenv()

from asset_audit.config import load_config
from asset_audit.db import TABLE_SCHEMAS, InventoryRepository, NeedRepository, clear_table, connect, init_db
from asset_audit.models import AssetType
from asset_audit.simulate import generate_highway

"""
资产稽核系统的仿真数据初始化脚本：生成样例台账与项目需求后写入 Excel 工作簿。
1) 加载 config.default.json，确定 Excel 文件路径；
2) 可选清空所有工作表（--reset）；
3) 按资产类型生成一条公路的台账（cadastro_inicial）与带噪声的需求表；
4) 输出写入统计并提示下一步运行 cli_run。
"""


def main(argv=None):
    root = Path(__file__).resolve().parent
    parser = argparse.ArgumentParser(description="Seed a workbook with synthetic inventory and needs")
    parser.add_argument("--lot", default="L01")
    parser.add_argument("--highway", default="BR-040")
    parser.add_argument("--types", nargs="*", default=[t.value for t in AssetType])
    parser.add_argument("--assets", type=int, default=20, help="inventory items per type")
    parser.add_argument("--seed", type=int, default=7)
    parser.add_argument("--reset", action="store_true")
    parser.add_argument("--config", default=str(root / "data" / "config.default.json"))
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    cfg = load_config(args.config)
    conn = connect(cfg.db_path)
    init_db(conn)

    if args.reset:
        for t in TABLE_SCHEMAS:
            clear_table(conn, t)

    inventory_repo = InventoryRepository(conn)
    need_repo = NeedRepository(conn)
    n_inv = n_need = 0
    with conn.deferred():
        for i, type_name in enumerate(args.types):
            asset_type = AssetType(type_name)
            inventory, needs = generate_highway(asset_type, args.lot, args.highway,
                                                n_assets=args.assets, seed=args.seed + i)
            for rec in inventory:
                inventory_repo.add(rec)
            for need in needs:
                need_repo.add(need)
            n_inv += len(inventory)
            n_need += len(needs)

    print(f"Excel 数据写入: {cfg.db_path}")
    print(f"Inserted inventory records: {n_inv}")
    print(f"Inserted needs: {n_need}")
    print(f"Next: python cli_run.py --lot {args.lot} --highway {args.highway} --type <tipo>")


if __name__ == "__main__":
    main()
