from __future__ import annotations
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from .models import ConfigurationError

SYSTEM_DEFAULT_TOLERANCE_M = 50.0


@dataclass
class Config:
    db_path: Optional[str] = None
    default_tolerance_m: float = SYSTEM_DEFAULT_TOLERANCE_M
    default_tolerances_m: Dict[str, float] = field(default_factory=dict)
    overlap_floor_pct: float = 50.0
    km_tolerance: float = 0.05
    conflict_km_tolerance: float = 0.02
    conflict_distance_m: float = 20.0
    project_error_radius_m: Dict[str, float] = field(default_factory=dict)
    tiers: Dict[str, float] = field(default_factory=lambda: {"exato": 95.0, "alto": 75.0})
    batch_justification: str = "Reconciliação em lote: decisão do projeto mantida"
    service_alias_path: Optional[str] = None


def load_config(path: str | Path) -> Config:
    p = Path(path)
    try:
        raw = json.loads(p.read_text(encoding="utf-8"))
        cfg = Config(
            db_path=os.getenv("ASSET_AUDIT_DB") or raw["db_path"],
            default_tolerance_m=float(raw["default_tolerance_m"]),
            default_tolerances_m={k: float(v) for k, v in raw["default_tolerances_m"].items()},
            overlap_floor_pct=float(raw["overlap_floor_pct"]),
            km_tolerance=float(raw["km_tolerance"]),
            conflict_km_tolerance=float(raw["conflict_km_tolerance"]),
            conflict_distance_m=float(raw["conflict_distance_m"]),
            project_error_radius_m={k: float(v) for k, v in raw.get("project_error_radius_m", {}).items()},
            tiers={k: float(v) for k, v in raw["tiers"].items()},
            batch_justification=raw.get("batch_justification", Config.batch_justification),
            service_alias_path=raw.get("service_alias_path"),
        )
    except (OSError, ValueError, KeyError, TypeError, AttributeError) as exc:
        raise ConfigurationError(f"Invalid config file {p}: {exc}") from exc

    # 相对路径以配置文件所在目录为基准
    if cfg.db_path and not Path(cfg.db_path).is_absolute() and not os.getenv("ASSET_AUDIT_DB"):
        cfg.db_path = str(p.resolve().parent / cfg.db_path)
    if cfg.service_alias_path and not Path(cfg.service_alias_path).is_absolute():
        cfg.service_alias_path = str(p.resolve().parent / cfg.service_alias_path)
    return cfg
