from __future__ import annotations
import json
import logging
import threading
from contextlib import contextmanager
from dataclasses import fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import pandas as pd

from .base_data import parse_asset_type
from .models import (
    AssetType,
    ChosenSource,
    ConflictKind,
    ConflictRecord,
    InventoryRecord,
    MatchCandidate,
    MatchTier,
    NeedRecord,
    NotFoundError,
    Origin,
    PersistenceError,
    ReconciliationDecision,
    ReconciliationStatus,
)
from .utils import parse_coordinate, sanitize_number, sanitize_text

logger = logging.getLogger(__name__)

GEOMETRY_FIELDS = [
    "km_inicial", "km_final",
    "latitude_inicial", "longitude_inicial",
    "latitude_final", "longitude_final",
]

TABLE_SCHEMAS: Dict[str, List[str]] = {
    "needs": [
        "id", "asset_type", "lot_id", "highway_id", *GEOMETRY_FIELDS, "attributes_json",
        "declared_service", "inferred_service", "final_service",
        "matched_inventory_id", "match_distance_m", "match_overlap_pct", "match_tier",
        "divergence", "reconciled", "reconciliation_status",
        "has_conflict", "conflict_kind", "conflict_details",
        "project_error", "project_error_kind", "project_error_inventory_id",
        "source_row", "updated_at",
    ],
    "inventory": [
        "id", "asset_type", "highway_id", "lot_id", *GEOMETRY_FIELDS,
        "attributes_json", "origin", "active", "created_at",
    ],
    "tolerances": ["highway_id", "asset_type", "tolerance_m", "updated_at"],
    "conflicts": [
        "id", "lot_id", "highway_id", "asset_type", "kind", "need_id_a", "need_id_b",
        "row_a", "row_b", "details", "detected_at",
        "resolved", "resolved_at", "resolved_by", "resolution_justification",
    ],
    "decisions": [
        "id", "need_id", "decided_by", "decided_at", "chosen_source",
        "justification", "servico_final", "batch",
    ],
    "match_logs": ["id", "need_id", "candidates_json", "final_json", "created_at"],
}

# 读回 Excel 时这些列可能变成数字，统一转成字符串再比较
ID_COLUMNS = {
    "id", "lot_id", "highway_id", "need_id", "need_id_a", "need_id_b",
    "matched_inventory_id", "project_error_inventory_id",
}

# 需求表中视为“服务”的列名（表格里常写作 solucao / servico）
SERVICE_COLUMNS = ("declared_service", "servico", "solucao", "serviço", "solução")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _now_str() -> str:
    return _now().isoformat(timespec="seconds")


def _empty_table(name: str) -> pd.DataFrame:
    return pd.DataFrame(columns=TABLE_SCHEMAS[name], dtype=object)


def _ensure_columns(df: pd.DataFrame, columns: List[str]) -> pd.DataFrame:
    result = df.copy()
    for col in columns:
        if col not in result.columns:
            result[col] = None
    return result[columns].astype(object)


def _clean_value(val: Any) -> Any:
    if val is None:
        return None
    try:
        if pd.isna(val):
            return None
    except (TypeError, ValueError):
        pass
    if hasattr(val, "item") and not isinstance(val, (str, bytes)):
        # numpy 标量 -> Python 原生类型
        return val.item()
    return val


def _row_to_dict(row: pd.Series) -> Dict[str, Any]:
    return {k: _clean_value(v) for k, v in row.to_dict().items()}


def _id_str(val: Any) -> Optional[str]:
    val = _clean_value(val)
    if val is None:
        return None
    if isinstance(val, float) and val.is_integer():
        val = int(val)
    return str(val)


def _next_pk(df: pd.DataFrame, column: str = "id") -> int:
    if df.empty or column not in df.columns:
        return 1
    max_val = pd.to_numeric(df[column], errors="coerce").max()
    if pd.isna(max_val):
        return 1
    return int(max_val) + 1


def _append_rows(df: pd.DataFrame, rows: List[Dict[str, Any]]) -> pd.DataFrame:
    new = pd.DataFrame(rows, columns=df.columns, dtype=object)
    if df.empty:
        return new
    return pd.concat([df, new], ignore_index=True)


def _upsert_row(df: pd.DataFrame, row: Dict[str, Any], key_field: str) -> pd.DataFrame:
    mask = df[key_field] == row[key_field]
    if mask.any():
        idx = df.index[mask][0]
        for col in df.columns:
            df.at[idx, col] = row.get(col)
        return df
    return _append_rows(df, [row])


def _json_default(obj: Any) -> Any:
    if hasattr(obj, "item"):
        return obj.item()
    if isinstance(obj, datetime):
        return obj.isoformat()
    return str(obj)


def _dump(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=_json_default)


def _load(text: Any, default: Any) -> Any:
    if not text:
        return default
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        logger.warning("Ignoring malformed JSON cell: %r", text)
        return default


def _enum_value(val: Any) -> Any:
    return getattr(val, "value", val)


def _parse_dt(val: Any) -> Optional[datetime]:
    val = _clean_value(val)
    if val is None:
        return None
    if isinstance(val, datetime):
        return val
    return datetime.fromisoformat(str(val))


def _as_bool(val: Any) -> bool:
    val = _clean_value(val)
    if isinstance(val, str):
        return val.strip().lower() in ("true", "1", "sim", "yes")
    return bool(val)


def _as_int(val: Any) -> Optional[int]:
    f = sanitize_number(_clean_value(val))
    return None if f is None else int(f)


class ExcelConnection:
    """简单的 Excel “连接”对象，维护内存表缓存并提供保存方法。path=None 时只存在于内存。"""

    def __init__(self, path: str | Path | None = None):
        self.path = Path(path) if path else None
        self.lock = threading.RLock()
        self._defer_depth = 0
        self._dirty = False
        self.tables: Dict[str, pd.DataFrame] = {
            name: _empty_table(name) for name in TABLE_SCHEMAS
        }
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if self.path.exists():
            try:
                xls = pd.read_excel(self.path, sheet_name=None, dtype=object)
            except (OSError, ValueError) as exc:
                raise PersistenceError(f"Cannot read workbook {self.path}: {exc}") from exc
            for name, cols in TABLE_SCHEMAS.items():
                if name in xls:
                    df = _ensure_columns(xls[name], cols)
                    for col in ID_COLUMNS.intersection(cols):
                        df[col] = df[col].map(_id_str)
                    self.tables[name] = df

    def save(self) -> None:
        with self.lock:
            if self._defer_depth:
                self._dirty = True
                return
            if self.path is None:
                self._dirty = False
                return
            try:
                with pd.ExcelWriter(self.path, engine="openpyxl") as writer:
                    for name, df in self.tables.items():
                        df.to_excel(writer, sheet_name=name, index=False)
            except OSError as exc:
                # 写盘失败时保留脏标记，下次 save() 重试
                self._dirty = True
                raise PersistenceError(f"Cannot write workbook {self.path}: {exc}") from exc
            self._dirty = False

    @contextmanager
    def deferred(self) -> Iterator["ExcelConnection"]:
        """批处理期间把多次 save() 合并为结束时的一次写盘。"""
        with self.lock:
            self._defer_depth += 1
            try:
                yield self
            finally:
                self._defer_depth -= 1
                if self._defer_depth == 0 and self._dirty:
                    self.save()


def connect(db_path: str | Path | None) -> ExcelConnection:
    return ExcelConnection(db_path)


def init_db(conn: ExcelConnection) -> None:
    conn.save()


def clear_table(conn: ExcelConnection, table: str) -> None:
    if table not in TABLE_SCHEMAS:
        raise ValueError(f"Unknown table: {table}")
    with conn.lock:
        conn.tables[table] = _empty_table(table)
        conn.save()


# ---------------------------------------------------------------------------
# 行 <-> 记录

def _need_to_row(n: NeedRecord) -> Dict[str, Any]:
    row = {
        "id": n.id,
        "asset_type": _enum_value(n.asset_type),
        "lot_id": n.lot_id,
        "highway_id": n.highway_id,
        "attributes_json": _dump(n.attributes or {}),
        "declared_service": n.declared_service,
        "inferred_service": n.inferred_service,
        "final_service": n.final_service,
        "matched_inventory_id": n.matched_inventory_id,
        "match_distance_m": n.match_distance_m,
        "match_overlap_pct": n.match_overlap_pct,
        "match_tier": _enum_value(n.match_tier),
        "divergence": bool(n.divergence),
        "reconciled": bool(n.reconciled),
        "reconciliation_status": _enum_value(n.reconciliation_status),
        "has_conflict": bool(n.has_conflict),
        "conflict_kind": _enum_value(n.conflict_kind),
        "conflict_details": n.conflict_details,
        "project_error": bool(n.project_error),
        "project_error_kind": n.project_error_kind,
        "project_error_inventory_id": n.project_error_inventory_id,
        "source_row": n.source_row,
        "updated_at": _now_str(),
    }
    for f in GEOMETRY_FIELDS:
        row[f] = getattr(n, f)
    return row


def _row_to_need(row: Dict[str, Any]) -> NeedRecord:
    tier = row.get("match_tier")
    kind = row.get("conflict_kind")
    status = row.get("reconciliation_status")
    need = NeedRecord(
        id=_id_str(row["id"]),
        asset_type=parse_asset_type(row["asset_type"]),
        lot_id=_id_str(row.get("lot_id")),
        highway_id=_id_str(row.get("highway_id")),
        attributes=_load(row.get("attributes_json"), {}),
        declared_service=row.get("declared_service"),
        inferred_service=row.get("inferred_service"),
        final_service=row.get("final_service"),
        matched_inventory_id=_id_str(row.get("matched_inventory_id")),
        match_distance_m=sanitize_number(row.get("match_distance_m")),
        match_overlap_pct=sanitize_number(row.get("match_overlap_pct")),
        match_tier=MatchTier(tier) if tier else None,
        divergence=_as_bool(row.get("divergence")),
        reconciled=_as_bool(row.get("reconciled")),
        reconciliation_status=ReconciliationStatus(status) if status else ReconciliationStatus.SEM_DIVERGENCIA,
        has_conflict=_as_bool(row.get("has_conflict")),
        conflict_kind=ConflictKind(kind) if kind else None,
        conflict_details=row.get("conflict_details"),
        project_error=_as_bool(row.get("project_error")),
        project_error_kind=row.get("project_error_kind"),
        project_error_inventory_id=_id_str(row.get("project_error_inventory_id")),
        source_row=_as_int(row.get("source_row")),
    )
    for f in GEOMETRY_FIELDS:
        setattr(need, f, sanitize_number(row.get(f)))
    return need


def _inventory_to_row(r: InventoryRecord) -> Dict[str, Any]:
    row = {
        "id": r.id,
        "asset_type": _enum_value(r.asset_type),
        "highway_id": r.highway_id,
        "lot_id": r.lot_id,
        "attributes_json": _dump(r.attributes or {}),
        "origin": _enum_value(r.origin),
        "active": bool(r.active),
        "created_at": _now_str(),
    }
    for f in GEOMETRY_FIELDS:
        row[f] = getattr(r, f)
    return row


def _row_to_inventory(row: Dict[str, Any]) -> InventoryRecord:
    origin = row.get("origin")
    rec = InventoryRecord(
        id=_id_str(row["id"]),
        asset_type=parse_asset_type(row["asset_type"]),
        highway_id=_id_str(row.get("highway_id")),
        lot_id=_id_str(row.get("lot_id")),
        attributes=_load(row.get("attributes_json"), {}),
        origin=Origin(origin) if origin else Origin.CADASTRO_INICIAL,
        active=_as_bool(row.get("active")) if row.get("active") is not None else True,
    )
    for f in GEOMETRY_FIELDS:
        setattr(rec, f, sanitize_number(row.get(f)))
    return rec


def _conflict_to_row(c: ConflictRecord) -> Dict[str, Any]:
    return {
        "id": c.id,
        "lot_id": c.lot_id,
        "highway_id": c.highway_id,
        "asset_type": _enum_value(c.asset_type),
        "kind": _enum_value(c.kind),
        "need_id_a": c.need_id_a,
        "need_id_b": c.need_id_b,
        "row_a": c.row_a,
        "row_b": c.row_b,
        "details": c.details,
        "detected_at": c.detected_at.isoformat(timespec="seconds") if c.detected_at else _now_str(),
        "resolved": bool(c.resolved),
        "resolved_at": c.resolved_at.isoformat(timespec="seconds") if c.resolved_at else None,
        "resolved_by": c.resolved_by,
        "resolution_justification": c.resolution_justification,
    }


def _row_to_conflict(row: Dict[str, Any]) -> ConflictRecord:
    return ConflictRecord(
        id=_id_str(row["id"]),
        lot_id=_id_str(row.get("lot_id")),
        highway_id=_id_str(row.get("highway_id")),
        asset_type=parse_asset_type(row["asset_type"]),
        kind=ConflictKind(row["kind"]),
        need_id_a=_id_str(row.get("need_id_a")),
        need_id_b=_id_str(row.get("need_id_b")),
        row_a=_as_int(row.get("row_a")),
        row_b=_as_int(row.get("row_b")),
        details=row.get("details") or "",
        detected_at=_parse_dt(row.get("detected_at")),
        resolved=_as_bool(row.get("resolved")),
        resolved_at=_parse_dt(row.get("resolved_at")),
        resolved_by=row.get("resolved_by"),
        resolution_justification=row.get("resolution_justification"),
    )


def _row_to_decision(row: Dict[str, Any]) -> ReconciliationDecision:
    return ReconciliationDecision(
        need_id=_id_str(row["need_id"]),
        decided_by=row.get("decided_by") or "",
        decided_at=_parse_dt(row.get("decided_at")),
        chosen_source=ChosenSource(row["chosen_source"]),
        justification=row.get("justification") or "",
        servico_final=row.get("servico_final") or "",
        batch=_as_bool(row.get("batch")),
    )


# ---------------------------------------------------------------------------
# 仓储

class _Repository:
    table = ""

    def __init__(self, conn: ExcelConnection):
        self.conn = conn

    @property
    def df(self) -> pd.DataFrame:
        return self.conn.tables[self.table]

    def _store(self, df: pd.DataFrame) -> None:
        self.conn.tables[self.table] = df
        self.conn.save()

    def _rows(self, df: Optional[pd.DataFrame] = None) -> List[Dict[str, Any]]:
        df = self.df if df is None else df
        return [_row_to_dict(row) for _, row in df.iterrows()]


class NeedRepository(_Repository):
    table = "needs"
    _fields = {f.name for f in fields(NeedRecord)}

    def list(self, lot_id: Optional[str] = None, highway_id: Optional[str] = None,
             asset_type: AssetType | str | None = None, only_unreconciled: bool = False) -> List[NeedRecord]:
        df = self.df
        if lot_id is not None:
            df = df[df["lot_id"] == str(lot_id)]
        if highway_id is not None:
            df = df[df["highway_id"] == str(highway_id)]
        if asset_type is not None:
            df = df[df["asset_type"] == parse_asset_type(asset_type).value]
        needs = [_row_to_need(row) for row in self._rows(df)]
        if only_unreconciled:
            needs = [n for n in needs if not n.reconciled]
        return needs

    def get(self, need_id: str) -> Optional[NeedRecord]:
        match = self.df[self.df["id"] == str(need_id)]
        if match.empty:
            return None
        return _row_to_need(_row_to_dict(match.iloc[0]))

    def add(self, need: NeedRecord) -> NeedRecord:
        with self.conn.lock:
            if not need.id:
                need.id = str(_next_pk(self.df))
            self._write(need)
        return need

    def save(self, need: NeedRecord) -> NeedRecord:
        with self.conn.lock:
            self._write(need)
        return need

    def update(self, need_id: str, changes: Dict[str, Any]) -> NeedRecord:
        unknown = set(changes) - self._fields
        if unknown:
            raise PersistenceError(f"Unknown need fields: {sorted(unknown)}")
        with self.conn.lock:
            need = self.get(need_id)
            if need is None:
                raise NotFoundError(f"Need not found: {need_id}")
            for k, v in changes.items():
                setattr(need, k, v)
            self._write(need)
        return need

    def delete(self, need_id: str) -> bool:
        with self.conn.lock:
            mask = self.df["id"] == str(need_id)
            if not mask.any():
                return False
            self._store(self.df[~mask].reset_index(drop=True))
        return True

    def _write(self, need: NeedRecord) -> None:
        try:
            df = _upsert_row(self.df, _need_to_row(need), "id")
        except (KeyError, ValueError, TypeError) as exc:
            raise PersistenceError(f"Cannot write need {need.id}: {exc}") from exc
        self._store(df)


class InventoryRepository(_Repository):
    table = "inventory"

    def list(self, highway_id: Optional[str] = None, asset_type: AssetType | str | None = None,
             active_only: bool = True) -> List[InventoryRecord]:
        df = self.df
        if highway_id is not None:
            df = df[df["highway_id"] == str(highway_id)]
        if asset_type is not None:
            df = df[df["asset_type"] == parse_asset_type(asset_type).value]
        records = [_row_to_inventory(row) for row in self._rows(df)]
        if active_only:
            records = [r for r in records if r.active]
        return records

    def get(self, inventory_id: str) -> Optional[InventoryRecord]:
        match = self.df[self.df["id"] == str(inventory_id)]
        if match.empty:
            return None
        return _row_to_inventory(_row_to_dict(match.iloc[0]))

    def add(self, record: InventoryRecord) -> InventoryRecord:
        with self.conn.lock:
            if not record.id:
                record.id = str(_next_pk(self.df))
            self._store(_upsert_row(self.df, _inventory_to_row(record), "id"))
        return record


class ToleranceRepository(_Repository):
    """
    容差查找顺序：公路+类型 -> 公路通用行（asset_type 为空）-> 类型默认值 -> 系统默认值
    """
    table = "tolerances"

    def __init__(self, conn: ExcelConnection, defaults: Optional[Dict[str, float]] = None,
                 system_default: float = 50.0):
        super().__init__(conn)
        self.defaults = defaults or {}
        self.system_default = system_default

    def get(self, highway_id: str, asset_type: AssetType | str) -> float:
        t = parse_asset_type(asset_type)
        df = self.df[self.df["highway_id"] == str(highway_id)]
        specific, generic = None, None
        for row in self._rows(df):
            value = sanitize_number(row.get("tolerance_m"))
            if value is None or value <= 0:
                continue
            if row.get("asset_type") == t.value:
                specific = value
            elif not row.get("asset_type"):
                generic = value
        if specific is not None:
            return specific
        if generic is not None:
            return generic
        return float(self.defaults.get(t.value, self.system_default))

    def set(self, highway_id: str, asset_type: AssetType | str | None, meters: float) -> None:
        if meters is None or float(meters) <= 0:
            raise ValueError(f"Tolerance must be positive: {meters}")
        type_value = parse_asset_type(asset_type).value if asset_type else None
        row = {
            "highway_id": str(highway_id),
            "asset_type": type_value,
            "tolerance_m": float(meters),
            "updated_at": _now_str(),
        }
        with self.conn.lock:
            df = self.df
            same_type = df["asset_type"] == type_value if type_value else df["asset_type"].isna()
            mask = (df["highway_id"] == str(highway_id)) & same_type
            if mask.any():
                idx = df.index[mask][0]
                for col, val in row.items():
                    df.at[idx, col] = val
            else:
                df = _append_rows(df, [row])
            self._store(df)


class ConflictRepository(_Repository):
    table = "conflicts"

    def list(self, lot_id: Optional[str] = None, highway_id: Optional[str] = None,
             asset_type: AssetType | str | None = None, only_unresolved: bool = False) -> List[ConflictRecord]:
        df = self.df
        if lot_id is not None:
            df = df[df["lot_id"] == str(lot_id)]
        if highway_id is not None:
            df = df[df["highway_id"] == str(highway_id)]
        if asset_type is not None:
            df = df[df["asset_type"] == parse_asset_type(asset_type).value]
        conflicts = [_row_to_conflict(row) for row in self._rows(df)]
        if only_unresolved:
            conflicts = [c for c in conflicts if not c.resolved]
        return conflicts

    def get(self, conflict_id: str) -> Optional[ConflictRecord]:
        match = self.df[self.df["id"] == str(conflict_id)]
        if match.empty:
            return None
        return _row_to_conflict(_row_to_dict(match.iloc[0]))

    def referencing(self, need_id: str, only_unresolved: bool = True) -> List[ConflictRecord]:
        nid = str(need_id)
        return [c for c in self.list(only_unresolved=only_unresolved)
                if nid in (c.need_id_a, c.need_id_b)]

    def add(self, conflict: ConflictRecord) -> Tuple[ConflictRecord, bool]:
        """同一对需求 + 同一类型已登记过则不重复写入；返回 (记录, 是否新建)。"""
        pair = {conflict.need_id_a, conflict.need_id_b}
        with self.conn.lock:
            for existing in self.list():
                if existing.kind == conflict.kind and {existing.need_id_a, existing.need_id_b} == pair:
                    return existing, False
            conflict.id = str(_next_pk(self.df))
            self._store(_append_rows(self.df, [_conflict_to_row(conflict)]))
        return conflict, True

    def resolve(self, conflict_id: str, justification: str, resolved_by: str) -> ConflictRecord:
        with self.conn.lock:
            conflict = self.get(conflict_id)
            if conflict is None:
                raise NotFoundError(f"Conflict not found: {conflict_id}")
            conflict.resolved = True
            conflict.resolved_at = _now()
            conflict.resolved_by = resolved_by
            conflict.resolution_justification = justification
            self._store(_upsert_row(self.df, _conflict_to_row(conflict), "id"))
        return conflict

    def delete_need(self, need_id: str) -> bool:
        return NeedRepository(self.conn).delete(need_id)


class DecisionRepository(_Repository):
    """人工/批量裁决的审计表，只追加。"""
    table = "decisions"

    def add(self, decision: ReconciliationDecision) -> None:
        with self.conn.lock:
            row = {
                "id": _next_pk(self.df),
                "need_id": decision.need_id,
                "decided_by": decision.decided_by,
                "decided_at": decision.decided_at.isoformat(timespec="seconds"),
                "chosen_source": _enum_value(decision.chosen_source),
                "justification": decision.justification,
                "servico_final": decision.servico_final,
                "batch": bool(decision.batch),
            }
            self._store(_append_rows(self.df, [row]))

    def list(self, need_id: Optional[str] = None) -> List[ReconciliationDecision]:
        df = self.df
        if need_id is not None:
            df = df[df["need_id"] == str(need_id)]
        return [_row_to_decision(row) for row in self._rows(df)]


class MatchLogRepository(_Repository):
    table = "match_logs"

    def add(self, need_id: str, candidates: Sequence[MatchCandidate], final: Dict[str, Any]) -> None:
        with self.conn.lock:
            row = {
                "id": _next_pk(self.df),
                "need_id": need_id,
                "candidates_json": _dump([
                    {
                        "inventory_id": c.inventory_id,
                        "distance_m": c.distance_m,
                        "overlap_km": c.overlap_km,
                        "overlap_pct": c.overlap_pct,
                        "tier": _enum_value(c.tier),
                    }
                    for c in candidates
                ]),
                "final_json": _dump(final),
                "created_at": _now_str(),
            }
            self._store(_append_rows(self.df, [row]))

    def list(self, need_id: Optional[str] = None) -> List[Dict[str, Any]]:
        df = self.df
        if need_id is not None:
            df = df[df["need_id"] == str(need_id)]
        out = []
        for row in self._rows(df):
            out.append({
                "need_id": _id_str(row["need_id"]),
                "candidates": _load(row.get("candidates_json"), []),
                "final": _load(row.get("final_json"), {}),
                "created_at": row.get("created_at"),
            })
        return out


# ---------------------------------------------------------------------------
# 表格导入：列名即记录字段，其余列进入 attributes

def _split_row(row: Dict[str, Any], reserved: Sequence[str]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    core, attrs = {}, {}
    for key, val in row.items():
        k = str(key).strip()
        if k in reserved:
            core[k] = val
            continue
        if isinstance(val, str):
            val = sanitize_text(val)
        if val is not None:
            attrs[k] = val
    return core, attrs


def _geometry(core: Dict[str, Any]) -> Dict[str, Optional[float]]:
    geo = {}
    for f in GEOMETRY_FIELDS:
        parse = parse_coordinate if f.startswith(("lat", "lon")) else sanitize_number
        geo[f] = parse(core.get(f))
    return geo


def import_needs_frame(conn: ExcelConnection, df: pd.DataFrame, lot_id: str, highway_id: str,
                       asset_type: AssetType | str, first_row: int = 2) -> List[NeedRecord]:
    """
    first_row: 第一条数据在表格中的行号（表头占第 1 行），写入 source_row 以便追溯。
    """
    t = parse_asset_type(asset_type)
    repo = NeedRepository(conn)
    reserved = ["id", *GEOMETRY_FIELDS, *SERVICE_COLUMNS]
    out: List[NeedRecord] = []
    with conn.deferred():
        for offset, (_, series) in enumerate(df.iterrows()):
            core, attrs = _split_row(_row_to_dict(series), reserved)
            declared = None
            for col in SERVICE_COLUMNS:
                if col in core:
                    declared = sanitize_text(core[col])
                    break
            need = NeedRecord(
                id=_id_str(core.get("id")) or "",
                asset_type=t,
                lot_id=str(lot_id),
                highway_id=str(highway_id),
                attributes=attrs,
                declared_service=declared,
                source_row=first_row + offset,
                **_geometry(core),
            )
            out.append(repo.add(need))
    logger.info("Imported %d needs for lot=%s highway=%s type=%s", len(out), lot_id, highway_id, t.value)
    return out


def import_inventory_frame(conn: ExcelConnection, df: pd.DataFrame, highway_id: str,
                           asset_type: AssetType | str, lot_id: Optional[str] = None) -> List[InventoryRecord]:
    t = parse_asset_type(asset_type)
    repo = InventoryRepository(conn)
    reserved = ["id", "active", "origin", *GEOMETRY_FIELDS]
    out: List[InventoryRecord] = []
    with conn.deferred():
        for _, series in df.iterrows():
            core, attrs = _split_row(_row_to_dict(series), reserved)
            active = core.get("active")
            rec = InventoryRecord(
                id=_id_str(core.get("id")) or "",
                asset_type=t,
                highway_id=str(highway_id),
                lot_id=str(lot_id) if lot_id is not None else None,
                attributes=attrs,
                origin=Origin(core["origin"]) if core.get("origin") else Origin.CADASTRO_INICIAL,
                active=True if active is None else _as_bool(active),
                **_geometry(core),
            )
            out.append(repo.add(rec))
    logger.info("Imported %d inventory records for highway=%s type=%s", len(out), highway_id, t.value)
    return out
