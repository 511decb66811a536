from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from .base_data import profile_for
from .candidates import axis_overlap, km_pair, point_of
from .compatibility import is_compatible
from .judge import ServiceJudge
from .models import ConflictKind, ConflictRecord, GeometryKind, NeedRecord
from .utils import haversine_m, segment_overlap

logger = logging.getLogger(__name__)


class ConflictChecker:
    """只看需求表本身：同一位置的两行需求，服务互斥 -> 矛盾；服务相同 -> 重复导入。"""

    def __init__(self, judge: Optional[ServiceJudge] = None, km_tolerance: float = 0.02,
                 distance_m: float = 20.0, overlap_floor_pct: float = 50.0):
        self.judge = judge or ServiceJudge()
        self.km_tolerance = km_tolerance
        self.distance_m = distance_m
        self.overlap_floor_pct = overlap_floor_pct

    def check(self, needs: Sequence[NeedRecord]) -> List[ConflictRecord]:
        conflicts: List[ConflictRecord] = []
        rows = list(needs)
        declared = {n.id: self.judge.normalize(n.declared_service) for n in rows}
        for i in range(len(rows)):
            a = rows[i]
            for j in range(i + 1, len(rows)):
                b = rows[j]
                kind = self.pair_conflict_kind(a, b, declared[a.id], declared[b.id])
                if kind is None:
                    continue
                conflicts.append(self._record(a, b, kind, declared[a.id], declared[b.id]))
        logger.info("Conflict check over %d needs: %d conflicts", len(rows), len(conflicts))
        return conflicts

    def pair_conflict_kind(self, a: NeedRecord, b: NeedRecord,
                           svc_a: Optional[str], svc_b: Optional[str]) -> Optional[ConflictKind]:
        if a.asset_type != b.asset_type or a.highway_id != b.highway_id:
            return None
        if svc_a and svc_b and svc_a != svc_b:
            kind = ConflictKind.SERVICO_CONTRADICTORIO
        elif svc_a == svc_b:
            kind = ConflictKind.DUPLICATA_PROJETO
        else:
            return None
        if not self.same_location(a, b):
            return None
        # 属性不一致说明是不同的物理对象（例如同一 km 的两块不同标牌）
        if not is_compatible(a.asset_type, a, b, require_defining=False):
            return None
        return kind

    def same_location(self, a: NeedRecord, b: NeedRecord) -> bool:
        kind = profile_for(a.asset_type).geometry_kind
        if kind == GeometryKind.LINEAR:
            ka, kb = km_pair(a), km_pair(b)
            if ka and kb and ka[0] != ka[1] and kb[0] != kb[1]:
                _, pct_a = segment_overlap(ka[0], ka[1], kb[0], kb[1])
                _, pct_b = segment_overlap(kb[0], kb[1], ka[0], ka[1])
                return max(pct_a, pct_b) >= self.overlap_floor_pct
            pa, pa2, pb, pb2 = point_of(a), point_of(a, "final"), point_of(b), point_of(b, "final")
            if not (ka and kb) and pa and pa2 and pb and pb2:
                _, pct, offset = axis_overlap(pa, pa2, pb, pb2)
                return pct >= self.overlap_floor_pct and offset <= self.distance_m

        if a.km_inicial is not None and b.km_inicial is not None:
            if abs(float(a.km_inicial) - float(b.km_inicial)) <= self.km_tolerance + 1e-9:
                return True
        pa, pb = point_of(a), point_of(b)
        if pa and pb:
            return haversine_m(pa[0], pa[1], pb[0], pb[1]) <= self.distance_m
        return False

    def _record(self, a: NeedRecord, b: NeedRecord, kind: ConflictKind,
                svc_a: Optional[str], svc_b: Optional[str]) -> ConflictRecord:
        detail = (
            f"km {a.km_inicial} / {b.km_inicial}: {svc_a or '-'} x {svc_b or '-'}"
            f" (linhas {a.source_row if a.source_row is not None else '?'}"
            f", {b.source_row if b.source_row is not None else '?'})"
        )
        return ConflictRecord(
            id="",
            lot_id=a.lot_id,
            highway_id=a.highway_id,
            asset_type=a.asset_type,
            kind=kind,
            need_id_a=a.id,
            need_id_b=b.id,
            row_a=a.source_row,
            row_b=b.source_row,
            details=detail,
            detected_at=datetime.now(timezone.utc),
        )
