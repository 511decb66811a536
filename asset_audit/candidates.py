from __future__ import annotations
import logging
from typing import Dict, List, Optional, Sequence, Tuple

from .base_data import profile_for
from .compatibility import is_compatible
from .models import (
    GeometryKind,
    InputError,
    InventoryRecord,
    MatchCandidate,
    MatchOutcome,
    MatchTier,
    NeedRecord,
)
from .utils import haversine_m, project_onto_axis, segment_overlap

logger = logging.getLogger(__name__)


def point_of(rec, end: str = "inicial") -> Optional[Tuple[float, float]]:
    lat = getattr(rec, f"latitude_{end}")
    lon = getattr(rec, f"longitude_{end}")
    if lat is None or lon is None:
        return None
    return float(lat), float(lon)


def km_pair(rec) -> Optional[Tuple[float, float]]:
    if rec.km_inicial is None or rec.km_final is None:
        return None
    return float(rec.km_inicial), float(rec.km_final)


def axis_overlap(a: Tuple[float, float], b: Tuple[float, float],
                 p: Tuple[float, float], q: Tuple[float, float]) -> Tuple[float, float, float]:
    """
    只有坐标的线性要素：把候选两端投影到需求 A->B 轴上再算重叠。
    Return: (overlap_km, overlap_pct, 最大横向偏移 m)
    """
    length_km = haversine_m(a[0], a[1], b[0], b[1]) / 1000.0
    tp, off_p = project_onto_axis(a[0], a[1], b[0], b[1], p[0], p[1])
    tq, off_q = project_onto_axis(a[0], a[1], b[0], b[1], q[0], q[1])
    overlap_km, pct = segment_overlap(0.0, length_km, tp, tq)
    return overlap_km, pct, max(off_p, off_q)


def check_geometry(need: NeedRecord) -> GeometryKind:
    """几何不可用时抛 InputError（km 与经纬度都缺失）"""
    kind = profile_for(need.asset_type).geometry_kind
    if kind == GeometryKind.PONTUAL:
        if need.km_inicial is None and point_of(need) is None:
            raise InputError(f"Need {need.id}: missing both km and lat/lon")
        return kind
    if km_pair(need) is None and (point_of(need) is None or point_of(need, "final") is None):
        if need.km_inicial is None and point_of(need) is None:
            raise InputError(f"Need {need.id}: missing both km and lat/lon")
        raise InputError(f"Need {need.id}: linear geometry needs both ends (km or lat/lon)")
    return kind


class CandidateMatcher:
    """匹配引擎：对一条需求在同一公路、同类型的有效资产中给出排序后的候选。"""

    def __init__(self, overlap_floor_pct: float = 50.0, km_tolerance: float = 0.05,
                 tiers: Optional[Dict[str, float]] = None):
        self.overlap_floor_pct = overlap_floor_pct
        self.km_tolerance = km_tolerance
        tiers = tiers or {}
        self.tier_exato = float(tiers.get("exato", 95.0))
        self.tier_alto = float(tiers.get("alto", 75.0))

    def classify_tier(self, overlap_pct: float) -> MatchTier:
        if overlap_pct >= self.tier_exato:
            return MatchTier.EXATO
        if overlap_pct >= self.tier_alto:
            return MatchTier.ALTO
        return MatchTier.PARCIAL

    def find_candidates(self, need: NeedRecord, inventory: Sequence[InventoryRecord],
                        lateral_tolerance_m: Optional[float] = None) -> List[MatchCandidate]:
        kind = check_geometry(need)
        pool = [c for c in inventory if self._eligible(need, c)]
        if kind == GeometryKind.LINEAR:
            return self._linear(need, pool, lateral_tolerance_m)
        return self._pontual(need, pool)

    def select_match(self, need: NeedRecord, inventory: Sequence[InventoryRecord],
                     tolerance_m: float) -> MatchOutcome:
        """
        Pontual: 最近候选距离 <= tolerance_m 才算匹配；其余候选仍保留供界面查看。
        Linear: 入选门槛是重叠率下限，tolerance_m 只约束坐标模式下的横向偏移。
        """
        cands = self.find_candidates(need, inventory, lateral_tolerance_m=tolerance_m)
        best = None
        if cands:
            top = cands[0]
            if top.overlap_pct is not None:
                best = top
            elif top.distance_m is not None and top.distance_m <= tolerance_m:
                best = top
        if best is not None and best.overlap_pct is not None:
            best.distance_m = self._start_distance(need, best.inventory_id, inventory)
        if best is None:
            logger.debug("Need %s: no match (%d candidates, tolerance %.1fm)", need.id, len(cands), tolerance_m)
        return MatchOutcome(best=best, candidates=cands, tolerance_m=tolerance_m)

    def _eligible(self, need: NeedRecord, cand: InventoryRecord) -> bool:
        if not cand.active:
            return False
        if cand.highway_id != need.highway_id or cand.asset_type != need.asset_type:
            return False
        return is_compatible(need.asset_type, need, cand)

    def _pontual(self, need: NeedRecord, pool: List[InventoryRecord]) -> List[MatchCandidate]:
        need_pt = point_of(need)
        out: List[MatchCandidate] = []
        for cand in pool:
            dkm = None
            if need.km_inicial is not None and cand.km_inicial is not None:
                dkm = abs(float(cand.km_inicial) - float(need.km_inicial))
                if dkm > self.km_tolerance + 1e-9:
                    continue
            cand_pt = point_of(cand)
            if need_pt and cand_pt:
                dist = haversine_m(need_pt[0], need_pt[1], cand_pt[0], cand_pt[1])
            elif dkm is not None:
                dist = dkm * 1000.0
            else:
                continue
            out.append(MatchCandidate(inventory_id=cand.id, distance_m=round(dist, 2)))
        # sorted() 是稳定排序：距离相同时保留输入顺序
        return sorted(out, key=lambda c: c.distance_m)

    def _linear(self, need: NeedRecord, pool: List[InventoryRecord],
                lateral_tolerance_m: Optional[float]) -> List[MatchCandidate]:
        need_km = km_pair(need)
        need_a, need_b = point_of(need), point_of(need, "final")
        out: List[MatchCandidate] = []
        for cand in pool:
            cand_km = km_pair(cand)
            if need_km and cand_km:
                overlap_km, pct = segment_overlap(need_km[0], need_km[1], cand_km[0], cand_km[1])
            elif need_a and need_b and point_of(cand) and point_of(cand, "final"):
                overlap_km, pct, offset = axis_overlap(need_a, need_b, point_of(cand), point_of(cand, "final"))
                if lateral_tolerance_m is not None and offset > lateral_tolerance_m:
                    continue
            else:
                continue
            # 与导入端一致：km 保留 3 位，百分比 1 位
            overlap_km, pct = round(overlap_km, 3), round(pct, 1)
            if pct < self.overlap_floor_pct:
                continue
            out.append(MatchCandidate(
                inventory_id=cand.id,
                overlap_km=overlap_km,
                overlap_pct=pct,
                tier=self.classify_tier(pct),
            ))
        return sorted(out, key=lambda c: c.overlap_pct, reverse=True)

    @staticmethod
    def _start_distance(need: NeedRecord, inventory_id: str,
                        inventory: Sequence[InventoryRecord]) -> Optional[float]:
        need_pt = point_of(need)
        if need_pt is None:
            return None
        for cand in inventory:
            if cand.id == inventory_id:
                cand_pt = point_of(cand)
                if cand_pt is None:
                    return None
                return round(haversine_m(need_pt[0], need_pt[1], cand_pt[0], cand_pt[1]))
        return None
