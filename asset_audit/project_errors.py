from __future__ import annotations
import logging
from typing import Dict, List, Optional, Sequence, Tuple

from .base_data import parse_asset_type
from .candidates import point_of
from .compatibility import normalize_side
from .models import AssetType, InputError, InventoryRecord, NeedRecord, Service
from .utils import haversine_m, is_blank, normalize_text

logger = logging.getLogger(__name__)

IMPLANTAR_COM_CADASTRO_EXISTENTE = "IMPLANTAR_COM_CADASTRO_EXISTENTE"
COORDENADAS_PROXIMAS_ATRIBUTOS_DIVERGENTES = "COORDENADAS_PROXIMAS_ATRIBUTOS_DIVERGENTES"

# 近距离判定（米）
NEAR_ANY_M = 50.0
NEAR_SIMILAR_M = 200.0
SIMILARITY_FLOOR_PCT = 50.0

COMPARED_FIELDS: Dict[AssetType, Tuple[str, ...]] = {
    AssetType.PLACAS: ("codigo", "tipo"),
    AssetType.PORTICOS: ("tipo", "lado"),
    AssetType.CILINDROS: ("tipo_refletivo", "local_implantacao"),
    AssetType.INSCRICOES: ("sigla", "tipo_inscricao"),
}


def attribute_similarity(asset_type: AssetType, need: NeedRecord, cand: InventoryRecord) -> float:
    names = COMPARED_FIELDS[asset_type]
    same = 0
    for f in names:
        a, b = need.attributes.get(f), cand.attributes.get(f)
        if is_blank(a) or is_blank(b):
            continue
        if f == "lado":
            same += normalize_side(a) == normalize_side(b)
        else:
            same += normalize_text(a) == normalize_text(b)
    return same / len(names) * 100.0


def classify(distance_m: float, similarity_pct: float, radius_m: float) -> Optional[str]:
    if distance_m < NEAR_ANY_M:
        return IMPLANTAR_COM_CADASTRO_EXISTENTE
    if distance_m < NEAR_SIMILAR_M and similarity_pct >= SIMILARITY_FLOOR_PCT:
        return IMPLANTAR_COM_CADASTRO_EXISTENTE
    if distance_m < radius_m and similarity_pct < SIMILARITY_FLOOR_PCT:
        return COORDENADAS_PROXIMAS_ATRIBUTOS_DIVERGENTES
    return None


def _nearest(need: NeedRecord, inventory: Sequence[InventoryRecord],
             radius_m: float) -> Optional[Tuple[InventoryRecord, float]]:
    p = point_of(need)
    best = None
    for cand in inventory:
        if not cand.active or cand.highway_id != need.highway_id or cand.asset_type != need.asset_type:
            continue
        q = point_of(cand)
        if q is None:
            continue
        d = haversine_m(p[0], p[1], q[0], q[1])
        if d <= radius_m and (best is None or d < best[1]):
            best = (cand, d)
    return best


def detect_project_errors(needs: Sequence[NeedRecord], inventory: Sequence[InventoryRecord],
                          asset_type: AssetType | str, radius_m: float) -> Tuple[List[NeedRecord], Dict[str, object]]:
    """
    对“Implantar”且尚未复核的需求，查找半径内最近的有效资产：
    很近（<50m）或较近且属性相似 -> 疑似重复实施；半径内但属性不同 -> 坐标或属性可能有误。
    Return: (状态有变化的需求, 汇总)
    """
    t = parse_asset_type(asset_type)
    if t not in COMPARED_FIELDS:
        raise InputError(f"Project error detection not supported for {t.value}")

    changed: List[NeedRecord] = []
    analysed = errors = 0
    for need in needs:
        service = need.final_service or need.inferred_service
        if need.reconciled or service != Service.IMPLANTAR.value:
            continue
        analysed += 1
        if point_of(need) is None:
            logger.debug("Need %s has no coordinates, skipping", need.id)
            continue

        hit = _nearest(need, inventory, radius_m)
        kind = None
        if hit is not None:
            cand, dist = hit
            kind = classify(dist, attribute_similarity(t, need, cand), radius_m)

        if kind is None:
            if need.project_error:
                need.project_error, need.project_error_kind, need.project_error_inventory_id = False, None, None
                changed.append(need)
            continue

        errors += 1
        need.project_error = True
        need.project_error_kind = kind
        need.project_error_inventory_id = cand.id
        changed.append(need)
        logger.info("Need %s flagged %s (inventory %s at %.1fm)", need.id, kind, cand.id, dist)

    summary = {
        "asset_type": t.value,
        "analysed": analysed,
        "errors": errors,
        "error_rate": round(errors / analysed * 100.0, 1) if analysed else 0.0,
    }
    return changed, summary
