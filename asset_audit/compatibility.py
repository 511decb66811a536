from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

from .base_data import SIDE_KEYWORDS, SIDE_LETTERS
from .models import AssetType
from .utils import is_blank, normalize_text, sanitize_number

logger = logging.getLogger(__name__)

SIDE_STRICT = "strict"
SIDE_AMBOS_WILDCARD = "ambos"


@dataclass(frozen=True)
class TypeRules:
    required: Tuple[str, ...] = ()
    exact: Tuple[str, ...] = ()
    # (字段, 容差, 是否相对容差)
    numeric: Tuple[Tuple[str, float, bool], ...] = ()
    side: Optional[str] = None


RULES: Dict[AssetType, TypeRules] = {
    AssetType.MARCAS_LONGITUDINAIS: TypeRules(
        exact=("posicao", "cor", "tipo_demarcacao"),
        numeric=(("largura_cm", 2.0, False),),
        side=SIDE_STRICT,
    ),
    AssetType.TACHAS: TypeRules(
        required=("local_implantacao",),
        exact=("local_implantacao", "corpo", "refletivo", "cor_refletivo"),
        side=SIDE_AMBOS_WILDCARD,
    ),
    AssetType.CILINDROS: TypeRules(
        required=("local_implantacao",),
        exact=("local_implantacao", "cor_corpo", "cor_refletivo"),
    ),
    AssetType.DEFENSAS: TypeRules(
        required=("funcao",),
        exact=("funcao", "especificacao_obstaculo_fixo", "nivel_contencao_en1317",
               "nivel_contencao_nchrp350", "geometria"),
        side=SIDE_STRICT,
    ),
    AssetType.PLACAS: TypeRules(
        required=("codigo",),
        exact=("codigo", "tipo", "suporte", "substrato"),
        side=SIDE_STRICT,
    ),
    AssetType.PORTICOS: TypeRules(
        required=("tipo",),
        exact=("tipo",),
        numeric=(("vao_horizontal_m", 0.10, True), ("altura_livre_m", 0.10, True)),
        side=SIDE_STRICT,
    ),
    AssetType.INSCRICOES: TypeRules(
        exact=("sigla", "tipo_inscricao", "cor"),
        numeric=(("area_m2", 0.10, True),),
    ),
}

# 比较时忽略内部空格的字段
NO_SPACE_FIELDS = {"codigo", "sigla"}


def normalize_side(value: Any) -> str:
    if is_blank(value):
        return ""
    s = normalize_text(value)
    if s in SIDE_LETTERS:
        return SIDE_LETTERS[s]
    for canon, words in SIDE_KEYWORDS:
        if any(w in s for w in words):
            return canon
    return s


def side_compatible(mode: Optional[str], side_need: Any, side_cand: Any) -> bool:
    if mode is None:
        return True
    a, b = normalize_side(side_need), normalize_side(side_cand)
    if not a or not b:
        return True
    if mode == SIDE_AMBOS_WILDCARD:
        return a == b or a == "ambos" or b == "ambos"
    return a == b


def _norm_value(field_name: str, value: Any) -> str:
    s = normalize_text(value)
    if field_name in NO_SPACE_FIELDS:
        s = s.replace(" ", "")
    return s


def _attrs(obj: Any) -> Mapping[str, Any]:
    if isinstance(obj, Mapping):
        return obj
    return getattr(obj, "attributes", None) or {}


def mismatch_reason(asset_type: AssetType, need: Any, candidate: Any,
                    require_defining: bool = True) -> Optional[str]:
    """返回第一条不满足的规则；全部满足时返回 None。"""
    rules = RULES[asset_type]
    na, ca = _attrs(need), _attrs(candidate)

    if require_defining:
        for f in rules.required:
            if is_blank(ca.get(f)):
                return f"REQUIRED_MISSING: {f}"

    if not side_compatible(rules.side, na.get("lado"), ca.get("lado")):
        return f"SIDE_MISMATCH: {na.get('lado')} vs {ca.get('lado')}"

    for f in rules.exact:
        vn, vc = na.get(f), ca.get(f)
        if is_blank(vn) or is_blank(vc):
            continue
        if _norm_value(f, vn) != _norm_value(f, vc):
            return f"ATTRIBUTE_MISMATCH: {f}={vn} vs {vc}"

    for f, tol, relative in rules.numeric:
        xn, xc = sanitize_number(na.get(f)), sanitize_number(ca.get(f))
        if xn is None or xc is None:
            continue
        limit = abs(xn) * tol if relative else tol
        if abs(xn - xc) > limit + 1e-9:
            return f"NUMERIC_MISMATCH: {f}={xn} vs {xc}"

    return None


def is_compatible(asset_type: AssetType, need: Any, candidate: Any,
                  require_defining: bool = True) -> bool:
    reason = mismatch_reason(asset_type, need, candidate, require_defining)
    if reason:
        logger.debug("Candidate %s rejected: %s", getattr(candidate, "id", "?"), reason)
        return False
    return True
