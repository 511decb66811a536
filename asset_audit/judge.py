from __future__ import annotations
import logging
from typing import List, Optional, Sequence, Tuple

from .base_data import SERVICE_KEYWORDS, profile_for
from .models import (
    MatchOutcome,
    NeedRecord,
    ReconciliationStatus,
    Service,
    ServiceEvaluation,
)
from .utils import is_blank, normalize_text, sanitize_number

logger = logging.getLogger(__name__)


def normalize_service(text: Optional[str],
                      keywords: Sequence[Tuple[Service, List[str]]] = SERVICE_KEYWORDS) -> Optional[str]:
    """
    表格自由文本 -> {Implantar, Substituir, Remover, Manter}。
    空值返回 None；无法识别的文本原样（去首尾空白）返回。
    """
    if is_blank(text):
        return None
    s = normalize_text(text)
    for svc, words in keywords:
        if any(w in s for w in words):
            return svc.value
    return str(text).strip()


def removal_signals(need: NeedRecord) -> List[str]:
    signals = []
    attrs = need.attributes or {}
    if sanitize_number(attrs.get("quantidade")) == 0:
        signals.append("quantidade=0")
    if sanitize_number(attrs.get("extensao_metros")) == 0:
        signals.append("extensao_metros=0")
    if "remov" in normalize_text(need.declared_service):
        signals.append("solucao=remov")
    return signals


def infer_service(need: NeedRecord, matched: bool) -> str:
    if not matched:
        return Service.IMPLANTAR.value
    if removal_signals(need):
        return Service.REMOVER.value
    return Service.SUBSTITUIR.value


class ServiceJudge:
    """服务推断 + 分歧判定。周期类型信任自动结果，非周期类型匹配后一律交人工确认。"""

    def __init__(self, keywords: Optional[Sequence[Tuple[Service, List[str]]]] = None) -> None:
        self.keywords = keywords or SERVICE_KEYWORDS

    def normalize(self, text: Optional[str]) -> Optional[str]:
        return normalize_service(text, self.keywords)

    def evaluate(self, need: NeedRecord, outcome: MatchOutcome) -> ServiceEvaluation:
        inferred = infer_service(need, outcome.matched)
        declared = self.normalize(need.declared_service)
        final = declared or inferred

        if profile_for(need.asset_type).recurrent:
            divergence = bool(declared) and declared != inferred
        else:
            divergence = outcome.matched

        if divergence:
            logger.debug("Need %s divergent: declared=%s inferred=%s matched=%s",
                         need.id, declared, inferred, outcome.matched)
        status = ReconciliationStatus.PENDENTE_APROVACAO if divergence else ReconciliationStatus.SEM_DIVERGENCIA
        return ServiceEvaluation(
            inferred_service=inferred,
            declared_normalized=declared,
            final_service=final,
            divergence=divergence,
            status=status,
        )
