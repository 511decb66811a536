from __future__ import annotations
from collections import Counter
from typing import Any, Dict, Sequence

from .models import ConflictRecord, NeedRecord
from .workflow import current_status


def summarize(needs: Sequence[NeedRecord]) -> Dict[str, Any]:
    total = len(needs)
    by_status = Counter(current_status(n).value for n in needs)
    by_service = Counter(n.final_service or "-" for n in needs)
    by_tier = Counter(n.match_tier.value for n in needs if n.match_tier is not None)

    matches = sum(1 for n in needs if n.matched_inventory_id)
    divergences = sum(1 for n in needs if n.divergence)
    reconciled = sum(1 for n in needs if n.reconciled)
    return {
        "total": total,
        "matches": matches,
        "match_rate": round(matches / total * 100.0, 1) if total else 0.0,
        "divergences": divergences,
        "reconciled": reconciled,
        "reconciled_share": round(reconciled / divergences * 100.0, 1) if divergences else 0.0,
        "conflicts": sum(1 for n in needs if n.has_conflict),
        "project_errors": sum(1 for n in needs if n.project_error),
        "by_status": dict(by_status),
        "by_final_service": dict(by_service),
        "by_tier": dict(by_tier),
    }


def summarize_conflicts(conflicts: Sequence[ConflictRecord]) -> Dict[str, Any]:
    by_kind = Counter(c.kind.value for c in conflicts)
    open_ = [c for c in conflicts if not c.resolved]
    return {
        "total": len(conflicts),
        "unresolved": len(open_),
        "by_kind": dict(by_kind),
        "open": [
            {"id": c.id, "kind": c.kind.value, "needs": [c.need_id_a, c.need_id_b], "details": c.details}
            for c in open_
        ],
    }
