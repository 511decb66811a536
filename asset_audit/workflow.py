from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from .db import ConflictRepository, DecisionRepository, ExcelConnection, NeedRepository
from .judge import ServiceJudge
from .models import (
    AuditError,
    AssetType,
    BatchReconcileResult,
    ChosenSource,
    ConflictRecord,
    NeedRecord,
    NotFoundError,
    PersistenceError,
    ReconciliationDecision,
    ReconciliationStatus,
    ValidationError,
)
from .utils import is_blank

logger = logging.getLogger(__name__)

DEFAULT_PROJECT_JUSTIFICATION = "Decisão: Manter decisão do projeto"
DEFAULT_BATCH_JUSTIFICATION = "Reconciliação em lote: decisão do projeto mantida"


def current_status(need: NeedRecord) -> ReconciliationStatus:
    if need.reconciled:
        return need.reconciliation_status
    if need.divergence:
        return ReconciliationStatus.PENDENTE_APROVACAO
    return ReconciliationStatus.SEM_DIVERGENCIA


def is_pending(need: NeedRecord) -> bool:
    return current_status(need) == ReconciliationStatus.PENDENTE_APROVACAO


class ReconciliationWorkflow:
    """
    人工复核流程：
      sem_divergencia / pendente_aprovacao -> aprovado（保留项目值）| rejeitado（采用推断值）
    以及需求冲突的关闭（附理由关闭，或删除其中一行）。
    """

    def __init__(self, conn: ExcelConnection, judge: Optional[ServiceJudge] = None,
                 batch_justification: str = DEFAULT_BATCH_JUSTIFICATION):
        self.conn = conn
        self.judge = judge or ServiceJudge()
        self.batch_justification = batch_justification
        self.needs = NeedRepository(conn)
        self.conflicts = ConflictRepository(conn)
        self.decisions = DecisionRepository(conn)

    def status(self, need_id: str) -> ReconciliationStatus:
        return current_status(self._need(need_id))

    def pending(self, lot_id: str, highway_id: str,
                asset_type: AssetType | str | None = None) -> List[NeedRecord]:
        return [n for n in self.needs.list(lot_id, highway_id, asset_type) if is_pending(n)]

    def history(self, need_id: str) -> List[ReconciliationDecision]:
        return self.decisions.list(need_id)

    def reconcile(self, need_id: str, chosen_source: ChosenSource | str,
                  justification: Optional[str] = None, decided_by: str = "sistema",
                  batch: bool = False) -> NeedRecord:
        source = self._parse_source(chosen_source)
        if source == ChosenSource.INFERENCIA and is_blank(justification):
            raise ValidationError("Justification is required when overruling the project (inferencia)")
        need = self._need(need_id)
        if not is_pending(need):
            raise ValidationError(
                f"Need {need_id} is not pending reconciliation (status={current_status(need).value})")

        if source == ChosenSource.PROJETO:
            final = self.judge.normalize(need.declared_service) or need.inferred_service
            status = ReconciliationStatus.APROVADO
            text = DEFAULT_PROJECT_JUSTIFICATION if is_blank(justification) else justification.strip()
        else:
            final = need.inferred_service
            status = ReconciliationStatus.REJEITADO
            text = justification.strip()

        updated = self.needs.update(need.id, {
            "final_service": final,
            "reconciled": True,
            "reconciliation_status": status,
        })
        self.decisions.add(ReconciliationDecision(
            need_id=need.id,
            decided_by=decided_by,
            decided_at=datetime.now(timezone.utc),
            chosen_source=source,
            justification=text,
            servico_final=final,
            batch=batch,
        ))
        logger.info("Need %s reconciled by %s: %s -> %s", need.id, decided_by, source.value, final)
        return updated

    def reconcile_batch(self, need_ids: Iterable[str], decided_by: str,
                        justification: Optional[str] = None) -> BatchReconcileResult:
        """批量只能保留项目值；逐条独立写入，失败的记录汇总返回，不回滚成功的记录。"""
        text = self.batch_justification if is_blank(justification) else justification
        result = BatchReconcileResult()
        try:
            with self.conn.deferred():
                for need_id in sorted(set(need_ids)):
                    try:
                        self.reconcile(need_id, ChosenSource.PROJETO, text, decided_by, batch=True)
                    except AuditError as exc:
                        result.failed[need_id] = str(exc)
                        continue
                    result.succeeded.append(need_id)
        except PersistenceError as exc:
            logger.error("Batch reconcile not saved: %s", exc)
            result.persistence_error = str(exc)
        if result.failed:
            logger.warning("Batch reconcile: %d ok, %d failed", len(result.succeeded), result.failure_count)
        return result

    def resolve_conflict(self, conflict_id: str, justification: str, resolved_by: str) -> ConflictRecord:
        if is_blank(justification):
            raise ValidationError("Justification is required to resolve a conflict")
        conflict = self.conflicts.get(conflict_id)
        if conflict is None:
            raise NotFoundError(f"Conflict not found: {conflict_id}")
        if conflict.resolved:
            raise ValidationError(f"Conflict {conflict_id} is already resolved")
        with self.conn.deferred():
            resolved = self.conflicts.resolve(conflict_id, justification.strip(), resolved_by)
            for need_id in (conflict.need_id_a, conflict.need_id_b):
                self._refresh_conflict_flags(need_id)
        logger.info("Conflict %s resolved by %s", conflict_id, resolved_by)
        return resolved

    def delete_need(self, need_id: str, justification: str, resolved_by: str) -> List[ConflictRecord]:
        """删除重复/矛盾中的一行需求，并关闭所有引用它的冲突。"""
        if is_blank(justification):
            raise ValidationError("Justification is required to delete a need")
        self._need(need_id)
        closed: List[ConflictRecord] = []
        with self.conn.deferred():
            referencing = self.conflicts.referencing(need_id)
            self.conflicts.delete_need(need_id)
            text = f"Necessidade {need_id} excluída: {justification.strip()}"
            for c in referencing:
                closed.append(self.conflicts.resolve(c.id, text, resolved_by))
            for c in referencing:
                other = c.need_id_b if c.need_id_a == str(need_id) else c.need_id_a
                self._refresh_conflict_flags(other)
        logger.info("Need %s deleted by %s; %d conflicts closed", need_id, resolved_by, len(closed))
        return closed

    def _refresh_conflict_flags(self, need_id: str) -> None:
        if self.needs.get(need_id) is None:
            return
        remaining = self.conflicts.referencing(need_id)
        if remaining:
            c = remaining[0]
            self.needs.update(need_id, {
                "has_conflict": True,
                "conflict_kind": c.kind,
                "conflict_details": c.details,
            })
        else:
            self.needs.update(need_id, {
                "has_conflict": False,
                "conflict_kind": None,
                "conflict_details": None,
            })

    def _need(self, need_id: str) -> NeedRecord:
        need = self.needs.get(need_id)
        if need is None:
            raise NotFoundError(f"Need not found: {need_id}")
        return need

    @staticmethod
    def _parse_source(value: ChosenSource | str) -> ChosenSource:
        try:
            return ChosenSource(value)
        except ValueError as exc:
            raise ValidationError(f"Invalid chosen_source: {value!r}") from exc
