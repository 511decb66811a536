from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional

from .base_data import build_service_keywords, load_alias_map, parse_asset_type
from .candidates import CandidateMatcher
from .config import Config
from .conflicts import ConflictChecker
from .db import (
    ConflictRepository,
    ExcelConnection,
    InventoryRepository,
    MatchLogRepository,
    NeedRepository,
    ToleranceRepository,
)
from .judge import ServiceJudge
from .models import (
    AssetType,
    BatchReport,
    ConfigurationError,
    ConflictRecord,
    InputError,
    InventoryRecord,
    NeedRecord,
    PersistenceError,
    RecordError,
    Service,
)
from .project_errors import detect_project_errors
from .workflow import ReconciliationWorkflow

logger = logging.getLogger(__name__)

PROGRESS_EVERY = 50


class BatchOrchestrator:
    """资产稽核主流程：按 (标段, 公路, 类型) 逐条执行 匹配 -> 服务推断 -> 分歧判定 -> 回写。"""

    def __init__(self, cfg: Config, conn: ExcelConnection):
        self.cfg = cfg
        self.conn = conn
        alias = None
        if cfg.service_alias_path:
            try:
                alias = load_alias_map(cfg.service_alias_path)
            except (OSError, ValueError) as exc:
                raise ConfigurationError(f"Cannot load service aliases: {exc}") from exc

        self.judge = ServiceJudge(build_service_keywords(alias))
        self.matcher = CandidateMatcher(cfg.overlap_floor_pct, cfg.km_tolerance, cfg.tiers)
        self.conflict_checker = ConflictChecker(
            self.judge, cfg.conflict_km_tolerance, cfg.conflict_distance_m, cfg.overlap_floor_pct)

        self.needs = NeedRepository(conn)
        self.inventory = InventoryRepository(conn)
        self.tolerances = ToleranceRepository(conn, cfg.default_tolerances_m, cfg.default_tolerance_m)
        self.conflicts = ConflictRepository(conn)
        self.match_logs = MatchLogRepository(conn)
        self.workflow = ReconciliationWorkflow(conn, self.judge, cfg.batch_justification)

    def run(self, lot_id: str, highway_id: str, asset_type: AssetType | str,
            force_reprocess: bool = False) -> BatchReport:
        t = parse_asset_type(asset_type)
        try:
            tolerance = self.tolerances.get(highway_id, t)
            needs = self.needs.list(lot_id, highway_id, t)
            inventory = self.inventory.list(highway_id, t, active_only=True)
        except Exception as exc:
            raise ConfigurationError(
                f"Batch {lot_id}/{highway_id}/{t.value} aborted before processing: {exc}") from exc

        report = BatchReport(lot_id=str(lot_id), highway_id=str(highway_id), asset_type=t.value,
                             tolerance_m=tolerance)
        logger.info("Batch start lot=%s highway=%s type=%s needs=%d inventory=%d tolerance=%.1fm force=%s",
                    lot_id, highway_id, t.value, len(needs), len(inventory), tolerance, force_reprocess)

        try:
            with self.conn.deferred():
                for need in needs:
                    if need.reconciled and not force_reprocess:
                        report.skipped_reconciled += 1
                        continue
                    report.total += 1
                    try:
                        self._process(need, inventory, tolerance, report)
                    except (InputError, PersistenceError) as exc:
                        logger.warning("Need %s skipped: %s", need.id, exc)
                        report.errors += 1
                        report.error_log.append(RecordError(need.id, str(exc)))
                    except Exception as exc:
                        logger.exception("Need %s failed", need.id)
                        report.errors += 1
                        report.error_log.append(RecordError(need.id, f"{type(exc).__name__}: {exc}"))
                    if report.total % PROGRESS_EVERY == 0:
                        logger.info("Progress %d/%d", report.total, len(needs) - report.skipped_reconciled)
        except PersistenceError as exc:
            logger.error("Batch %s/%s/%s not saved: %s", lot_id, highway_id, t.value, exc)
            report.persistence_error = str(exc)

        logger.info("Batch done: total=%d matches=%d divergences=%d new=%d errors=%d skipped=%d",
                    report.total, report.matches, report.divergences, report.new_elements,
                    report.errors, report.skipped_reconciled)
        return report

    def _process(self, need: NeedRecord, inventory: List[InventoryRecord],
                 tolerance: float, report: BatchReport) -> None:
        outcome = self.matcher.select_match(need, inventory, tolerance)
        evaluation = self.judge.evaluate(need, outcome)
        best = outcome.best

        changes: Dict[str, Any] = {
            "matched_inventory_id": best.inventory_id if best else None,
            "match_distance_m": best.distance_m if best else None,
            "match_overlap_pct": best.overlap_pct if best else None,
            "match_tier": best.tier if best else None,
            "inferred_service": evaluation.inferred_service,
            "final_service": evaluation.final_service,
            "divergence": evaluation.divergence,
            "reconciled": False,
            "reconciliation_status": evaluation.status,
        }
        self.needs.update(need.id, changes)
        self.match_logs.add(need.id, outcome.candidates, {
            "matched_inventory_id": changes["matched_inventory_id"],
            "tolerance_m": tolerance,
            "inferred_service": evaluation.inferred_service,
            "declared_service": evaluation.declared_normalized,
            "final_service": evaluation.final_service,
            "divergence": evaluation.divergence,
        })

        if best is not None:
            report.matches += 1
        if evaluation.divergence:
            report.divergences += 1
        if evaluation.inferred_service == Service.IMPLANTAR.value:
            report.new_elements += 1

    def detect_conflicts(self, lot_id: str, highway_id: str,
                         asset_type: AssetType | str) -> List[ConflictRecord]:
        """检测并登记需求内部冲突；已登记的 (需求对, 类型) 不重复写入。返回新登记的冲突。"""
        t = parse_asset_type(asset_type)
        needs = self.needs.list(lot_id, highway_id, t)
        created: List[ConflictRecord] = []
        touched = set()
        with self.conn.deferred():
            for conflict in self.conflict_checker.check(needs):
                stored, is_new = self.conflicts.add(conflict)
                if not is_new:
                    continue
                created.append(stored)
                for need_id in (stored.need_id_a, stored.need_id_b):
                    if need_id in touched:
                        continue
                    touched.add(need_id)
                    self.needs.update(need_id, {
                        "has_conflict": True,
                        "conflict_kind": stored.kind,
                        "conflict_details": stored.details,
                    })
        logger.info("Conflicts registered for %s/%s/%s: %d new", lot_id, highway_id, t.value, len(created))
        return created

    def detect_project_errors(self, lot_id: Optional[str], highway_id: str,
                              asset_type: AssetType | str) -> Dict[str, object]:
        t = parse_asset_type(asset_type)
        radius = self.cfg.project_error_radius_m.get(t.value)
        if radius is None:
            raise InputError(f"No project error radius configured for {t.value}")
        needs = self.needs.list(lot_id, highway_id, t)
        inventory = self.inventory.list(highway_id, t, active_only=True)
        changed, summary = detect_project_errors(needs, inventory, t, radius)
        with self.conn.deferred():
            for need in changed:
                self.needs.update(need.id, {
                    "project_error": need.project_error,
                    "project_error_kind": need.project_error_kind,
                    "project_error_inventory_id": need.project_error_inventory_id,
                })
        return summary
