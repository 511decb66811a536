from unittest.mock import patch

import pytest

from asset_audit.db import ExcelConnection, InventoryRepository, NeedRepository
from asset_audit.models import (
    AssetType,
    ConfigurationError,
    ConflictKind,
    InputError,
    MatchTier,
    NeedRecord,
    PersistenceError,
    ReconciliationStatus,
)
from asset_audit.pipeline import BatchOrchestrator
from asset_audit.project_errors import IMPLANTAR_COM_CADASTRO_EXISTENTE
from tests.factories import make_inventory, make_need

PLACAS = AssetType.PLACAS


@pytest.fixture
def orchestrator(cfg, conn):
    return BatchOrchestrator(cfg, conn)


@pytest.fixture
def placas_slice(needs_repo, inventory_repo):
    inventory_repo.add(make_inventory("I1", PLACAS, 5.0, codigo="R-1", lado="Direito"))
    inventory_repo.add(make_inventory("I2", PLACAS, 8.0, codigo="A-18", lado="Direito"))
    needs_repo.add(make_need("N1", PLACAS, 5.01, service="Substituir", codigo="R-1", lado="Direito"))
    needs_repo.add(make_need("N2", PLACAS, 12.0, service="Implantar", codigo="R-19", lado="Direito"))
    needs_repo.add(make_need("N3", PLACAS, 8.0, codigo="A-18", lado="Direito"))


def test_batch_counts_and_writes(orchestrator, placas_slice, needs_repo):
    report = orchestrator.run("L01", "BR-040", "placas")
    assert (report.total, report.matches, report.divergences, report.new_elements, report.errors) == (3, 2, 2, 1, 0)
    assert report.tolerance_m == 50.0

    n1 = needs_repo.get("N1")
    assert n1.matched_inventory_id == "I1"
    assert n1.match_distance_m == pytest.approx(10.0, abs=0.05)
    assert n1.divergence is True
    assert n1.reconciliation_status == ReconciliationStatus.PENDENTE_APROVACAO

    n2 = needs_repo.get("N2")
    assert n2.matched_inventory_id is None
    assert n2.inferred_service == "Implantar"
    assert n2.divergence is False

    n3 = needs_repo.get("N3")
    assert n3.final_service == "Substituir"
    assert len(orchestrator.match_logs.list("N1")) == 1


def test_unknown_asset_type(orchestrator):
    with pytest.raises(InputError):
        orchestrator.run("L01", "BR-040", "semaforos")


def test_rerun_is_idempotent(orchestrator, placas_slice, needs_repo):
    orchestrator.run("L01", "BR-040", "placas")
    first = {n.id: (n.inferred_service, n.final_service, n.divergence) for n in needs_repo.list()}
    orchestrator.run("L01", "BR-040", "placas")
    second = {n.id: (n.inferred_service, n.final_service, n.divergence) for n in needs_repo.list()}
    assert first == second


def test_reconciled_records_are_skipped_unless_forced(orchestrator, placas_slice, needs_repo):
    orchestrator.run("L01", "BR-040", "placas")
    orchestrator.workflow.reconcile("N1", "inferencia", "placa será trocada", "ana")

    report = orchestrator.run("L01", "BR-040", "placas")
    assert report.skipped_reconciled == 1 and report.total == 2
    assert needs_repo.get("N1").reconciliation_status == ReconciliationStatus.REJEITADO

    report = orchestrator.run("L01", "BR-040", "placas", force_reprocess=True)
    assert report.skipped_reconciled == 0 and report.total == 3
    n1 = needs_repo.get("N1")
    assert n1.reconciled is False
    assert n1.reconciliation_status == ReconciliationStatus.PENDENTE_APROVACAO


def test_bad_geometry_is_isolated(orchestrator, placas_slice, needs_repo):
    needs_repo.add(NeedRecord(id="BAD", asset_type=PLACAS, lot_id="L01", highway_id="BR-040"))
    report = orchestrator.run("L01", "BR-040", "placas")
    assert report.errors == 1
    assert report.total == 4
    assert report.error_log[0].record_id == "BAD"
    assert "missing both km and lat/lon" in report.error_log[0].message
    assert needs_repo.get("N2").inferred_service == "Implantar"


def test_persistence_failure_is_isolated(orchestrator, placas_slice, needs_repo):
    real_update = orchestrator.needs.update

    def flaky(need_id, changes):
        if need_id == "N2":
            raise PersistenceError("disk full")
        return real_update(need_id, changes)

    with patch.object(orchestrator.needs, "update", side_effect=flaky):
        report = orchestrator.run("L01", "BR-040", "placas")
    assert report.errors == 1
    assert report.error_log[0].record_id == "N2"
    assert needs_repo.get("N1").matched_inventory_id == "I1"
    assert needs_repo.get("N2").inferred_service is None


def test_unreachable_tolerance_aborts_before_any_write(orchestrator, placas_slice, needs_repo):
    with patch.object(orchestrator.tolerances, "get", side_effect=ConnectionError("offline")):
        with pytest.raises(ConfigurationError):
            orchestrator.run("L01", "BR-040", "placas")
    assert all(n.inferred_service is None for n in needs_repo.list())


def test_highway_tolerance_override(orchestrator, placas_slice, needs_repo):
    orchestrator.tolerances.set("BR-040", "placas", 5.0)
    report = orchestrator.run("L01", "BR-040", "placas")
    assert report.tolerance_m == 5.0
    # N1 距 I1 约 10 m，超出 5 m
    assert needs_repo.get("N1").matched_inventory_id is None


def test_tacha_scenario(orchestrator, needs_repo, inventory_repo):
    attrs = {"lado": "Direito", "local_implantacao": "Bordo"}
    inventory_repo.add(make_inventory("T1", AssetType.TACHAS, 10.1, 10.45, **attrs))
    needs_repo.add(make_need("TN", AssetType.TACHAS, 10.0, 10.5, **attrs))

    report = orchestrator.run("L01", "BR-040", AssetType.TACHAS)
    need = needs_repo.get("TN")
    assert report.matches == 1
    assert need.matched_inventory_id == "T1"
    assert need.match_overlap_pct == 70.0
    assert need.match_tier == MatchTier.PARCIAL
    assert need.inferred_service == need.final_service == "Substituir"
    assert need.divergence is False


def test_detect_conflicts_flags_needs_once(orchestrator, needs_repo):
    needs_repo.add(make_need("A", PLACAS, 5.0, service="Implantar", row=12, codigo="R-1"))
    needs_repo.add(make_need("B", PLACAS, 5.0, service="Remover", row=13, codigo="R-1"))

    created = orchestrator.detect_conflicts("L01", "BR-040", "placas")
    assert [c.kind for c in created] == [ConflictKind.SERVICO_CONTRADICTORIO]
    for nid in ("A", "B"):
        need = needs_repo.get(nid)
        assert need.has_conflict and need.conflict_kind == ConflictKind.SERVICO_CONTRADICTORIO

    assert orchestrator.detect_conflicts("L01", "BR-040", "placas") == []
    assert len(orchestrator.conflicts.list("L01", "BR-040")) == 1


def test_detect_project_errors(orchestrator, needs_repo, inventory_repo):
    inventory_repo.add(make_inventory("I1", PLACAS, 5.0, codigo="R-2", tipo="Regulamentação"))
    needs_repo.add(make_need("N1", PLACAS, 5.03, service="Implantar", codigo="R-1", tipo="Regulamentação"))
    needs_repo.add(make_need("N2", PLACAS, 20.0, service="Implantar", codigo="R-1"))
    orchestrator.run("L01", "BR-040", "placas")

    summary = orchestrator.detect_project_errors("L01", "BR-040", "placas")
    assert summary == {"asset_type": "placas", "analysed": 2, "errors": 1, "error_rate": 50.0}
    n1 = needs_repo.get("N1")
    assert n1.project_error is True
    assert n1.project_error_kind == IMPLANTAR_COM_CADASTRO_EXISTENTE
    assert n1.project_error_inventory_id == "I1"
    assert needs_repo.get("N2").project_error is False

    with pytest.raises(InputError):
        orchestrator.detect_project_errors("L01", "BR-040", "tachas")


def test_unwritable_workbook_still_returns_report(cfg, tmp_path):
    path = tmp_path / "audit.xlsx"
    conn = ExcelConnection(path)
    needs_repo = NeedRepository(conn)
    InventoryRepository(conn).add(make_inventory("I1", PLACAS, 5.0, codigo="R-1", lado="Direito"))
    needs_repo.add(make_need("N1", PLACAS, 5.01, service="Substituir", codigo="R-1", lado="Direito"))
    needs_repo.add(make_need("N2", PLACAS, 12.0, service="Implantar", codigo="R-19", lado="Direito"))

    # 目录无法作为工作簿写入
    conn.path = tmp_path
    report = BatchOrchestrator(cfg, conn).run("L01", "BR-040", "placas")
    assert "Cannot write workbook" in report.persistence_error
    assert (report.total, report.matches, report.errors) == (2, 1, 0)
    assert needs_repo.get("N1").matched_inventory_id == "I1"

    conn.path = path
    conn.save()
    reopened = NeedRepository(ExcelConnection(path))
    assert reopened.get("N1").matched_inventory_id == "I1"


def test_saved_batch_has_no_persistence_error(orchestrator, placas_slice):
    assert orchestrator.run("L01", "BR-040", "placas").persistence_error is None
