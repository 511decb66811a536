from datetime import datetime, timezone

import pandas as pd
import pytest

from asset_audit.db import (
    ConflictRepository,
    DecisionRepository,
    ExcelConnection,
    InventoryRepository,
    MatchLogRepository,
    NeedRepository,
    ToleranceRepository,
    import_inventory_frame,
    import_needs_frame,
)
from asset_audit.models import (
    AssetType,
    ChosenSource,
    ConflictKind,
    ConflictRecord,
    MatchCandidate,
    MatchTier,
    NotFoundError,
    PersistenceError,
    ReconciliationDecision,
    ReconciliationStatus,
)
from tests.factories import make_inventory, make_need


def test_need_round_trip(needs_repo):
    need = make_need("", AssetType.PLACAS, 5.0, codigo="R-1", lado="Direito", service="Substituir")
    stored = needs_repo.add(need)
    assert stored.id == "1"

    loaded = needs_repo.get("1")
    assert loaded.attributes == {"codigo": "R-1", "lado": "Direito"}
    assert loaded.asset_type == AssetType.PLACAS
    assert loaded.km_inicial == 5.0
    assert loaded.reconciled is False
    assert loaded.matched_inventory_id is None


def test_need_update_and_errors(needs_repo):
    needs_repo.add(make_need("n1", AssetType.TACHAS, 1.0, 1.5))
    updated = needs_repo.update("n1", {"match_tier": MatchTier.ALTO, "divergence": True,
                                       "reconciliation_status": ReconciliationStatus.PENDENTE_APROVACAO})
    assert updated.match_tier == MatchTier.ALTO
    assert needs_repo.get("n1").reconciliation_status == ReconciliationStatus.PENDENTE_APROVACAO

    with pytest.raises(NotFoundError):
        needs_repo.update("missing", {"divergence": True})
    with pytest.raises(PersistenceError):
        needs_repo.update("n1", {"no_such_field": 1})


def test_need_list_filters(needs_repo):
    needs_repo.add(make_need("a", AssetType.PLACAS, 1.0))
    needs_repo.add(make_need("b", AssetType.PLACAS, 2.0, lot="L02"))
    needs_repo.add(make_need("c", AssetType.PORTICOS, 3.0))
    needs_repo.add(make_need("d", AssetType.PLACAS, 4.0))
    needs_repo.update("d", {"reconciled": True})

    assert [n.id for n in needs_repo.list("L01", "BR-040", "placas")] == ["a", "d"]
    assert [n.id for n in needs_repo.list("L01", "BR-040", AssetType.PLACAS, only_unreconciled=True)] == ["a"]
    assert needs_repo.delete("a") is True
    assert needs_repo.delete("a") is False


def test_inventory_active_filter(conn, inventory_repo):
    inventory_repo.add(make_inventory("i1", AssetType.PLACAS, 1.0, codigo="R-1"))
    inventory_repo.add(make_inventory("i2", AssetType.PLACAS, 2.0, codigo="R-1", active=False))
    assert [r.id for r in inventory_repo.list("BR-040", AssetType.PLACAS)] == ["i1"]
    assert len(inventory_repo.list("BR-040", AssetType.PLACAS, active_only=False)) == 2


def test_tolerance_resolution_order(conn):
    repo = ToleranceRepository(conn, defaults={"porticos": 200.0}, system_default=50.0)
    assert repo.get("BR-040", "porticos") == 200.0
    assert repo.get("BR-040", "placas") == 50.0

    repo.set("BR-040", None, 80.0)
    assert repo.get("BR-040", "placas") == 80.0
    assert repo.get("BR-040", "porticos") == 80.0

    repo.set("BR-040", "placas", 30.0)
    repo.set("BR-040", "placas", 35.0)
    assert repo.get("BR-040", "placas") == 35.0
    assert repo.get("BR-381", "placas") == 50.0
    assert len(conn.tables["tolerances"]) == 2

    with pytest.raises(ValueError):
        repo.set("BR-040", "placas", 0)


def _conflict(a, b, kind=ConflictKind.DUPLICATA_PROJETO):
    return ConflictRecord(id="", lot_id="L01", highway_id="BR-040", asset_type=AssetType.PLACAS,
                          kind=kind, need_id_a=a, need_id_b=b, row_a=2, row_b=3, details="x")


def test_conflict_add_is_deduplicated_and_resolvable(conn):
    repo = ConflictRepository(conn)
    first, created = repo.add(_conflict("n1", "n2"))
    assert created and first.id == "1"
    again, created = repo.add(_conflict("n2", "n1"))
    assert not created and again.id == "1"
    _, created = repo.add(_conflict("n1", "n2", ConflictKind.SERVICO_CONTRADICTORIO))
    assert created

    resolved = repo.resolve("1", "linha duplicada na planilha", "ana")
    assert resolved.resolved and resolved.resolved_by == "ana"
    assert [c.id for c in repo.list("L01", "BR-040", only_unresolved=True)] == ["2"]
    assert [c.id for c in repo.referencing("n1")] == ["2"]
    with pytest.raises(NotFoundError):
        repo.resolve("99", "x", "ana")


def test_decisions_and_match_logs(conn):
    decisions = DecisionRepository(conn)
    decisions.add(ReconciliationDecision(need_id="n1", decided_by="ana", decided_at=datetime.now(timezone.utc),
                                         chosen_source=ChosenSource.PROJETO, justification="ok",
                                         servico_final="Substituir", batch=True))
    [d] = decisions.list("n1")
    assert d.chosen_source == ChosenSource.PROJETO and d.batch is True

    logs = MatchLogRepository(conn)
    logs.add("n1", [MatchCandidate("i1", distance_m=3.5), MatchCandidate("i2", distance_m=9.0)],
             {"matched_inventory_id": "i1"})
    [log] = logs.list("n1")
    assert [c["inventory_id"] for c in log["candidates"]] == ["i1", "i2"]
    assert log["final"] == {"matched_inventory_id": "i1"}


def test_workbook_round_trip(tmp_path):
    path = tmp_path / "audit.xlsx"
    conn = ExcelConnection(path)
    NeedRepository(conn).add(make_need("", AssetType.MARCAS_LONGITUDINAIS, 1.0, 2.5, cor="Branca", largura_cm=12))
    assert path.exists()

    reopened = NeedRepository(ExcelConnection(path))
    need = reopened.get("1")
    assert need.km_final == 2.5
    assert need.attributes == {"cor": "Branca", "largura_cm": 12}
    assert need.lot_id == "L01"
    assert need.divergence is False


def test_deferred_writes_once(tmp_path):
    path = tmp_path / "audit.xlsx"
    conn = ExcelConnection(path)
    repo = NeedRepository(conn)
    with conn.deferred():
        repo.add(make_need("a", AssetType.PLACAS, 1.0))
        repo.add(make_need("b", AssetType.PLACAS, 2.0))
        assert not path.exists()
    assert path.exists()
    assert len(NeedRepository(ExcelConnection(path)).list()) == 2


def test_import_needs_frame(conn):
    df = pd.DataFrame({
        "km_inicial": ["5,000", "5,2"],
        "latitude_inicial": ["-19,9", "0"],
        "longitude_inicial": [-43.9, None],
        "codigo": ["R-1", "Não se Aplica"],
        "solucao": ["Substituição", "Implantar"],
    })
    needs = import_needs_frame(conn, df, "L01", "BR-040", "placas")
    assert [n.source_row for n in needs] == [2, 3]
    first, second = NeedRepository(conn).list("L01", "BR-040", "placas")
    assert first.km_inicial == 5.0 and first.latitude_inicial == -19.9
    assert first.declared_service == "Substituição"
    assert first.attributes == {"codigo": "R-1"}
    assert second.latitude_inicial is None
    assert second.attributes == {}


def test_import_inventory_frame(conn):
    df = pd.DataFrame({"id": ["C-1", "C-2"], "km_inicial": [1.0, 2.0], "codigo": ["R-1", "R-2"],
                       "active": [True, False]})
    import_inventory_frame(conn, df, "BR-040", "placas")

    assert [r.id for r in InventoryRepository(conn).list("BR-040", "placas")] == ["C-1"]
