from asset_audit.models import (
    AssetType,
    ConflictKind,
    ConflictRecord,
    InventoryRecord,
    MatchTier,
    ReconciliationStatus,
)
from asset_audit.project_errors import (
    COORDENADAS_PROXIMAS_ATRIBUTOS_DIVERGENTES,
    IMPLANTAR_COM_CADASTRO_EXISTENTE,
    attribute_similarity,
    classify,
)
from asset_audit.report import summarize, summarize_conflicts
from asset_audit.simulate import generate_highway
from tests.factories import make_inventory, make_need


def test_summarize():
    a = make_need("a", AssetType.TACHAS, 1.0, 1.5)
    a.final_service, a.match_tier, a.matched_inventory_id = "Substituir", MatchTier.ALTO, "i1"
    b = make_need("b", AssetType.TACHAS, 2.0, 2.5)
    b.final_service, b.divergence = "Implantar", True
    c = make_need("c", AssetType.TACHAS, 3.0, 3.5)
    c.final_service, c.divergence, c.reconciled = "Remover", True, True
    c.reconciliation_status = ReconciliationStatus.APROVADO

    out = summarize([a, b, c])
    assert out["total"] == 3
    assert out["matches"] == 1
    assert out["divergences"] == 2
    assert out["reconciled_share"] == 50.0
    assert out["by_status"] == {"sem_divergencia": 1, "pendente_aprovacao": 1, "aprovado": 1}
    assert out["by_tier"] == {"alto": 1}
    assert summarize([])["match_rate"] == 0.0


def test_summarize_conflicts():
    c1 = ConflictRecord(id="1", lot_id="L01", highway_id="BR-040", asset_type=AssetType.PLACAS,
                        kind=ConflictKind.DUPLICATA_PROJETO, need_id_a="a", need_id_b="b")
    c2 = ConflictRecord(id="2", lot_id="L01", highway_id="BR-040", asset_type=AssetType.PLACAS,
                        kind=ConflictKind.SERVICO_CONTRADICTORIO, need_id_a="a", need_id_b="c", resolved=True)
    out = summarize_conflicts([c1, c2])
    assert out["unresolved"] == 1
    assert out["open"][0]["needs"] == ["a", "b"]


def test_project_error_classification():
    assert classify(30.0, 0.0, 500.0) == IMPLANTAR_COM_CADASTRO_EXISTENTE
    assert classify(150.0, 50.0, 500.0) == IMPLANTAR_COM_CADASTRO_EXISTENTE
    assert classify(150.0, 0.0, 500.0) == COORDENADAS_PROXIMAS_ATRIBUTOS_DIVERGENTES
    assert classify(300.0, 100.0, 500.0) is None
    assert classify(600.0, 0.0, 500.0) is None


def test_cilindros_similarity_uses_reflective_type():
    need = make_need("n1", AssetType.CILINDROS, 1.0, 1.1, tipo_refletivo="Tipo I",
                     local_implantacao="Canteiro", cor_refletivo="Branco")
    same = make_inventory("i1", AssetType.CILINDROS, 1.0, 1.1, tipo_refletivo="tipo i",
                          local_implantacao="Canteiro", cor_refletivo="Amarelo")
    other = make_inventory("i2", AssetType.CILINDROS, 1.0, 1.1, tipo_refletivo="Tipo III",
                           local_implantacao="Canteiro", cor_refletivo="Branco")
    assert attribute_similarity(AssetType.CILINDROS, need, same) == 100.0
    assert attribute_similarity(AssetType.CILINDROS, need, other) == 50.0


def test_generate_highway_is_deterministic():
    inv1, needs1 = generate_highway(AssetType.DEFENSAS, "L01", "BR-040", n_assets=10, seed=3)
    inv2, needs2 = generate_highway(AssetType.DEFENSAS, "L01", "BR-040", n_assets=10, seed=3)
    assert inv1 == inv2 and needs1 == needs2
    assert len(inv1) == 10
    assert all(isinstance(r, InventoryRecord) and r.km_final > r.km_inicial for r in inv1)
    assert any(n.declared_service == "Implantar" for n in needs1)
