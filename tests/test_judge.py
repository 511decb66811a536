import pytest

from asset_audit.base_data import SERVICE_KEYWORDS, build_service_keywords
from asset_audit.judge import ServiceJudge, infer_service, normalize_service
from asset_audit.models import AssetType, MatchCandidate, MatchOutcome, ReconciliationStatus
from tests.factories import make_need

MATCHED = MatchOutcome(best=MatchCandidate("i1", distance_m=3.0), candidates=[MatchCandidate("i1", distance_m=3.0)])
UNMATCHED = MatchOutcome(best=None, candidates=[])


@pytest.mark.parametrize("raw,expected", [
    ("Implantação", "Implantar"),
    ("Instalar nova", "Implantar"),
    ("Substituição", "Substituir"),
    ("troca de placa", "Substituir"),
    ("REMOVER", "Remover"),
    ("Desativar", "Remover"),
    ("Manutenção", "Manter"),
    ("manter", "Manter"),
    ("", None),
    ("Não se aplica", None),
    (None, None),
    ("  Recuperar  ", "Recuperar"),
])
def test_normalize_service(raw, expected):
    assert normalize_service(raw) == expected


def test_alias_table_extends_without_touching_defaults():
    before = [(svc, list(words)) for svc, words in SERVICE_KEYWORDS]
    keywords = build_service_keywords({"Substituir": ["Recuperação"], "Desconhecido": ["x"]})
    assert normalize_service("Recuperação do pavimento", keywords) == "Substituir"
    assert SERVICE_KEYWORDS == before


def test_infer_service():
    need = make_need("n1", AssetType.PLACAS, 5.0, codigo="R-1")
    assert infer_service(need, matched=False) == "Implantar"
    assert infer_service(need, matched=True) == "Substituir"


@pytest.mark.parametrize("attrs,service", [
    ({"quantidade": "0"}, None),
    ({"extensao_metros": 0}, None),
    ({}, "Remover"),
])
def test_removal_signals(attrs, service):
    need = make_need("n1", AssetType.TACHAS, 1.0, 1.5, service=service, **attrs)
    assert infer_service(need, matched=True) == "Remover"


def test_recurrent_without_declared_service_follows_inference():
    judge = ServiceJudge()
    need = make_need("n1", AssetType.MARCAS_LONGITUDINAIS, 1.0, 2.0)
    ev = judge.evaluate(need, MATCHED)
    assert ev.final_service == ev.inferred_service == "Substituir"
    assert ev.divergence is False
    assert ev.status == ReconciliationStatus.SEM_DIVERGENCIA


def test_recurrent_divergence_when_declared_differs():
    judge = ServiceJudge()
    need = make_need("n1", AssetType.INSCRICOES, 3.0, service="Implantar")
    ev = judge.evaluate(need, MATCHED)
    assert ev.inferred_service == "Substituir"
    assert ev.final_service == "Implantar"
    assert ev.divergence is True
    assert ev.status == ReconciliationStatus.PENDENTE_APROVACAO


def test_recurrent_agreement_is_not_divergent():
    ev = ServiceJudge().evaluate(make_need("n1", AssetType.CILINDROS, 3.0, 3.1, service="troca"), MATCHED)
    assert ev.divergence is False
    assert ev.final_service == "Substituir"


@pytest.mark.parametrize("declared", [None, "Substituir", "Implantar", "Remover"])
def test_non_recurrent_match_always_diverges(declared):
    ev = ServiceJudge().evaluate(make_need("n1", AssetType.PLACAS, 5.0, service=declared), MATCHED)
    assert ev.divergence is True


def test_non_recurrent_without_match_never_diverges():
    ev = ServiceJudge().evaluate(make_need("n1", AssetType.DEFENSAS, 1.0, 1.2, service="Remover"), UNMATCHED)
    assert ev.inferred_service == "Implantar"
    assert ev.final_service == "Remover"
    assert ev.divergence is False


def test_unrecognized_declared_text_passes_through():
    ev = ServiceJudge().evaluate(make_need("n1", AssetType.TACHAS, 1.0, 1.5, service="Recuperar"), MATCHED)
    assert ev.final_service == "Recuperar"
    assert ev.divergence is True
