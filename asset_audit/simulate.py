from __future__ import annotations
import random
from typing import Dict, List, Tuple

from .base_data import profile_for
from .models import AssetType, GeometryKind, InventoryRecord, NeedRecord, Origin


"""
资产数据合成器
核心功能
1. 生成一条公路的初始资产台账（cadastro_inicial）
    沿一条南北走向的直线公路布点，km 与经纬度一一对应（1 km ≈ 0.008993°）
    每种资产类型按其字段表随机取值（标牌 codigo、标线颜色/宽度、护栏功能等）

2. 生成带噪声的项目需求表
    约 60% 的需求指向已有资产：km 与坐标加微小扰动，服务写法多样（"Substituir" / "troca" / "REMOVER" / 空）
    约 20% 的需求是真正的新增（远离任何资产），服务写 "Implantar"
    少量重复行：同一位置再写一行相同或相反的服务，用于冲突检测
"""

DEG_PER_KM = 1.0 / 111.195

SAMPLE_ATTRIBUTES: Dict[AssetType, Dict[str, List]] = {
    AssetType.PLACAS: {
        "codigo": ["R-1", "R-2", "R-19", "A-2a", "A-18"],
        "tipo": ["Regulamentação", "Advertência"],
        "suporte": ["Simples", "Duplo"],
        "lado": ["Direito", "Esquerdo"],
    },
    AssetType.PORTICOS: {
        "tipo": ["Pórtico", "Semipórtico"],
        "vao_horizontal_m": [12.0, 15.0, 18.0],
        "lado": ["Direito", "Esquerdo"],
    },
    AssetType.INSCRICOES: {
        "sigla": ["PARE", "DEVAGAR", "SETA-RETA"],
        "tipo_inscricao": ["Legenda", "Seta"],
        "cor": ["Branca", "Amarela"],
        "area_m2": [1.5, 2.4, 3.6],
    },
    AssetType.MARCAS_LONGITUDINAIS: {
        "posicao": ["Bordo", "Eixo"],
        "cor": ["Branca", "Amarela"],
        "tipo_demarcacao": ["LFO-1", "LFO-3", "LBO"],
        "largura_cm": [10, 12, 15],
        "lado": ["Direito", "Esquerdo"],
    },
    AssetType.TACHAS: {
        "local_implantacao": ["Bordo", "Eixo"],
        "corpo": ["Resina", "Plástico"],
        "refletivo": ["Monodirecional", "Bidirecional"],
        "lado": ["Direito", "Esquerdo", "Ambos"],
    },
    AssetType.CILINDROS: {
        "local_implantacao": ["Canteiro", "Acesso"],
        "cor_corpo": ["Amarelo", "Preto"],
        "cor_refletivo": ["Branco", "Amarelo"],
        "tipo_refletivo": ["Tipo I", "Tipo III"],
    },
    AssetType.DEFENSAS: {
        "funcao": ["Obstáculo fixo", "Talude", "Ponte"],
        "nivel_contencao_en1317": ["N2", "H1"],
        "lado": ["Direito", "Esquerdo"],
    },
}

SERVICE_SPELLINGS = ["Substituir", "troca", "REMOVER", "Manutenção", "", None]


def _coords(km: float, rng: random.Random, base_lat: float, base_lon: float,
            jitter_m: float = 0.0) -> Tuple[float, float]:
    j = jitter_m / 111195.0
    return (base_lat + km * DEG_PER_KM + rng.uniform(-j, j),
            base_lon + rng.uniform(-j, j))


def _place(rec, km_start: float, km_end: float, kind: GeometryKind, rng: random.Random,
           base: Tuple[float, float], jitter_m: float) -> None:
    rec.km_inicial = round(km_start, 3)
    rec.latitude_inicial, rec.longitude_inicial = _coords(km_start, rng, *base, jitter_m=jitter_m)
    if kind == GeometryKind.LINEAR:
        rec.km_final = round(km_end, 3)
        rec.latitude_final, rec.longitude_final = _coords(km_end, rng, *base, jitter_m=jitter_m)


def generate_highway(asset_type: AssetType, lot_id: str, highway_id: str, n_assets: int = 20,
                     seed: int = 7, length_km: float = 50.0,
                     base: Tuple[float, float] = (-19.9, -43.9)) -> Tuple[List[InventoryRecord], List[NeedRecord]]:
    rng = random.Random(seed)
    kind = profile_for(asset_type).geometry_kind
    choices = SAMPLE_ATTRIBUTES[asset_type]

    inventory: List[InventoryRecord] = []
    needs: List[NeedRecord] = []
    row = 2

    def new_need(attrs: Dict, km_a: float, km_b: float, service) -> NeedRecord:
        nonlocal row
        need = NeedRecord(id="", asset_type=asset_type, lot_id=lot_id, highway_id=highway_id,
                          attributes=dict(attrs), declared_service=service, source_row=row)
        _place(need, km_a, km_b, kind, rng, base, jitter_m=3.0)
        row += 1
        return need

    for i in range(n_assets):
        km = rng.uniform(0.0, length_km)
        span = rng.uniform(0.2, 1.0) if kind == GeometryKind.LINEAR else 0.0
        attrs = {k: rng.choice(v) for k, v in choices.items()}
        inv = InventoryRecord(id=f"INV-{asset_type.value[:3].upper()}-{i + 1:04d}", asset_type=asset_type,
                              highway_id=highway_id, lot_id=lot_id, attributes=attrs,
                              origin=Origin.CADASTRO_INICIAL)
        _place(inv, km, km + span, kind, rng, base, jitter_m=0.0)
        inventory.append(inv)

        r = rng.random()
        if r < 0.6:
            shift = rng.uniform(-0.1, 0.1) * span if span else rng.uniform(-0.005, 0.005)
            need_attrs = dict(attrs)
            if rng.random() < 0.1:
                need_attrs["quantidade"] = 0
            need = new_need(need_attrs, km + shift, km + span + shift, rng.choice(SERVICE_SPELLINGS))
            needs.append(need)
            if rng.random() < 0.15:
                # 重复/矛盾行
                dup_service = rng.choice(["Implantar", need.declared_service])
                km_end = need.km_final if need.km_final is not None else need.km_inicial
                needs.append(new_need(need_attrs, need.km_inicial, km_end, dup_service))

    for _ in range(max(1, n_assets // 5)):
        km = rng.uniform(length_km, length_km + 10.0)
        span = rng.uniform(0.2, 0.6) if kind == GeometryKind.LINEAR else 0.0
        attrs = {k: rng.choice(v) for k, v in choices.items()}
        needs.append(new_need(attrs, km, km + span, "Implantar"))

    return inventory, needs
