from __future__ import annotations
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .models import AssetType, GeometryKind, InputError, Service
from .utils import normalize_text


@dataclass(frozen=True)
class AssetProfile:
    asset_type: AssetType
    geometry_kind: GeometryKind
    recurrent: bool
    legacy_tolerance_m: float
    label: str


# 周期性类型（标线、字符、道钉、柱）按例行翻新处理，匹配即默认“Substituir”；
# 非周期类型（标牌、门架、护栏）匹配后一律需要人工确认。
ASSET_PROFILES: Dict[AssetType, AssetProfile] = {
    AssetType.PLACAS: AssetProfile(AssetType.PLACAS, GeometryKind.PONTUAL, False, 50.0, "Placas de Sinalização"),
    AssetType.PORTICOS: AssetProfile(AssetType.PORTICOS, GeometryKind.PONTUAL, False, 200.0, "Pórticos"),
    AssetType.INSCRICOES: AssetProfile(AssetType.INSCRICOES, GeometryKind.PONTUAL, True, 30.0, "Inscrições/Setas"),
    AssetType.MARCAS_LONGITUDINAIS: AssetProfile(AssetType.MARCAS_LONGITUDINAIS, GeometryKind.LINEAR, True, 20.0, "Marcas Longitudinais"),
    AssetType.TACHAS: AssetProfile(AssetType.TACHAS, GeometryKind.LINEAR, True, 25.0, "Tachas Refletivas"),
    AssetType.CILINDROS: AssetProfile(AssetType.CILINDROS, GeometryKind.LINEAR, True, 25.0, "Cilindros"),
    AssetType.DEFENSAS: AssetProfile(AssetType.DEFENSAS, GeometryKind.LINEAR, False, 20.0, "Defensas Metálicas"),
}

# 服务关键字：按顺序匹配子串，先命中者为准
SERVICE_KEYWORDS: List[Tuple[Service, List[str]]] = [
    (Service.IMPLANTAR, ["implant", "instal"]),
    (Service.SUBSTITUIR, ["substit", "troca"]),
    (Service.REMOVER, ["remov", "desativ", "retirar"]),
    (Service.MANTER, ["manter", "manutencao"]),
]

SIDE_KEYWORDS: List[Tuple[str, List[str]]] = [
    ("esquerdo", ["esq"]),
    ("direito", ["dir"]),
    ("eixo", ["eix", "central"]),
    ("ambos", ["amb"]),
]

# 单字母缩写（表格里常见 E / D / C）
SIDE_LETTERS: Dict[str, str] = {"e": "esquerdo", "d": "direito", "c": "eixo"}


def profile_for(asset_type: AssetType | str) -> AssetProfile:
    return ASSET_PROFILES[parse_asset_type(asset_type)]


def parse_asset_type(value: AssetType | str) -> AssetType:
    if isinstance(value, AssetType):
        return value
    key = "".join(str(value or "").lower().split())
    for t in AssetType:
        if t.value == key:
            return t
    raise InputError(f"Unknown asset type: {value!r}")


def load_alias_map(path: str | Path) -> Dict[str, List[str]]:
    p = Path(path)
    return json.loads(p.read_text(encoding="utf-8"))


def build_service_keywords(alias_map: Optional[Dict[str, List[str]]] = None) -> List[Tuple[Service, List[str]]]:
    """
    以默认关键字表为基础，合并别名文件：{"Substituir": ["recuper", ...], ...}
    未知服务名直接忽略。返回新表，不修改默认表。
    """
    table = [(svc, list(words)) for svc, words in SERVICE_KEYWORDS]
    if not alias_map:
        return table
    by_service = {svc.value: words for svc, words in table}
    for canon, aliases in alias_map.items():
        words = by_service.get(canon)
        if words is None:
            continue
        for a in aliases:
            k = normalize_text(a)
            if k and k not in words:
                words.append(k)
    return table


