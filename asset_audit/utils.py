from __future__ import annotations
import json
import math
import re
import unicodedata
from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional, Tuple

EARTH_RADIUS_M = 6371000.0

# 表格中常见的“空值”写法，统一视为缺失
BLANK_PLACEHOLDERS = {
    "",
    "não se aplica",
    "nao se aplica",
    "n/a",
    "na",
    "null",
    "none",
    "nan",
    "indefinido",
    "sem informação",
    "sem informacao",
}


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    if isinstance(value, str):
        return value.strip().lower() in BLANK_PLACEHOLDERS
    return False


def sanitize_text(value: Any) -> Optional[str]:
    """占位文本 -> None；"-" 保留为合法值（如“motivo”列）"""
    if is_blank(value):
        return None
    return str(value).strip()


def sanitize_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        f = float(value)
        return None if math.isnan(f) else f
    text = str(value).strip().lower()
    if text in BLANK_PLACEHOLDERS or text == "-":
        return None
    # 逗号小数点（巴西表格习惯）
    text = text.replace(" ", "")
    if "," in text and "." in text:
        text = text.replace(".", "").replace(",", ".")
    else:
        text = text.replace(",", ".")
    try:
        f = float(text)
    except ValueError:
        return None
    return None if math.isnan(f) else f


def parse_coordinate(value: Any) -> Optional[float]:
    f = sanitize_number(value)
    if f is None or f == 0.0:
        return None
    return f


def normalize_text(text: Any) -> str:
    """比较用的文本归一：去重音、小写、压缩空白"""
    if is_blank(text):
        return ""
    t = unicodedata.normalize("NFKD", str(text))
    t = "".join(ch for ch in t if not unicodedata.combining(ch))
    t = re.sub(r"\s+", " ", t)
    return t.lower().strip()


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dl = math.radians(lon2 - lon1)
    a = math.sin(dphi/2)**2 + math.cos(phi1)*math.cos(phi2)*math.sin(dl/2)**2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(max(0.0, 1-a)))
    return EARTH_RADIUS_M * c


def segment_overlap(nec_start: float, nec_end: float,
                    cad_start: float, cad_end: float) -> Tuple[float, float]:
    """
    Return: (overlap_km, overlap_pct)
    百分比始终相对于“需求”的长度，而不是候选的长度。
    """
    if nec_start > nec_end:
        nec_start, nec_end = nec_end, nec_start
    if cad_start > cad_end:
        cad_start, cad_end = cad_end, cad_start

    overlap_km = max(0.0, min(nec_end, cad_end) - max(nec_start, cad_start))
    length = nec_end - nec_start
    if length <= 0 or overlap_km <= 0:
        return overlap_km, 0.0
    pct = min(100.0, overlap_km / length * 100.0)
    return overlap_km, pct


def project_onto_axis(lat_a: float, lon_a: float, lat_b: float, lon_b: float,
                      lat_p: float, lon_p: float) -> Tuple[float, float]:
    """
    把点 P 投影到 A->B 轴上（局部等距圆柱平面，适用于几公里内）。
    Return: (沿轴位置 km，以 A 为 0；横向偏移 m)
    """
    lat0 = math.radians((lat_a + lat_b) / 2.0)

    def _xy(lat: float, lon: float) -> Tuple[float, float]:
        x = math.radians(lon - lon_a) * math.cos(lat0) * EARTH_RADIUS_M
        y = math.radians(lat - lat_a) * EARTH_RADIUS_M
        return x, y

    bx, by = _xy(lat_b, lon_b)
    px, py = _xy(lat_p, lon_p)
    length = math.hypot(bx, by)
    if length == 0:
        return 0.0, math.hypot(px, py)
    ux, uy = bx / length, by / length
    along = px * ux + py * uy
    offset = abs(px * uy - py * ux)
    return along / 1000.0, offset


class EnhancedJSONEncoder(json.JSONEncoder):
    def default(self, obj: Any) -> Any:
        if is_dataclass(obj):
            return asdict(obj)
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, (set, frozenset, tuple)):
            return list(obj)
        return super().default(obj)
