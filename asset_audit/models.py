from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class AuditError(Exception):
    pass


class InputError(AuditError, ValueError):
    """几何缺失、未知资产类型等输入问题：跳过该记录，批次继续。"""


class PersistenceError(AuditError):
    """仓储写入失败：该记录记为错误，批次继续。"""


class ConfigurationError(AuditError):
    """容差/仓储在批次开始时不可用：整个批次中止。"""


class ValidationError(AuditError, ValueError):
    """同步校验失败（缺少理由、非法状态迁移），不产生任何写入。"""


class NotFoundError(ValidationError):
    pass


class AssetType(str, Enum):
    PLACAS = "placas"
    PORTICOS = "porticos"
    INSCRICOES = "inscricoes"
    MARCAS_LONGITUDINAIS = "marcas_longitudinais"
    TACHAS = "tachas"
    CILINDROS = "cilindros"
    DEFENSAS = "defensas"


class GeometryKind(str, Enum):
    PONTUAL = "pontual"
    LINEAR = "linear"


class Service(str, Enum):
    IMPLANTAR = "Implantar"
    SUBSTITUIR = "Substituir"
    REMOVER = "Remover"
    MANTER = "Manter"


class MatchTier(str, Enum):
    EXATO = "exato"
    ALTO = "alto"
    PARCIAL = "parcial"


class ConflictKind(str, Enum):
    SERVICO_CONTRADICTORIO = "SERVICO_CONTRADICTORIO"
    DUPLICATA_PROJETO = "DUPLICATA_PROJETO"


class ReconciliationStatus(str, Enum):
    SEM_DIVERGENCIA = "sem_divergencia"
    PENDENTE_APROVACAO = "pendente_aprovacao"
    APROVADO = "aprovado"
    REJEITADO = "rejeitado"


class ChosenSource(str, Enum):
    PROJETO = "projeto"
    INFERENCIA = "inferencia"


class Origin(str, Enum):
    CADASTRO_INICIAL = "cadastro_inicial"
    NECESSIDADE = "necessidade"


@dataclass
class NeedRecord:
    id: str
    asset_type: AssetType
    lot_id: str
    highway_id: str
    km_inicial: Optional[float] = None
    km_final: Optional[float] = None
    latitude_inicial: Optional[float] = None
    longitude_inicial: Optional[float] = None
    latitude_final: Optional[float] = None
    longitude_final: Optional[float] = None
    attributes: Dict[str, Any] = field(default_factory=dict)
    declared_service: Optional[str] = None
    inferred_service: Optional[str] = None
    final_service: Optional[str] = None
    matched_inventory_id: Optional[str] = None
    match_distance_m: Optional[float] = None
    match_overlap_pct: Optional[float] = None
    match_tier: Optional[MatchTier] = None
    divergence: bool = False
    reconciled: bool = False
    reconciliation_status: ReconciliationStatus = ReconciliationStatus.SEM_DIVERGENCIA
    has_conflict: bool = False
    conflict_kind: Optional[ConflictKind] = None
    conflict_details: Optional[str] = None
    project_error: bool = False
    project_error_kind: Optional[str] = None
    project_error_inventory_id: Optional[str] = None
    source_row: Optional[int] = None


@dataclass
class InventoryRecord:
    id: str
    asset_type: AssetType
    highway_id: str
    lot_id: Optional[str] = None
    km_inicial: Optional[float] = None
    km_final: Optional[float] = None
    latitude_inicial: Optional[float] = None
    longitude_inicial: Optional[float] = None
    latitude_final: Optional[float] = None
    longitude_final: Optional[float] = None
    attributes: Dict[str, Any] = field(default_factory=dict)
    origin: Origin = Origin.CADASTRO_INICIAL
    active: bool = True


@dataclass
class MatchCandidate:
    inventory_id: str
    distance_m: Optional[float] = None
    overlap_km: Optional[float] = None
    overlap_pct: Optional[float] = None
    tier: Optional[MatchTier] = None

    @property
    def score(self) -> float:
        if self.overlap_pct is not None:
            return self.overlap_pct
        return self.distance_m if self.distance_m is not None else float("inf")


@dataclass
class MatchOutcome:
    best: Optional[MatchCandidate]
    candidates: List[MatchCandidate]
    tolerance_m: Optional[float] = None

    @property
    def matched(self) -> bool:
        return self.best is not None


@dataclass
class ServiceEvaluation:
    inferred_service: str
    declared_normalized: Optional[str]
    final_service: str
    divergence: bool
    status: ReconciliationStatus


@dataclass
class ReconciliationDecision:
    need_id: str
    decided_by: str
    decided_at: datetime
    chosen_source: ChosenSource
    justification: str
    servico_final: str
    batch: bool = False


@dataclass
class ConflictRecord:
    id: str
    lot_id: str
    highway_id: str
    asset_type: AssetType
    kind: ConflictKind
    need_id_a: str
    need_id_b: str
    row_a: Optional[int] = None
    row_b: Optional[int] = None
    details: str = ""
    detected_at: Optional[datetime] = None
    resolved: bool = False
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolution_justification: Optional[str] = None


@dataclass
class RecordError:
    record_id: str
    message: str


@dataclass
class BatchReport:
    lot_id: str
    highway_id: str
    asset_type: str
    total: int = 0
    matches: int = 0
    divergences: int = 0
    new_elements: int = 0
    errors: int = 0
    skipped_reconciled: int = 0
    tolerance_m: Optional[float] = None
    error_log: List[RecordError] = field(default_factory=list)
    # 批结束时写盘失败：内存中的更新仍在，工作簿未同步
    persistence_error: Optional[str] = None


@dataclass
class BatchReconcileResult:
    succeeded: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    persistence_error: Optional[str] = None

    @property
    def failure_count(self) -> int:
        return len(self.failed)
