"""
Modelos de dados para o sistema SteelPlanner
"""

from datetime import datetime
from typing import ClassVar, List, Optional, Dict, Tuple
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from enum import Enum

from . import config


class ContractModel(BaseModel):
    """Base dos contratos: campos snake_case, JSON em camelCase"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RemainderKind(str, Enum):
    """Tipos de sobra"""
    REAL = "real"         # Sobra física, reaproveitável
    PSEUDO = "pseudo"     # Sobra consumida/hipotética, apenas para relatório


class SourceType(str, Enum):
    """Origem do material de um plano de corte"""
    MODULE = "module"         # Barra nova (módulo comprado)
    REMAINDER = "remainder"   # Sobra de corte anterior


class Severity(str, Enum):
    """Gravidade de uma violação de restrição"""
    ERROR = "error"
    WARNING = "warning"


class SelectionPolicy(str, Enum):
    """Critério de desempate na escolha da origem"""
    BEST_FIT = "best_fit"     # Menor origem que comporta a peça
    FIRST_FIT = "first_fit"   # Primeira origem, na ordem informada


class JobStatus(str, Enum):
    """Estados de uma tarefa de otimização"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class DesignPiece(ContractModel):
    """Peça de projeto a ser cortada"""
    id: str = Field(..., description="Identificador único da peça")
    required_length: float = Field(..., description="Comprimento requerido (mm)")
    quantity: int = Field(..., description="Quantidade necessária")
    cross_section_area: float = Field(0.0, description="Área da seção transversal (mm²)")
    material: str = Field("", description="Material")
    specification: str = Field(..., description="Especificação (classe de compatibilidade)")

    @property
    def group_key(self) -> str:
        """Peças só compartilham barras dentro do mesmo grupo"""
        return self.specification

    @property
    def total_length(self) -> float:
        return self.required_length * self.quantity


class StockBar(ContractModel):
    """Barra modular disponível para compra (oferta ilimitada)"""
    specification: str = Field(..., description="Especificação")
    length: float = Field(..., description="Comprimento (mm)")
    name: Optional[str] = Field(None, description="Nome descritivo")

    @property
    def label(self) -> str:
        return self.name or f"{self.specification}-{self.length:g}"


class Remainder(ContractModel):
    """Sobra de material de um corte anterior"""
    id: str = Field(..., description="Identificador da sobra")
    specification: str = Field(..., description="Especificação de origem")
    length: float = Field(..., description="Comprimento (mm)")
    kind: RemainderKind = Field(RemainderKind.REAL, description="Real ou pseudo")
    origin_job_id: Optional[str] = Field(None, description="Tarefa que gerou a sobra")


class Constraints(ContractModel):
    """Restrições de processo"""
    min_weld_segment: float = Field(config.DEFAULT_MIN_WELD_SEGMENT, description="Segmento mínimo de solda (mm)")
    reuse_threshold: float = Field(config.DEFAULT_REUSE_THRESHOLD, description="Sobra mínima reaproveitável (mm)")
    max_weld_segments: int = Field(config.DEFAULT_MAX_WELD_SEGMENTS, description="Máximo de segmentos por peça soldada")
    kerf_width: float = Field(config.DEFAULT_KERF_WIDTH, description="Espessura do corte (mm)")
    min_offcut_length: float = Field(0.0, description="Menor ponta aceitável após o corte (mm)")
    max_cuts_per_bar: Optional[int] = Field(None, description="Máximo de peças por barra")
    selection_policy: str = Field(config.DEFAULT_SELECTION_POLICY, description="best_fit ou first_fit")
    max_backtrack: int = Field(config.DEFAULT_MAX_BACKTRACK, description="Alternativas tentadas após rejeição")
    epsilon: float = Field(config.LENGTH_EPSILON, description="Tolerância de comparação (mm)")
    progress_interval: int = Field(config.PROGRESS_INTERVAL, description="Colocações entre relatórios de progresso")

    @property
    def welding_enabled(self) -> bool:
        return self.max_weld_segments > 1


class Violation(ContractModel):
    """Violação de uma regra de processo"""
    rule_id: str
    message: str
    severity: Severity
    subject: Optional[str] = None


class ValidationReport(ContractModel):
    """Resultado da validação de restrições"""
    valid: bool
    violations: List[Violation] = Field(default_factory=list)

    @property
    def errors(self) -> List[Violation]:
        return [v for v in self.violations if v.severity == Severity.ERROR]

    @property
    def warnings(self) -> List[Violation]:
        return [v for v in self.violations if v.severity == Severity.WARNING]


class CutItem(ContractModel):
    """Corte individual dentro de um plano"""
    design_piece_id: str
    length: float
    quantity: int = 1
    weld_segment: bool = Field(False, description="Segmento de uma peça soldada")


class CuttingPlan(ContractModel):
    """Plano de corte de uma barra ou sobra"""
    source_type: SourceType
    source_id: str = Field(..., description="Barra modular ou sobra de origem")
    specification: str
    source_length: float
    cuts: List[CutItem] = Field(default_factory=list)
    waste: float = 0.0
    new_remainders: List[Remainder] = Field(default_factory=list)
    violations: List[Violation] = Field(default_factory=list)

    @property
    def used_length(self) -> float:
        """Comprimento total das peças (sem perdas de corte)"""
        return sum(cut.length * cut.quantity for cut in self.cuts)

    @property
    def remainder_length(self) -> float:
        return sum(r.length for r in self.new_remainders)

    @property
    def accounted_length(self) -> float:
        """Peças + perdas + sobras; deve igualar source_length"""
        return self.used_length + self.waste + self.remainder_length


class UnsatisfiedDemand(ContractModel):
    """Unidade de demanda que não coube em nenhum plano válido"""
    design_piece_id: str
    length: float
    quantity: int = 1
    reason: str


class Solution(ContractModel):
    """Solução de um grupo de compatibilidade"""
    group_key: str
    cutting_plans: List[CuttingPlan] = Field(default_factory=list)
    unsatisfied: List[UnsatisfiedDemand] = Field(default_factory=list)


class ModuleUsage(ContractModel):
    """Linha da lista de compras de barras modulares"""
    specification: str
    length: float
    count: int
    total_length: float
    total_used: float
    total_waste: float
    total_remainder: float
    utilization: float


class OptimizationResult(ContractModel):
    """
    Resultado completo da otimização

    Os relatórios consomem ``success``, ``solutions``, os totais, ``execution_time``
    e ``error``. Os campos em ``EXTENSION_FIELDS`` são extensões opcionais: sempre
    presentes (listas vazias por padrão), mas nenhum consumidor do contrato depende deles.
    """
    EXTENSION_FIELDS: ClassVar[Tuple[str, ...]] = ("unsatisfied", "module_usage", "real_remainders")

    success: bool = Field(..., description="Se a otimização foi bem-sucedida")
    solutions: Dict[str, Solution] = Field(default_factory=dict)
    total_module_used: int = 0
    total_material: float = 0.0
    total_waste: float = 0.0
    total_real_remainder: float = 0.0
    total_pseudo_remainder: float = 0.0
    total_loss_rate: float = 0.0
    execution_time: float = Field(0.0, description="Tempo de processamento (ms)")
    error: Optional[str] = None

    # Extensões opcionais
    unsatisfied: List[UnsatisfiedDemand] = Field(default_factory=list, description="Demanda não atendida")
    module_usage: List[ModuleUsage] = Field(default_factory=list, description="Lista de compras (opcional)")
    real_remainders: List[Remainder] = Field(default_factory=list, description="Novas sobras reais (opcional)")

    def report_fields(self) -> Dict:
        """Somente o contrato consumido pelos relatórios, em camelCase"""
        return self.model_dump(mode="json", by_alias=True, exclude=set(self.EXTENSION_FIELDS))


class OptimizationRequest(ContractModel):
    """Requisição para otimização"""
    design_steels: List[DesignPiece] = Field(..., description="Peças de projeto")
    module_steels: List[StockBar] = Field(..., description="Barras modulares disponíveis")
    remainders: List[Remainder] = Field(default_factory=list, description="Sobras de tarefas anteriores")
    constraints: Constraints = Field(default_factory=Constraints)


class ValidationContext(ContractModel):
    """Dados sobre os quais as regras de restrição são avaliadas"""
    design_pieces: List[DesignPiece] = Field(default_factory=list)
    stock_bars: List[StockBar] = Field(default_factory=list)
    remainders: List[Remainder] = Field(default_factory=list)
    plan: Optional[CuttingPlan] = None


class Job(ContractModel):
    """Tarefa de otimização assíncrona"""
    id: str
    status: JobStatus = JobStatus.PENDING
    progress: float = 0.0
    submitted_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    result: Optional[OptimizationResult] = None
    error: Optional[str] = None

    @field_validator('progress')
    @classmethod
    def clamp_progress(cls, v):
        return min(max(v, 0.0), 1.0)


class JobProgress(ContractModel):
    """Instantâneo de progresso"""
    id: str
    status: JobStatus
    progress: float
