from dataclasses import dataclass, field
from enum import Enum
from typing import Any


Scalar = str | int | float | None
RawRow = dict[str, Any]
NormalizedRecord = dict[str, Any]

VALUE_KINDS = ("string", "number", "date")


@dataclass(frozen=True)
class FieldMapping:
    source_label: str
    target_field: str
    value_kind: str = "string"


@dataclass(frozen=True)
class SchemaMapping:
    dataset_name: str
    target_relation: str
    field_mappings: tuple[FieldMapping, ...]
    relation_definition: str | None = None
    x_axis_field: str | None = None
    y_axis_field: str | None = None
    unit: str | None = None
    label: str | None = None

    @property
    def target_fields(self) -> tuple[str, ...]:
        return tuple(fm.target_field for fm in self.field_mappings)


class RelationState(str, Enum):
    UNRESOLVED = "unresolved"
    MATERIALIZING = "materializing"
    RESOLVED = "resolved"


@dataclass(frozen=True)
class ResolvedRelation:
    name: str
    fields: tuple[str, ...]
    fixed: bool
    created: bool = False
    state: RelationState = RelationState.RESOLVED
    create_statement: str | None = None


class LoadStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class LoadReport:
    status: LoadStatus
    committed: int
    total: int
    batches: int
    failed_at_index: int | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == LoadStatus.SUCCEEDED


@dataclass(frozen=True)
class ClassifiedError:
    kind: str
    user_message: str
    remediation_hint: str | None = None


@dataclass(frozen=True)
class ProgressEvent:
    status: str
    message: str
    committed: int = 0
    total: int = 0
    error: ClassifiedError | None = None


@dataclass
class IngestionRun:
    records_total: int = 0
    records_loaded: int = 0
    status: str = "pending"
    mapping: SchemaMapping | None = None
    relation: ResolvedRelation | None = None
    records: list[NormalizedRecord] = field(default_factory=list)
    reason: str | None = None
    error: ClassifiedError | None = None
    events: list[ProgressEvent] = field(default_factory=list)
    analysis: Any = None

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


@dataclass(frozen=True)
class AIInsight:
    title: str
    content: str
    type: str


@dataclass(frozen=True)
class AIRecommendation:
    id: str
    title: str
    description: str
    icon: str


@dataclass(frozen=True)
class UploadAnalysis:
    insights: tuple[AIInsight, ...]
    recommendations: tuple[AIRecommendation, ...]


@dataclass(frozen=True)
class DetailedAnalysis:
    report_title: str
    summary: str
    strategic_suggestions: tuple[str, ...]
    risk_factor: str


@dataclass(frozen=True)
class RegionSummary:
    region: str
    residents: int
    budget_millions: float
    mismatch_ratio: float
