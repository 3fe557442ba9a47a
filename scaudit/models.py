from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator
from pydantic.alias_generators import to_camel

# =============================================================================
# ENUMS
# =============================================================================

class Severity(str, Enum):
    CRITICAL = "Critical"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class FindingSource(str, Enum):
    STATIC = "static"
    MODEL = "model"


class AuditStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


class AuditType(str, Enum):
    FULL_ANALYSIS = "full-analysis"
    BYTECODE_ONLY = "bytecode-only"


class RiskLevel(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


SEVERITY_ORDER = {'Critical': 0, 'High': 1, 'Medium': 2, 'Low': 3}


def severity_label(severity: Union[Severity, str]) -> str:
    if isinstance(severity, Severity):
        return severity.value
    return str(severity)


def normalize_severity(value: Any) -> Union[Severity, str]:
    """Map adapter severity input onto the four labels.

    Missing or blank values become Medium. Case-insensitive matches become the
    canonical label. Anything else is returned verbatim and scored as unknown.
    """
    if value is None:
        return Severity.MEDIUM
    if isinstance(value, Severity):
        return value
    text = str(value).strip()
    if not text:
        return Severity.MEDIUM
    for severity in Severity:
        if severity.value.lower() == text.lower():
            return severity
    return text


def coerce_lines(value: Any) -> Tuple[int, ...]:
    if value is None:
        return ()
    if isinstance(value, (int, str)):
        value = [value]
    lines = []
    for item in value:
        try:
            lines.append(int(item))
        except (TypeError, ValueError):
            continue
    return tuple(lines)


# =============================================================================
# DATA MODELS
# =============================================================================

class WireModel(BaseModel):
    """Base for everything that crosses the HTTP or persistence boundary.

    Attributes are snake_case in Python and camelCase on the wire.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Finding(WireModel):
    name: str = "Unknown Vulnerability"
    description: str = ""
    severity: Union[Severity, str] = Field(default=Severity.MEDIUM, union_mode="left_to_right")
    category: str = "other"
    affected_lines: Tuple[int, ...] = ()
    code_snippet: str | None = None
    recommendation: str | None = None
    source: FindingSource | None = None
    confidence: str = "Medium"

    @field_validator("severity", mode="before")
    @classmethod
    def _severity(cls, value: Any) -> Union[Severity, str]:
        return normalize_severity(value)

    @field_validator("affected_lines", mode="before")
    @classmethod
    def _lines(cls, value: Any) -> Tuple[int, ...]:
        return coerce_lines(value)

    @field_validator("category", mode="before")
    @classmethod
    def _category(cls, value: Any) -> str:
        return str(value) if value not in (None, "") else "other"

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, value: Any) -> str:
        return str(value) if value not in (None, "") else "Medium"

    def dedup_key(self) -> str:
        lines = ",".join(str(line) for line in self.affected_lines)
        return f"{self.category}-{lines}-{severity_label(self.severity)}"


class CodeMetrics(WireModel):
    total_lines: int = 0
    code_lines: int = 0
    comment_lines: int = 0
    complexity: int = 1
    size: int = 0
    function_count: int = 0
    modifier_count: int = 0
    event_count: int = 0


class StaticParseResult(WireModel):
    findings: Tuple[Finding, ...] = ()
    code_metrics: CodeMetrics = CodeMetrics()
    contract_names: Tuple[str, ...] = ()


class GasOptimization(WireModel):
    description: str = ""
    affected_lines: Tuple[int, ...] = ()
    potential_savings: str | None = None

    @field_validator("affected_lines", mode="before")
    @classmethod
    def _lines(cls, value: Any) -> Tuple[int, ...]:
        return coerce_lines(value)


class CodeQuality(WireModel):
    score: int | None = None
    issues: Tuple[str, ...] = ()
    strengths: Tuple[str, ...] = ()


class ModelAnalysis(WireModel):
    vulnerabilities: Tuple[Finding, ...] = ()
    gas_optimizations: Tuple[GasOptimization, ...] = ()
    code_quality: CodeQuality = CodeQuality()
    summary: str | None = None
    recommendations: Tuple[str, ...] = ()


class BytecodeAnalysis(WireModel):
    size: int
    complexity: int
    patterns: Dict[str, bool]
    warnings: Tuple[str, ...] = ()


class ScoreResult(WireModel):
    overall: int
    risk_level: RiskLevel
    severity_counts: Dict[str, int]
    total_findings: int
    code_quality: int = 70


class ChainContract(WireModel):
    address: str
    chain: str
    chain_id: int | None = None
    bytecode: str = "0x"
    source_code: str | None = None
    contract_name: str | None = None
    balance: str = "0"
    transaction_count: int = 0


class ContractInfo(WireModel):
    name: str = "Unknown"
    function_count: int = 0
    modifier_count: int = 0
    event_count: int = 0
    complexity: int = 0
    lines_of_code: int = 0
    address: str | None = None
    chain: str | None = None
    chain_id: int | None = None
    balance: str | None = None
    transaction_count: int | None = None


class AuditReport(WireModel):
    audit_id: str
    status: AuditStatus = AuditStatus.COMPLETED
    type: AuditType = AuditType.FULL_ANALYSIS
    contract_info: ContractInfo
    findings: Tuple[Finding, ...] = ()
    overall_score: int = Field(ge=0, le=100)
    risk_level: RiskLevel
    severity_counts: Mapping[str, int]
    summary: str
    recommendations: Tuple[str, ...] = ()
    gas_optimizations: Tuple[GasOptimization, ...] = ()
    code_quality: CodeQuality | None = None
    bytecode_analysis: BytecodeAnalysis | None = None
    finding_sources: Mapping[str, int] = Field(default_factory=dict, validate_default=True)
    timestamp: str
    execution_time_ms: int

    # Frozen models still hand out their dicts; keep the counts read-only too.
    @field_validator("severity_counts", "finding_sources", mode="after")
    @classmethod
    def _read_only(cls, value: Mapping[str, int]) -> Mapping[str, int]:
        return MappingProxyType(dict(value))

    @field_serializer("severity_counts", "finding_sources")
    def _plain_dict(self, value: Mapping[str, int]) -> Dict[str, int]:
        return dict(value)


class FailedAudit(WireModel):
    audit_id: str
    status: AuditStatus = AuditStatus.FAILED
    error: str
    message: str
    timestamp: str
    execution_time_ms: int = 0
    contract_address: str | None = None
    chain: str | None = None
