from typing import Dict, Iterable, Mapping

from scaudit.config import DEFAULT_SEVERITY_WEIGHTS
from scaudit.models import Finding, RiskLevel, ScoreResult, Severity

CRITICAL_RISK_FLOOR = 25


def empty_severity_counts() -> Dict[str, int]:
    return {s.value: 0 for s in Severity}


def calculate_risk_level(score: int, high: int = 80, medium: int = 50) -> RiskLevel:
    if score >= high:
        return RiskLevel.LOW
    if score >= medium:
        return RiskLevel.MEDIUM
    # Fixed boundary, independent of the configurable thresholds.
    if score >= CRITICAL_RISK_FLOOR:
        return RiskLevel.HIGH
    return RiskLevel.CRITICAL


class ScoreCalculator:
    def __init__(
        self,
        weights: Mapping[str, int] | None = None,
        unknown_weight: int = 10,
        threshold_high: int = 80,
        threshold_medium: int = 50,
        default_code_quality: int = 70,
    ):
        self.weights = dict(weights or DEFAULT_SEVERITY_WEIGHTS)
        self.unknown_weight = unknown_weight
        self.threshold_high = threshold_high
        self.threshold_medium = threshold_medium
        self.default_code_quality = default_code_quality

    @classmethod
    def from_config(cls, config) -> "ScoreCalculator":
        return cls(
            weights=config.severity_weights,
            unknown_weight=config.unknown_severity_weight,
            threshold_high=config.threshold_high,
            threshold_medium=config.threshold_medium,
            default_code_quality=config.default_code_quality,
        )

    def deduction(self, findings: Iterable[Finding]) -> int:
        total = 0
        for finding in findings:
            total += self._weight(finding)
        return total

    def _weight(self, finding: Finding) -> int:
        if isinstance(finding.severity, Severity):
            return self.weights.get(finding.severity.value, self.unknown_weight)
        return self.unknown_weight

    def score(self, findings: Iterable[Finding], code_quality: int | None = None) -> ScoreResult:
        findings = list(findings)
        counts = empty_severity_counts()
        for finding in findings:
            # Unknown severities weigh in but stay out of every bucket.
            if isinstance(finding.severity, Severity):
                counts[finding.severity.value] += 1

        overall = max(0, 100 - self.deduction(findings))
        return ScoreResult(
            overall=overall,
            risk_level=calculate_risk_level(overall, self.threshold_high, self.threshold_medium),
            severity_counts=counts,
            total_findings=len(findings),
            code_quality=code_quality if code_quality is not None else self.default_code_quality,
        )
