import json
import time
import uuid
from datetime import datetime, timezone
from html import escape
from typing import Any, Dict, Iterable, Sequence

from scaudit.bytecode import BYTECODE_RECOMMENDATIONS, BYTECODE_SUMMARY
from scaudit.errors import AuditError, ReportIntegrityError
from scaudit.models import (
    AuditReport,
    AuditType,
    BytecodeAnalysis,
    ChainContract,
    ContractInfo,
    FailedAudit,
    Finding,
    ModelAnalysis,
    RiskLevel,
    ScoreResult,
    StaticParseResult,
    severity_label,
)
from scaudit.scoring import empty_severity_counts

DEFAULT_SUMMARY = 'Static and model-based security analysis completed'
REPORT_VERSION = '1.0.0'


def generate_audit_id() -> str:
    return f"audit_{int(time.time() * 1000)}_{uuid.uuid4().hex[:12]}"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


# =============================================================================
# ASSEMBLY
# =============================================================================

def build_contract_info(
    parse_result: StaticParseResult,
    contract: ChainContract | None = None,
) -> ContractInfo:
    metrics = parse_result.code_metrics
    name = (contract.contract_name if contract else None) or \
        (parse_result.contract_names[0] if parse_result.contract_names else 'Unknown')
    info = {
        'name': name,
        'function_count': metrics.function_count,
        'modifier_count': metrics.modifier_count,
        'event_count': metrics.event_count,
        'complexity': metrics.complexity,
        'lines_of_code': metrics.code_lines,
    }
    if contract is not None:
        info.update(
            address=contract.address,
            chain=contract.chain,
            chain_id=contract.chain_id,
            balance=contract.balance,
            transaction_count=contract.transaction_count,
        )
    return ContractInfo(**info)


def assemble(
    audit_id: str,
    contract_info: ContractInfo,
    findings: Sequence[Finding],
    scores: ScoreResult,
    execution_time_ms: int,
    analysis: ModelAnalysis | None = None,
    finding_sources: Dict[str, int] | None = None,
) -> AuditReport:
    counted = sum(scores.severity_counts.values())
    if counted != len(findings):
        known = set(empty_severity_counts())
        offending = [
            f"'{f.name}' ({severity_label(f.severity)}, {f.source.value if f.source else 'unknown'} source)"
            for f in findings if severity_label(f.severity) not in known
        ]
        raise ReportIntegrityError(
            f"Severity counts cover {counted} of {len(findings)} findings"
            + (f"; unrecognized severity on {', '.join(offending)}" if offending else "")
        )

    analysis = analysis or ModelAnalysis()
    return AuditReport(
        audit_id=audit_id,
        type=AuditType.FULL_ANALYSIS,
        contract_info=contract_info,
        findings=findings,
        overall_score=scores.overall,
        risk_level=scores.risk_level,
        severity_counts=scores.severity_counts,
        summary=analysis.summary or DEFAULT_SUMMARY,
        recommendations=analysis.recommendations,
        gas_optimizations=analysis.gas_optimizations,
        code_quality=analysis.code_quality.model_copy(update={'score': scores.code_quality}),
        finding_sources=finding_sources or {},
        timestamp=utc_now(),
        execution_time_ms=execution_time_ms,
    )


def assemble_bytecode(
    audit_id: str,
    contract: ChainContract,
    analysis: BytecodeAnalysis,
    execution_time_ms: int,
    default_score: int = 60,
) -> AuditReport:
    """Bytecode-only report. The score is a constant, never computed."""
    return AuditReport(
        audit_id=audit_id,
        type=AuditType.BYTECODE_ONLY,
        contract_info=ContractInfo(
            name=contract.contract_name or 'Unknown',
            address=contract.address,
            chain=contract.chain,
            chain_id=contract.chain_id,
            balance=contract.balance,
            transaction_count=contract.transaction_count,
            complexity=analysis.complexity,
        ),
        findings=(),
        overall_score=default_score,
        risk_level=RiskLevel.MEDIUM,
        severity_counts=empty_severity_counts(),
        summary=BYTECODE_SUMMARY,
        recommendations=BYTECODE_RECOMMENDATIONS,
        bytecode_analysis=analysis,
        timestamp=utc_now(),
        execution_time_ms=execution_time_ms,
    )


def failed_record(
    audit_id: str,
    exc: BaseException,
    execution_time_ms: int = 0,
    contract_address: str | None = None,
    chain: str | None = None,
) -> FailedAudit:
    code = exc.code if isinstance(exc, AuditError) else AuditError.code
    return FailedAudit(
        audit_id=audit_id,
        error=code,
        message=str(exc) or exc.__class__.__name__,
        timestamp=utc_now(),
        execution_time_ms=execution_time_ms,
        contract_address=contract_address,
        chain=chain,
    )


# =============================================================================
# RENDERING
# =============================================================================

def build_json_report(report: AuditReport, include_recommendations: bool = True) -> Dict[str, Any]:
    wire = report.to_wire()
    return {
        'reportMetadata': {
            'generatedAt': utc_now(),
            'format': 'json',
            'version': REPORT_VERSION,
            'includeRecommendations': include_recommendations,
        },
        'auditSummary': {
            'auditId': report.audit_id,
            'type': report.type.value,
            'contractName': report.contract_info.name,
            'overallScore': report.overall_score,
            'riskLevel': report.risk_level.value,
            'totalVulnerabilities': len(report.findings),
            'severityCounts': dict(report.severity_counts),
            'executionTimeMs': report.execution_time_ms,
        },
        'contractInfo': wire['contractInfo'],
        'vulnerabilities': wire.get('findings', []),
        'recommendations': list(report.recommendations) if include_recommendations else [],
        'gasOptimizations': wire.get('gasOptimizations', []),
        'codeQuality': wire.get('codeQuality', {}),
        'bytecodeAnalysis': wire.get('bytecodeAnalysis'),
    }


def _bullets(items: Iterable[str]) -> str:
    return '\n'.join(f"- {item}" for item in items)


def build_markdown_report(report: AuditReport, include_recommendations: bool = True) -> str:
    info = report.contract_info
    out = [
        "# Smart Contract Audit Report",
        "",
        "## Contract Information",
        f"- **Name:** {info.name}",
        f"- **Audit ID:** {report.audit_id}",
        f"- **Type:** {report.type.value}",
    ]
    if info.address:
        out.append(f"- **Address:** {info.address} ({info.chain})")
    out += [
        f"- **Generated:** {utc_now()}",
        "",
        "## Audit Summary",
        f"- **Overall Score:** {report.overall_score}/100",
        f"- **Risk Level:** {report.risk_level.value}",
        f"- **Total Vulnerabilities:** {len(report.findings)}",
        f"- **Execution Time:** {report.execution_time_ms}ms",
        "",
        report.summary,
        "",
        "| Severity | Count |",
        "|----------|-------|",
    ]
    out += [f"| {sev} | {count} |" for sev, count in report.severity_counts.items()]
    out.append("")

    if report.findings:
        out += ["## Vulnerabilities", ""]
        for f in report.findings:
            out.append(f"### {f.name}")
            out.append(f"- **Severity:** {severity_label(f.severity)}")
            out.append(f"- **Category:** {f.category}")
            if f.affected_lines:
                out.append(f"- **Lines:** {', '.join(str(l) for l in f.affected_lines)}")
            out.append(f"- **Source:** {f.source.value if f.source else 'unknown'}")
            if f.description:
                out.append(f"- **Description:** {f.description}")
            if f.recommendation:
                out.append(f"- **Recommendation:** {f.recommendation}")
            out.append("")

    if report.bytecode_analysis is not None and report.bytecode_analysis.warnings:
        out += ["## Bytecode Warnings", _bullets(report.bytecode_analysis.warnings), ""]

    if include_recommendations and report.recommendations:
        out += ["## Recommendations", _bullets(report.recommendations), ""]

    out += [
        "## Contract Details",
        "| Property | Value |",
        "|----------|-------|",
        f"| Functions | {info.function_count} |",
        f"| Modifiers | {info.modifier_count} |",
        f"| Events | {info.event_count} |",
        f"| Complexity | {info.complexity} |",
        f"| Lines of Code | {info.lines_of_code} |",
    ]
    return '\n'.join(out) + '\n'


HTML_STYLE = """\
body { font-family: Arial, sans-serif; margin: 20px; line-height: 1.6; }
.header { background: #f4f4f4; padding: 20px; border-radius: 5px; }
.summary { background: #e8f5e8; padding: 15px; margin: 20px 0; border-radius: 5px; }
.vulnerability { padding: 10px; margin: 10px 0; border-left: 4px solid #ffc107; background: #fff3cd; }
.critical-risk, .high-risk { border-left-color: #dc3545; background: #f8d7da; }
.medium-risk { border-left-color: #fd7e14; }
.low-risk { border-left-color: #28a745; background: #d4edda; }
table { border-collapse: collapse; margin: 20px 0; }
th, td { border: 1px solid #ddd; padding: 8px; text-align: left; }
th { background-color: #f2f2f2; }"""


def _p(label: str, value: Any) -> str:
    return f"<p><strong>{label}:</strong> {escape(str(value))}</p>"


def build_html_report(report: AuditReport, include_recommendations: bool = True) -> str:
    """Standalone HTML page. Every value taken from the report is escaped."""
    info = report.contract_info
    out = [
        "<!DOCTYPE html>",
        '<html lang="en">',
        "<head>",
        '<meta charset="UTF-8">',
        f"<title>Smart Contract Audit Report - {escape(info.name)}</title>",
        f"<style>\n{HTML_STYLE}\n</style>",
        "</head>",
        "<body>",
        '<div class="header">',
        "<h1>Smart Contract Audit Report</h1>",
        _p("Contract", info.name),
        _p("Audit ID", report.audit_id),
        _p("Type", report.type.value),
    ]
    if info.address:
        out.append(_p("Address", f"{info.address} ({info.chain})"))
    out += [
        _p("Generated", utc_now()),
        "</div>",
        '<div class="summary">',
        "<h2>Audit Summary</h2>",
        _p("Overall Score", f"{report.overall_score}/100"),
        _p("Risk Level", report.risk_level.value),
        _p("Total Vulnerabilities", len(report.findings)),
        _p("Execution Time", f"{report.execution_time_ms}ms"),
        f"<p>{escape(report.summary)}</p>",
        "<table>",
        "<tr><th>Severity</th><th>Count</th></tr>",
    ]
    out += [f"<tr><td>{escape(sev)}</td><td>{count}</td></tr>" for sev, count in report.severity_counts.items()]
    out += ["</table>", "</div>"]

    if report.findings:
        out.append("<h2>Vulnerabilities</h2>")
        for f in report.findings:
            sev = severity_label(f.severity)
            out += [
                f'<div class="vulnerability {escape(sev.lower())}-risk">',
                f"<h3>{escape(f.name)}</h3>",
                _p("Severity", sev),
                _p("Category", f.category),
            ]
            if f.affected_lines:
                out.append(_p("Lines", ', '.join(str(l) for l in f.affected_lines)))
            out.append(_p("Source", f.source.value if f.source else 'unknown'))
            if f.description:
                out.append(_p("Description", f.description))
            if f.recommendation:
                out.append(_p("Recommendation", f.recommendation))
            out.append("</div>")

    if report.bytecode_analysis is not None and report.bytecode_analysis.warnings:
        out.append("<h2>Bytecode Warnings</h2>")
        out += ["<ul>"] + [f"<li>{escape(w)}</li>" for w in report.bytecode_analysis.warnings] + ["</ul>"]

    if include_recommendations and report.recommendations:
        out.append("<h2>Recommendations</h2>")
        out += ["<ul>"] + [f"<li>{escape(r)}</li>" for r in report.recommendations] + ["</ul>"]

    out += [
        "<h2>Contract Details</h2>",
        "<table>",
        "<tr><th>Property</th><th>Value</th></tr>",
        f"<tr><td>Functions</td><td>{info.function_count}</td></tr>",
        f"<tr><td>Modifiers</td><td>{info.modifier_count}</td></tr>",
        f"<tr><td>Events</td><td>{info.event_count}</td></tr>",
        f"<tr><td>Complexity</td><td>{info.complexity}</td></tr>",
        f"<tr><td>Lines of Code</td><td>{info.lines_of_code}</td></tr>",
        "</table>",
        "</body>",
        "</html>",
    ]
    return '\n'.join(out) + '\n'


def render_report(report: AuditReport, fmt: str = 'json', include_recommendations: bool = True) -> str:
    fmt = fmt.lower()
    if fmt == 'markdown':
        return build_markdown_report(report, include_recommendations)
    if fmt == 'html':
        return build_html_report(report, include_recommendations)
    if fmt == 'json':
        return json.dumps(build_json_report(report, include_recommendations), indent=2)
    raise ValueError(f"Unsupported report format: {fmt}")
