"""Report assembly, failure records and rendering."""

import json
import re

import pytest

from scaudit.errors import AnalysisServiceUnavailable, ReportIntegrityError
from scaudit.models import (
    AuditStatus,
    AuditType,
    ChainContract,
    CodeQuality,
    ContractInfo,
    Finding,
    FindingSource,
    ModelAnalysis,
    RiskLevel,
)
from scaudit.bytecode import analyze_bytecode
from scaudit.report import (
    DEFAULT_SUMMARY,
    assemble,
    assemble_bytecode,
    failed_record,
    generate_audit_id,
    render_report,
)
from scaudit.scoring import ScoreCalculator

from conftest import ADDRESS


def findings():
    return [
        Finding(name='tx.origin auth', severity='High', category='tx-origin', affected_lines=[7],
                source=FindingSource.STATIC),
        Finding(name='Reentrancy', severity='Critical', category='reentrancy', affected_lines=[12],
                source=FindingSource.MODEL, recommendation='Use checks-effects-interactions'),
    ]


def build(items=None, analysis=None):
    items = findings() if items is None else items
    return assemble(
        generate_audit_id(),
        ContractInfo(name='Wallet'),
        items,
        ScoreCalculator().score(items, analysis.code_quality.score if analysis else None),
        12,
        analysis=analysis,
    )


def test_audit_id_format():
    assert re.match(r'^audit_\d+_[0-9a-f]{12}$', generate_audit_id())
    assert generate_audit_id() != generate_audit_id()


def test_assemble_full_report():
    report = build()
    assert report.status == AuditStatus.COMPLETED
    assert report.type == AuditType.FULL_ANALYSIS
    assert report.overall_score == 35
    assert report.risk_level == RiskLevel.HIGH
    assert sum(report.severity_counts.values()) == len(report.findings)
    assert report.summary == DEFAULT_SUMMARY
    assert report.code_quality.score == 70


def test_model_summary_and_quality_carried():
    analysis = ModelAnalysis(summary='Two issues.', code_quality=CodeQuality(score=55))
    report = build(analysis=analysis)
    assert report.summary == 'Two issues.'
    assert report.code_quality.score == 55


def test_unknown_severity_breaks_integrity():
    odd = findings() + [Finding(name='Missing event', severity='Informational', category='other',
                                affected_lines=[1], source=FindingSource.MODEL)]
    with pytest.raises(ReportIntegrityError) as info:
        build(odd)
    assert info.value.status == 502
    assert "'Missing event' (Informational, model source)" in info.value.message
    assert 'tx.origin auth' not in info.value.message


def test_bytecode_report_is_fixed_score():
    contract = ChainContract(address=ADDRESS, chain='ethereum', chain_id=1, bytecode='0x60ff')
    report = assemble_bytecode('audit_1_abc', contract, analyze_bytecode(contract.bytecode), 5)
    assert report.type == AuditType.BYTECODE_ONLY
    assert report.overall_score == 60
    assert report.risk_level == RiskLevel.MEDIUM
    assert report.findings == ()
    assert report.bytecode_analysis.patterns['hasSelfdestruct']
    assert report.contract_info.address == ADDRESS
    assert len(report.recommendations) == 3


def test_failed_record():
    record = failed_record('audit_1_abc', AnalysisServiceUnavailable('down'), 40, chain='ethereum')
    assert record.status == AuditStatus.FAILED
    assert record.error == 'ANALYSIS_SERVICE_UNAVAILABLE'
    assert record.message == 'down'
    assert record.to_wire()['executionTimeMs'] == 40


def test_failed_record_for_unexpected_error():
    assert failed_record('audit_1_abc', KeyError('x')).error == 'INTERNAL_ERROR'


def test_wire_form_is_camel_case():
    wire = build().to_wire()
    assert {'auditId', 'contractInfo', 'overallScore', 'riskLevel', 'severityCounts',
            'executionTimeMs'} <= set(wire)
    assert wire['findings'][0]['affectedLines'] == [7]
    assert wire['findings'][1]['source'] == 'model'


def test_render_json():
    report = build()
    data = json.loads(render_report(report, 'json'))
    assert data['auditSummary']['overallScore'] == 35
    assert data['auditSummary']['totalVulnerabilities'] == 2
    assert len(data['vulnerabilities']) == 2


def test_render_json_without_recommendations():
    analysis = ModelAnalysis(recommendations=('Add tests',))
    data = json.loads(render_report(build(analysis=analysis), 'json', include_recommendations=False))
    assert data['recommendations'] == []


def test_render_markdown():
    text = render_report(build(), 'markdown')
    assert text.startswith('# Smart Contract Audit Report')
    assert '- **Overall Score:** 35/100' in text
    assert '### Reentrancy' in text
    assert '| Critical | 1 |' in text


def test_render_unknown_format():
    with pytest.raises(ValueError):
        render_report(build(), 'pdf')


def test_report_counts_are_read_only():
    report = build()
    with pytest.raises(TypeError):
        report.severity_counts['Critical'] = 5
    with pytest.raises(TypeError):
        report.finding_sources['model'] = 9
    assert report.severity_counts['Critical'] == 1
    wire = report.to_wire()
    assert type(wire['severityCounts']) is dict
    assert wire['findingSources'] == {}
    assert json.loads(render_report(report, 'json'))['auditSummary']['severityCounts']['Critical'] == 1


def test_render_html():
    text = render_report(build(), 'html')
    assert text.startswith('<!DOCTYPE html>')
    assert '<title>Smart Contract Audit Report - Wallet</title>' in text
    assert '<strong>Overall Score:</strong> 35/100' in text
    assert '<div class="vulnerability critical-risk">' in text
    assert '<tr><td>Critical</td><td>1</td></tr>' in text


def test_render_html_escapes_report_text():
    hostile = [Finding(name='<script>alert(1)</script>', severity='Low', category='other',
                       affected_lines=[3], description='a < b && c', source=FindingSource.MODEL)]
    text = render_report(build(hostile), 'HTML')
    assert '<script>' not in text
    assert '&lt;script&gt;alert(1)&lt;/script&gt;' in text
    assert 'a &lt; b &amp;&amp; c' in text


def test_render_html_without_recommendations():
    analysis = ModelAnalysis(recommendations=('Add tests',))
    assert 'Add tests' in render_report(build(analysis=analysis), 'html')
    assert 'Add tests' not in render_report(build(analysis=analysis), 'html', include_recommendations=False)
