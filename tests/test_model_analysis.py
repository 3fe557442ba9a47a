"""Model adapter: reply extraction, normalization and transport failures."""

import json

import pytest
import requests

from scaudit.config import AuditConfig
from scaudit.errors import AnalysisServiceUnavailable
from scaudit.model_analysis import ModelFindingsAdapter, clean_json, parse_analysis
from scaudit.models import FindingSource, Severity
from scaudit.static_analysis import StaticFindingsAdapter

from conftest import VULNERABLE_CONTRACT

REPLY = {
    "vulnerabilities": [
        {
            "name": "Authorization through tx.origin",
            "severity": "high",
            "category": "tx-origin",
            "affectedLines": [7],
            "codeSnippet": "require(tx.origin == owner);",
            "recommendation": "Use msg.sender",
        },
        "not an object",
    ],
    "gasOptimizations": [{"description": "Cache owner", "affectedLines": "7"}],
    "codeQuality": {"score": 64, "issues": ["No events"], "strengths": []},
    "summary": "One high severity issue.",
    "recommendations": ["Replace tx.origin"],
}


class FakeResponse:
    def __init__(self, payload=None, status=200, text=None):
        self.payload = payload
        self.status_code = status
        self.text = text

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Server Error")

    def json(self):
        if self.text is not None:
            return json.loads(self.text)
        return self.payload


@pytest.fixture
def adapter():
    return ModelFindingsAdapter(AuditConfig(inference_api="http://inference.test/"))


def patch_post(monkeypatch, response=None, error=None):
    calls = []

    def fake_post(url, headers=None, json=None, timeout=None):
        calls.append({'url': url, 'headers': headers, 'json': json, 'timeout': timeout})
        if error is not None:
            raise error
        return response

    monkeypatch.setattr(requests, "post", fake_post)
    return calls


# --- clean_json ---

def test_clean_json_strips_fences_and_prose():
    text = "Here you go:\n```json\n" + json.dumps(REPLY) + "\n```\nThanks"
    assert clean_json(text)["summary"] == "One high severity issue."


def test_clean_json_prefers_vulnerability_object():
    text = '{"note": "x", "padding": "' + "y" * 50 + '"} {"vulnerabilities": []}'
    assert clean_json(text) == {"vulnerabilities": []}


def test_clean_json_renames_findings():
    assert clean_json('{"findings": [{"name": "a"}]}') == {"vulnerabilities": [{"name": "a"}]}


def test_clean_json_no_object():
    assert clean_json("I could not analyze this contract.") is None
    assert clean_json("{not json}") is None


def test_clean_json_braces_inside_snippets():
    reply = {
        "vulnerabilities": [{
            "severity": "Critical",
            "category": "reentrancy",
            "affectedLines": [10],
            "codeSnippet": "    balances[msg.sender] = 0;\n}",
        }],
        "codeQuality": {"score": 40, "issues": ["no guard"], "strengths": []},
        "summary": "Critical reentrancy.",
    }
    for text in (json.dumps(reply), "Result:\n" + json.dumps(reply) + "\nDone."):
        result = clean_json(text)
        assert result["summary"] == "Critical reentrancy."
        analysis = parse_analysis(result)
        assert len(analysis.vulnerabilities) == 1
        assert analysis.vulnerabilities[0].severity == Severity.CRITICAL


def test_clean_json_ignores_objects_without_vulnerabilities():
    assert clean_json('{"codeQuality": {"score": 40}, "summary": "fine"}') is None


def test_reply_without_vulnerability_list_is_unavailable(monkeypatch, adapter):
    content = '{"codeQuality": {"score": 40, "issues": [], "strengths": []}}'
    patch_post(monkeypatch, FakeResponse({"content": content}))
    with pytest.raises(AnalysisServiceUnavailable):
        adapter.analyze(VULNERABLE_CONTRACT)


# --- parse_analysis ---

def test_parse_analysis_normalizes():
    analysis = parse_analysis(REPLY)
    assert len(analysis.vulnerabilities) == 1
    vuln = analysis.vulnerabilities[0]
    assert vuln.severity == Severity.HIGH
    assert vuln.affected_lines == (7,)
    assert vuln.source == FindingSource.MODEL
    assert analysis.gas_optimizations[0].affected_lines == (7,)
    assert analysis.code_quality.score == 64
    assert analysis.recommendations == ("Replace tx.origin",)


def test_parse_analysis_tolerates_missing_sections():
    analysis = parse_analysis({"vulnerabilities": [{}]})
    vuln = analysis.vulnerabilities[0]
    assert vuln.name == "Unknown Vulnerability"
    assert vuln.severity == Severity.MEDIUM
    assert vuln.category == "other"
    assert analysis.code_quality.score is None
    assert analysis.summary is None


def test_unknown_severity_kept_verbatim():
    analysis = parse_analysis({"vulnerabilities": [{"severity": "Informational"}]})
    assert analysis.vulnerabilities[0].severity == "Informational"


# --- adapter ---

def test_analyze_posts_to_inference(monkeypatch, adapter):
    calls = patch_post(monkeypatch, FakeResponse({"content": json.dumps(REPLY)}))
    parse_result = StaticFindingsAdapter().parse(VULNERABLE_CONTRACT)

    analysis = adapter.analyze(VULNERABLE_CONTRACT, parse_result)

    assert len(analysis.vulnerabilities) == 1
    call = calls[0]
    assert call['url'] == "http://inference.test/inference"
    assert call['headers'] == {"x_project_id": "local", "x_job_id": "local"}
    assert call['timeout'] == 180
    user = call['json']['messages'][1]['content']
    assert "Contract Name: Wallet" in user
    assert "line 7: tx-origin" in user


def test_analyze_accepts_chat_completion_shape(monkeypatch, adapter):
    payload = {"choices": [{"message": {"content": json.dumps(REPLY)}}]}
    patch_post(monkeypatch, FakeResponse(payload))
    assert adapter.analyze(VULNERABLE_CONTRACT).summary == "One high severity issue."


@pytest.mark.parametrize("error", [
    requests.Timeout("read timed out"),
    requests.ConnectionError("refused"),
])
def test_transport_errors_are_unavailable(monkeypatch, adapter, error):
    patch_post(monkeypatch, error=error)
    with pytest.raises(AnalysisServiceUnavailable):
        adapter.analyze(VULNERABLE_CONTRACT)


@pytest.mark.parametrize("response", [
    FakeResponse(status=502),
    FakeResponse(text="<html>bad gateway</html>"),
    FakeResponse(["not", "a", "dict"]),
    FakeResponse({"content": ""}),
    FakeResponse({"content": "Sorry, no JSON today."}),
])
def test_unusable_replies_are_unavailable(monkeypatch, adapter, response):
    patch_post(monkeypatch, response)
    with pytest.raises(AnalysisServiceUnavailable):
        adapter.analyze(VULNERABLE_CONTRACT)


def test_no_retry_on_failure(monkeypatch, adapter):
    calls = patch_post(monkeypatch, error=requests.ConnectionError("refused"))
    with pytest.raises(AnalysisServiceUnavailable):
        adapter.analyze(VULNERABLE_CONTRACT)
    assert len(calls) == 1
