"""Pattern scanner, structural check and code metrics."""

import pytest

from scaudit.errors import ParseError
from scaudit.models import Severity
from scaudit.static_analysis import (
    StaticFindingsAdapter,
    calculate_code_metrics,
    check_structure,
)

from conftest import CLEAN_CONTRACT, VULNERABLE_CONTRACT


def test_clean_contract_has_no_findings():
    result = StaticFindingsAdapter().parse(CLEAN_CONTRACT)
    assert result.findings == ()
    assert result.contract_names == ('Vault',)


def test_vulnerable_contract_lines_and_severity():
    result = StaticFindingsAdapter().parse(VULNERABLE_CONTRACT)
    hits = {(f.category, f.affected_lines) for f in result.findings}
    assert hits == {('tx-origin', (7,)), ('selfdestruct', (8,))}
    assert all(f.severity == Severity.HIGH for f in result.findings)
    assert all(f.source is None for f in result.findings)


def test_finding_shape():
    finding = StaticFindingsAdapter().scan("x = tx.origin;")[0]
    assert finding.name == "Static Analysis: tx-origin"
    assert finding.description == r"Pattern detected: tx\.origin"
    assert finding.code_snippet == "x = tx.origin;"
    assert finding.confidence == "High"


def test_overlapping_patterns_emit_one_finding_each():
    # `.call(` is both a reentrancy and an unchecked-call pattern
    findings = StaticFindingsAdapter().scan('(bool ok,) = to.call("");')
    categories = sorted(f.category for f in findings)
    assert categories == ['reentrancy', 'unchecked-call']


@pytest.mark.parametrize("source", [
    "contract A {",
    "contract A { function f( { } }",
    "contract A { } }",
])
def test_unbalanced_source_raises(source):
    with pytest.raises(ParseError):
        StaticFindingsAdapter().parse(source)


def test_brackets_in_comments_and_strings_ignored():
    check_structure('contract A { // }\n string s = "{("; /* ) */ }')


def test_empty_source_raises():
    with pytest.raises(ParseError):
        StaticFindingsAdapter().parse("")


def test_code_metrics():
    source = (
        "// header\n"
        "contract A {\n"
        "    event Paid(uint256 amount);\n"
        "    modifier only() { _; }\n"
        "    function f(uint x) public { if (x > 1 && x < 5) { } }\n"
        "\n"
        "}"
    )
    metrics = calculate_code_metrics(source)
    assert metrics.total_lines == 7
    assert metrics.code_lines == 6
    assert metrics.comment_lines == 1
    assert metrics.function_count == 1
    assert metrics.modifier_count == 1
    assert metrics.event_count == 1
    assert metrics.complexity == 3
    assert metrics.size == len(source)


def test_contract_names_skip_comments():
    source = "// contract Fake {}\nlibrary Math {}\ninterface IToken {}\ncontract Token {}"
    assert StaticFindingsAdapter().parse(source).contract_names == ('Math', 'IToken', 'Token')
