"""Merging and deduplication of static and model findings."""

from scaudit.combine import combine, deduplicate
from scaudit.models import Finding, FindingSource


def static(category, lines, severity='High', **kw):
    return Finding(category=category, affected_lines=lines, severity=severity, **kw)


def test_static_first_then_model():
    a = static('tx-origin', [7])
    b = static('reentrancy', [12])
    merged = combine([a], [b])
    assert [f.category for f in merged] == ['tx-origin', 'reentrancy']
    assert [f.source for f in merged] == [FindingSource.STATIC, FindingSource.MODEL]


def test_collision_keeps_static_finding():
    s = static('tx-origin', [7], name='static hit')
    m = static('tx-origin', [7], name='model hit')
    merged = combine([s], [m])
    assert len(merged) == 1
    assert merged[0].name == 'static hit'
    assert merged[0].source == FindingSource.STATIC


def test_key_ignores_confidence_and_snippet():
    a = static('reentrancy', [3, 4], confidence='High', code_snippet='x.call()')
    b = static('reentrancy', [3, 4], confidence='Low', code_snippet='something else')
    assert a.dedup_key() == b.dedup_key()
    assert len(deduplicate([a, b])) == 1


def test_key_distinguishes_severity_and_lines():
    base = static('reentrancy', [3])
    assert base.dedup_key() != static('reentrancy', [3], severity='Low').dedup_key()
    assert base.dedup_key() != static('reentrancy', [4]).dedup_key()
    assert base.dedup_key() != static('reentrancy', [3, 4]).dedup_key()


def test_severity_case_does_not_split_keys():
    assert static('other', [1], severity='high').dedup_key() == static('other', [1]).dedup_key()


def test_combine_is_idempotent():
    static_findings = [static('tx-origin', [7]), static('tx-origin', [7]), static('selfdestruct', [8])]
    model_findings = [static('selfdestruct', [8]), static('reentrancy', [2], severity='Critical')]
    once = combine(static_findings, model_findings)
    assert combine(once, []) == once
    assert combine([], once) == once


def test_existing_source_is_preserved():
    m = static('reentrancy', [1], source=FindingSource.MODEL)
    merged = combine([m], [])
    assert merged[0].source == FindingSource.MODEL


def test_findings_without_lines_still_deduplicate():
    first = Finding(category='x', severity='High')
    second = Finding(category='x', severity='High', name='other')
    assert first.dedup_key() == 'x--High'

    merged = combine([], [first, second])
    assert len(merged) == 1
    assert merged[0].name == first.name
    assert merged[0].source == FindingSource.MODEL


def test_empty_inputs():
    assert combine([], []) == []
