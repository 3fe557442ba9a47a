from typing import Iterable, List

from scaudit.models import Finding, FindingSource

# =============================================================================
# DEDUPLICATION
# =============================================================================

def tag_source(findings: Iterable[Finding], source: FindingSource) -> List[Finding]:
    """Fill in provenance. A finding that already carries a source keeps it."""
    return [f if f.source is not None else f.model_copy(update={'source': source}) for f in findings]


def deduplicate(findings: Iterable[Finding]) -> List[Finding]:
    # First occurrence of a (category, lines, severity) key wins.
    seen = set()
    unique = []
    for finding in findings:
        key = finding.dedup_key()
        if key in seen:
            continue
        seen.add(key)
        unique.append(finding)
    return unique


def combine(static_findings: Iterable[Finding], model_findings: Iterable[Finding]) -> List[Finding]:
    """Merge static and model findings into one deduplicated, ordered list.

    Static findings are placed first, so on a key collision the static
    finding survives and the model duplicate is dropped.
    """
    merged = tag_source(static_findings, FindingSource.STATIC) + tag_source(model_findings, FindingSource.MODEL)
    return deduplicate(merged)
