"""Line-oriented pattern scanner for Solidity sources.

This is not a parser. Each pattern is a regex tested against every source
line; a hit becomes a Finding carrying the line number and the trimmed line.
The structural check only guarantees balanced braces and parentheses, which
is enough to reject truncated or mangled submissions.
"""

import logging
import re
from typing import Dict, List

from scaudit.errors import ParseError
from scaudit.models import CodeMetrics, Finding, StaticParseResult

logger = logging.getLogger(__name__)

# =============================================================================
# PATTERN TABLES
# =============================================================================

VULNERABILITY_PATTERNS: Dict[str, List[re.Pattern]] = {
    'reentrancy': [
        re.compile(r'\.call\s*\{'),
        re.compile(r'\.call\s*\('),
        re.compile(r'\.send\s*\('),
        re.compile(r'\.transfer\s*\('),
        re.compile(r'external.*payable'),
    ],
    'integer-overflow': [
        re.compile(r'\+\+'),
        re.compile(r'--'),
        re.compile(r'\+\s*='),
        re.compile(r'-\s*='),
        re.compile(r'\*\s*='),
        re.compile(r'/\s*='),
    ],
    'access-control': [
        re.compile(r'onlyOwner'),
        re.compile(r'require\s*\(\s*msg\.sender'),
        re.compile(r'modifier'),
        re.compile(r'public\s+function'),
    ],
    'unchecked-call': [
        re.compile(r'\.call\s*\('),
        re.compile(r'\.delegatecall\s*\('),
        re.compile(r'\.staticcall\s*\('),
    ],
    'timestamp-dependence': [
        re.compile(r'block\.timestamp'),
        re.compile(r'now'),
        re.compile(r'block\.number'),
    ],
    'tx-origin': [
        re.compile(r'tx\.origin'),
    ],
    'delegatecall': [
        re.compile(r'\.delegatecall\s*\('),
    ],
    'selfdestruct': [
        re.compile(r'selfdestruct\s*\('),
    ],
}

CATEGORY_SEVERITY: Dict[str, str] = {
    'reentrancy': 'High',
    'integer-overflow': 'Medium',
    'access-control': 'High',
    'unchecked-call': 'Medium',
    'timestamp-dependence': 'Low',
    'tx-origin': 'High',
    'delegatecall': 'Medium',
    'selfdestruct': 'High',
}

COMPLEXITY_PATTERNS = [
    re.compile(r'if\s*\('),
    re.compile(r'else\s*if\s*\('),
    re.compile(r'while\s*\('),
    re.compile(r'for\s*\('),
    re.compile(r'&&'),
    re.compile(r'\|\|'),
    re.compile(r'\?'),
]

_COMMENTS_AND_STRINGS = re.compile(
    r'//[^\n]*|/\*.*?\*/|"(?:\\.|[^"\\\n])*"|\'(?:\\.|[^\'\\\n])*\'',
    re.S,
)
_CONTRACT_NAME = re.compile(r'\b(?:abstract\s+)?(?:contract|interface|library)\s+(\w+)')
_PAIRS = {'}': '{', ')': '('}


# =============================================================================
# HELPERS
# =============================================================================

def blank_comments_and_strings(code: str) -> str:
    """Replace comments and string literals with spaces, keeping line breaks."""
    return _COMMENTS_AND_STRINGS.sub(lambda m: re.sub(r'[^\n]', ' ', m.group(0)), code)


def check_structure(code: str) -> None:
    stack = []
    line = 1
    for ch in blank_comments_and_strings(code):
        if ch == '\n':
            line += 1
        elif ch in '{(':
            stack.append((ch, line))
        elif ch in '})':
            if not stack or stack[-1][0] != _PAIRS[ch]:
                raise ParseError(f"Failed to parse contract: unexpected '{ch}' on line {line}")
            stack.pop()
    if stack:
        opener, opened_at = stack[-1]
        raise ParseError(f"Failed to parse contract: unclosed '{opener}' opened on line {opened_at}")


def calculate_complexity(code: str) -> int:
    complexity = 1
    for pattern in COMPLEXITY_PATTERNS:
        complexity += len(pattern.findall(code))
    return complexity


def calculate_code_metrics(code: str) -> CodeMetrics:
    lines = code.split('\n')
    stripped = [l.strip() for l in lines]
    return CodeMetrics(
        total_lines=len(lines),
        code_lines=sum(1 for l in stripped if l),
        comment_lines=sum(1 for l in stripped if l.startswith('//') or l.startswith('/*')),
        complexity=calculate_complexity(code),
        size=len(code),
        function_count=len(re.findall(r'function\s+\w+', code)),
        modifier_count=len(re.findall(r'modifier\s+\w+', code)),
        event_count=len(re.findall(r'event\s+\w+', code)),
    )


# =============================================================================
# ADAPTER
# =============================================================================

class StaticFindingsAdapter:
    def __init__(self, patterns: Dict[str, List[re.Pattern]] | None = None):
        self.patterns = patterns or VULNERABILITY_PATTERNS

    def scan(self, code: str) -> List[Finding]:
        findings = []
        lines = code.split('\n')
        for category, patterns in self.patterns.items():
            severity = CATEGORY_SEVERITY.get(category, 'Low')
            for pattern in patterns:
                for index, line in enumerate(lines):
                    if pattern.search(line):
                        findings.append(Finding(
                            name=f"Static Analysis: {category}",
                            description=f"Pattern detected: {pattern.pattern}",
                            severity=severity,
                            category=category,
                            affected_lines=[index + 1],
                            code_snippet=line.strip(),
                            confidence="High",
                        ))
        return findings

    def parse(self, source_code: str) -> StaticParseResult:
        if not isinstance(source_code, str) or not source_code:
            raise ParseError("Contract code cannot be empty")

        check_structure(source_code)

        findings = self.scan(source_code)
        metrics = calculate_code_metrics(source_code)
        names = _CONTRACT_NAME.findall(blank_comments_and_strings(source_code))

        logger.debug(f"Static scan: {len(findings)} pattern hits, {metrics.function_count} functions")
        return StaticParseResult(
            findings=findings,
            code_metrics=metrics,
            contract_names=names,
        )
