"""Reduced-confidence analysis for contracts without verified source.

These are substring tests on the hex dump, not a disassembler: an opcode byte
that appears inside PUSH data or metadata counts as a hit.
"""

import math
import re
from typing import Dict, List, NamedTuple

from scaudit.models import BytecodeAnalysis


class OpcodeSignature(NamedTuple):
    pattern: str
    opcode: str
    warning: str | None


BYTECODE_SIGNATURES: tuple[OpcodeSignature, ...] = (
    OpcodeSignature('hasSelfdestruct', 'ff', 'Contract contains selfdestruct functionality'),
    OpcodeSignature('hasDelegatecall', 'f4', 'Contract uses delegatecall - potential proxy pattern'),
    OpcodeSignature('hasCreate2', 'f5', 'Contract can deploy other contracts using CREATE2'),
    OpcodeSignature('hasExtcodecopy', '3c', None),
    OpcodeSignature('hasExtcodesize', '3b', None),
    OpcodeSignature('hasBalance', '31', None),
    OpcodeSignature('hasCallvalue', '34', None),
)

JUMP_OPCODES = re.compile(r'56|57|58')
CALL_OPCODES = re.compile(r'f1|f2|f4|fa')

BYTECODE_SUMMARY = 'Limited analysis performed on bytecode only. Source code verification recommended.'
BYTECODE_RECOMMENDATIONS = (
    'Verify contract source code on block explorer',
    'Request source code from contract deployer',
    'Perform manual review of contract functionality',
)


def normalize_bytecode(bytecode: str) -> str:
    code = (bytecode or "").strip().lower()
    if code.startswith('0x'):
        code = code[2:]
    return code


def detect_patterns(code: str) -> Dict[str, bool]:
    return {sig.pattern: sig.opcode in code for sig in BYTECODE_SIGNATURES}


def generate_warnings(patterns: Dict[str, bool]) -> List[str]:
    return [
        sig.warning for sig in BYTECODE_SIGNATURES
        if sig.warning and patterns.get(sig.pattern)
    ]


def estimate_complexity(code: str) -> int:
    size = len(code) // 2
    jumps = len(JUMP_OPCODES.findall(code))
    calls = len(CALL_OPCODES.findall(code))
    return min(100, math.floor(size / 100 + jumps * 2 + calls * 3))


def analyze_bytecode(bytecode: str) -> BytecodeAnalysis:
    code = normalize_bytecode(bytecode)
    patterns = detect_patterns(code)
    return BytecodeAnalysis(
        size=len(code) // 2,
        complexity=estimate_complexity(code),
        patterns=patterns,
        warnings=generate_warnings(patterns),
    )
