"""Bytecode-only analysis: opcode substring table, size and complexity."""

from scaudit.bytecode import BYTECODE_SIGNATURES, analyze_bytecode, estimate_complexity, normalize_bytecode


def test_deterministic():
    code = "0x6080604052ff f4".replace(" ", "")
    assert analyze_bytecode(code) == analyze_bytecode(code)


def test_prefix_and_case_do_not_matter():
    assert analyze_bytecode("0x60FF") == analyze_bytecode("60ff")
    assert normalize_bytecode("0xABCD") == "abcd"


def test_size_is_bytes_without_prefix():
    assert analyze_bytecode("0x" + "00" * 10).size == 10
    assert analyze_bytecode("0x").size == 0


def test_patterns_cover_every_signature():
    result = analyze_bytecode("0x6000")
    assert set(result.patterns) == {sig.pattern for sig in BYTECODE_SIGNATURES}
    assert not any(result.patterns.values())
    assert result.warnings == ()


def test_selfdestruct_and_delegatecall_warn():
    result = analyze_bytecode("0x60ff60f4")
    assert result.patterns['hasSelfdestruct']
    assert result.patterns['hasDelegatecall']
    assert not result.patterns['hasCreate2']
    assert result.warnings == (
        'Contract contains selfdestruct functionality',
        'Contract uses delegatecall - potential proxy pattern',
    )


def test_patterns_without_warnings():
    result = analyze_bytecode("0x3431")
    assert result.patterns['hasCallvalue']
    assert result.patterns['hasBalance']
    assert result.warnings == ()


def test_complexity_counts_jumps_and_calls():
    # 2 bytes, one jump, one call
    assert estimate_complexity("56f1") == 2 + 3


def test_complexity_capped():
    assert analyze_bytecode("0x" + "56" * 1000).complexity == 100
