import re

from scaudit.errors import EmptyInput, InvalidAddress, NotAContract, OversizedInput

ADDRESS_PATTERN = re.compile(r'^0x[a-fA-F0-9]{40}$')
CONTRACT_KEYWORDS = ('contract', 'interface', 'library')


def looks_like_address(value: str) -> bool:
    return value.startswith('0x') and len(value) == 42


class InputValidator:
    """Rejects malformed or oversized submissions before any analysis runs."""

    def __init__(self, max_size: int = 1_048_576):
        self.max_size = max_size

    def _check_present(self, value) -> None:
        if not isinstance(value, str) or not value:
            raise EmptyInput("Contract code or address must be a non-empty string")

    def validate_source(self, source_code) -> None:
        self._check_present(source_code)
        size = len(source_code.encode('utf-8'))
        if size > self.max_size:
            raise OversizedInput(
                f"Contract size {size} exceeds maximum limit of {self.max_size} bytes"
            )
        if not any(kw in source_code for kw in CONTRACT_KEYWORDS):
            raise NotAContract("Invalid Solidity code - no contract, interface, or library found")

    def validate_address(self, address) -> None:
        self._check_present(address)
        if not ADDRESS_PATTERN.match(address):
            raise InvalidAddress(f"Invalid contract address format: {address[:64]}")

    def validate(self, source_or_address) -> str:
        """Validate either kind of submission. Returns "address" or "source"."""
        self._check_present(source_or_address)
        if looks_like_address(source_or_address):
            self.validate_address(source_or_address)
            return "address"
        self.validate_source(source_or_address)
        return "source"
