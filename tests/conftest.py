"""Shared fixtures: fake collaborators so no test touches the network."""

from __future__ import annotations

import threading
from typing import Callable

import pytest

from scaudit.config import AuditConfig
from scaudit.models import ChainContract, Finding, FindingSource, ModelAnalysis
from scaudit.persistence import AuditStore
from scaudit.pipeline import AuditPipeline
from scaudit.static_analysis import StaticFindingsAdapter

CLEAN_CONTRACT = """pragma solidity ^0.8.0;

contract Vault {
    uint256 private total;

    function deposit(uint256 amount) external {
        total = total + amount;
    }
}
"""

# tx.origin on line 7, selfdestruct on line 8; nothing else matches.
VULNERABLE_CONTRACT = """pragma solidity ^0.8.0;

contract Wallet {
    address owner;

    function withdraw() external {
        require(tx.origin == owner);
        selfdestruct(payable(owner));
    }
}
"""

ADDRESS = "0x" + "ab" * 20


class FakeModelAdapter:
    """Returns a canned ModelAnalysis, raises a canned error, or blocks until released."""

    def __init__(self, analysis: ModelAnalysis | None = None, error: Exception | None = None,
                 block: threading.Event | None = None) -> None:
        self.analysis = analysis or ModelAnalysis()
        self.error = error
        self.block = block
        self.calls = 0

    def analyze(self, source_code, parse_result=None):
        self.calls += 1
        if self.block is not None:
            self.block.wait(timeout=5)
        if self.error is not None:
            raise self.error
        return self.analysis


class FakeChainReader:
    def __init__(self, contract: ChainContract | None = None, error: Exception | None = None) -> None:
        self.contract = contract
        self.error = error
        self.calls = []

    def fetch(self, address, chain='ethereum'):
        self.calls.append((address, chain))
        if self.error is not None:
            raise self.error
        return self.contract


class RecordingPersistence:
    def __init__(self) -> None:
        self.records = []

    def log(self, record) -> None:
        self.records.append(record)


def model_finding(**overrides) -> Finding:
    data = {
        'name': 'Model finding',
        'severity': 'High',
        'category': 'reentrancy',
        'affected_lines': [12],
        'source': FindingSource.MODEL,
    }
    data.update(overrides)
    return Finding(**data)


@pytest.fixture
def config() -> AuditConfig:
    return AuditConfig()


@pytest.fixture
def recorder() -> RecordingPersistence:
    return RecordingPersistence()


@pytest.fixture
def make_pipeline(config, recorder) -> Callable[..., AuditPipeline]:
    """Build a pipeline around fakes."""
    def factory(model=None, chain=None, persistence=recorder, cfg=None):
        return AuditPipeline(
            cfg or config,
            static_adapter=StaticFindingsAdapter(),
            model_adapter=model or FakeModelAdapter(),
            chain_reader=chain or FakeChainReader(),
            persistence=persistence,
        )

    return factory


@pytest.fixture
def store() -> AuditStore:
    return AuditStore()
