"""Process-wide audit configuration and the supported-chain registry.

Everything here is read once at startup and never mutated afterwards. The
pipeline receives an `AuditConfig` explicitly; only `AuditConfig.from_env`
looks at environment variables.
"""

import os
from dataclasses import dataclass
from typing import Dict, Mapping, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator


@dataclass(frozen=True)
class ChainSpec:
    name: str
    chain_id: int
    display_name: str
    network_type: str  # "mainnet" | "layer2" | "testnet"
    explorer_api: str
    explorer_key_env: str


CHAIN_REGISTRY: Dict[str, ChainSpec] = {
    spec.name: spec for spec in (
        ChainSpec("ethereum", 1, "Ethereum Mainnet", "mainnet",
                  "https://api.etherscan.io/api", "ETHERSCAN_API_KEY"),
        ChainSpec("polygon", 137, "Polygon Mainnet", "mainnet",
                  "https://api.polygonscan.com/api", "POLYGONSCAN_API_KEY"),
        ChainSpec("bsc", 56, "BNB Smart Chain", "mainnet",
                  "https://api.bscscan.com/api", "BSCSCAN_API_KEY"),
        ChainSpec("arbitrum", 42161, "Arbitrum One", "layer2",
                  "https://api.arbiscan.io/api", "ARBISCAN_API_KEY"),
        ChainSpec("optimism", 10, "OP Mainnet", "layer2",
                  "https://api-optimistic.etherscan.io/api", "OPTIMISM_API_KEY"),
        ChainSpec("base", 8453, "Base", "layer2",
                  "https://api.basescan.org/api", "BASESCAN_API_KEY"),
        ChainSpec("sepolia", 11155111, "Sepolia Testnet", "testnet",
                  "https://api-sepolia.etherscan.io/api", "ETHERSCAN_API_KEY"),
        ChainSpec("mumbai", 80001, "Polygon Mumbai", "testnet",
                  "https://api-testnet.polygonscan.com/api", "POLYGONSCAN_API_KEY"),
    )
}

DEFAULT_SEVERITY_WEIGHTS: Dict[str, int] = {'Critical': 40, 'High': 25, 'Medium': 15, 'Low': 5}


class AuditConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    # Validation
    max_contract_size: int = Field(default=1_048_576, gt=0)

    # Scoring
    threshold_high: int = Field(default=80, ge=0, le=100)
    threshold_medium: int = Field(default=50, ge=0, le=100)
    severity_weights: Dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_SEVERITY_WEIGHTS))
    unknown_severity_weight: int = 10
    default_code_quality: int = 70
    bytecode_default_score: int = Field(default=60, ge=0, le=100)

    # Model adapter
    inference_api: str = "http://localhost:8000"
    inference_model: str = "Qwen/Qwen3-Next-80B-A3B-Instruct"
    inference_timeout: float = Field(default=180.0, gt=0)
    inference_temperature: float = 0.1
    project_id: str = "local"
    job_id: str = "local"

    # Chain reader
    supported_chains: Tuple[str, ...] = tuple(CHAIN_REGISTRY)
    rpc_urls: Dict[str, str] = Field(default_factory=dict)
    explorer_api_keys: Dict[str, str] = Field(default_factory=dict)
    chain_timeout: float = Field(default=10.0, gt=0)

    # History listing
    history_default_limit: int = Field(default=20, gt=0)
    history_max_limit: int = Field(default=100, gt=0)

    @model_validator(mode="after")
    def _check_thresholds(self) -> "AuditConfig":
        if self.threshold_medium >= self.threshold_high:
            raise ValueError(
                f"threshold_medium ({self.threshold_medium}) must be below "
                f"threshold_high ({self.threshold_high})"
            )
        unknown = [c for c in self.supported_chains if c not in CHAIN_REGISTRY]
        if unknown:
            raise ValueError(f"Unknown chains in supported_chains: {', '.join(unknown)}")
        return self

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "AuditConfig":
        env = os.environ if environ is None else environ

        values: Dict[str, object] = {}
        for field_name, var in (
            ('max_contract_size', 'MAX_CONTRACT_SIZE_BYTES'),
            ('threshold_high', 'VULNERABILITY_THRESHOLD_HIGH'),
            ('threshold_medium', 'VULNERABILITY_THRESHOLD_MEDIUM'),
            ('inference_api', 'INFERENCE_API'),
            ('inference_model', 'SCAUDIT_MODEL'),
            ('inference_timeout', 'SCAUDIT_INFERENCE_TIMEOUT'),
            ('project_id', 'PROJECT_ID'),
            ('job_id', 'JOB_ID'),
        ):
            raw = env.get(var, "").strip()
            if raw:
                values[field_name] = raw

        chains = env.get('SCAUDIT_CHAINS', "").strip()
        if chains:
            values['supported_chains'] = tuple(c.strip() for c in chains.split(',') if c.strip())

        rpc_urls = {}
        explorer_keys = {}
        for name, spec in CHAIN_REGISTRY.items():
            url = env.get(f"{name.upper()}_RPC_URL", "").strip()
            if url:
                rpc_urls[name] = url
            key = env.get(spec.explorer_key_env, "").strip()
            if key:
                explorer_keys[name] = key
        values['rpc_urls'] = rpc_urls
        values['explorer_api_keys'] = explorer_keys

        return cls(**values)
