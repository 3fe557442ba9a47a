import json
import logging
from typing import Any, Dict, List, Tuple

import requests

from scaudit.config import CHAIN_REGISTRY, AuditConfig
from scaudit.errors import ChainServiceUnavailable, ContractNotFoundError, UnsupportedChainError
from scaudit.models import ChainContract

logger = logging.getLogger(__name__)

WEI_PER_ETHER = 10 ** 18


def format_ether(wei: int) -> str:
    whole, frac = divmod(wei, WEI_PER_ETHER)
    if not frac:
        return str(whole)
    return f"{whole}.{frac:018d}".rstrip('0')


def flatten_source(raw: str) -> str:
    """Explorers return multi-file sources as standard-JSON, sometimes wrapped
    in an extra pair of braces. Join every file into one source text."""
    text = (raw or "").strip()
    if not text.startswith('{'):
        return text
    candidate = text[1:-1] if text.startswith('{{') and text.endswith('}}') else text
    try:
        payload = json.loads(candidate)
    except json.JSONDecodeError:
        return text
    sources = payload.get('sources', payload) if isinstance(payload, dict) else None
    if not isinstance(sources, dict):
        return text
    parts = []
    for path, entry in sources.items():
        content = entry.get('content') if isinstance(entry, dict) else None
        if content:
            parts.append(f"// File: {path}\n{content}")
    return '\n\n'.join(parts) if parts else text


def list_chains(config: AuditConfig) -> List[Dict[str, Any]]:
    chains = []
    for name in config.supported_chains:
        spec = CHAIN_REGISTRY[name]
        chains.append({
            "id": name,
            "chainId": spec.chain_id,
            "name": spec.display_name,
            "type": spec.network_type,
            "configured": name in config.rpc_urls,
        })
    return chains


class ChainReader:
    """Reads deployed contracts over JSON-RPC plus an Etherscan-family explorer."""

    def __init__(self, config: AuditConfig):
        self.supported_chains = config.supported_chains
        self.rpc_urls = dict(config.rpc_urls)
        self.explorer_keys = dict(config.explorer_api_keys)
        self.timeout = config.chain_timeout

    def is_supported(self, chain: str) -> bool:
        return chain in self.supported_chains and chain in self.rpc_urls

    def rpc(self, chain: str, method: str, params: list) -> Any:
        url = self.rpc_urls.get(chain)
        if not url:
            raise UnsupportedChainError(f"No RPC endpoint configured for chain: {chain}")
        try:
            resp = requests.post(
                url,
                json={"jsonrpc": "2.0", "id": 1, "method": method, "params": params},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            body = resp.json()
        except requests.RequestException as e:
            raise ChainServiceUnavailable(f"RPC request to {chain} failed: {e}") from e
        except ValueError as e:
            raise ChainServiceUnavailable(f"RPC endpoint for {chain} returned invalid JSON") from e

        if not isinstance(body, dict):
            raise ChainServiceUnavailable(f"RPC endpoint for {chain} returned an unexpected payload")
        if body.get('error'):
            error = body['error']
            message = error.get('message') if isinstance(error, dict) else str(error)
            raise ChainServiceUnavailable(f"RPC error from {chain}: {message}")
        return body.get('result')

    def _details(self, chain: str, address: str) -> Tuple[str, int]:
        try:
            balance = int(self.rpc(chain, 'eth_getBalance', [address, 'latest']) or '0x0', 16)
            tx_count = int(self.rpc(chain, 'eth_getTransactionCount', [address, 'latest']) or '0x0', 16)
        except (ChainServiceUnavailable, TypeError, ValueError) as e:
            logger.warning(f"Failed to get contract details for {address} on {chain}: {e}")
            return '0', 0
        return format_ether(balance), tx_count

    def fetch_source(self, address: str, chain: str) -> Tuple[str | None, str | None]:
        """Verified source and contract name, or (None, None) when the explorer
        has none, is not configured, or cannot be reached."""
        spec = CHAIN_REGISTRY[chain]
        key = self.explorer_keys.get(chain)
        if not key:
            logger.warning(f"No explorer API key configured for chain {chain}")
            return None, None

        try:
            resp = requests.get(
                spec.explorer_api,
                params={
                    'module': 'contract',
                    'action': 'getsourcecode',
                    'address': address,
                    'apikey': key,
                },
                timeout=self.timeout,
            )
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Failed to fetch source code from explorer for {address} on {chain}: {e}")
            return None, None

        if not isinstance(data, dict) or data.get('status') != '1':
            return None, None
        result = data.get('result')
        if not isinstance(result, list) or not result:
            return None, None

        entry = result[0] if isinstance(result[0], dict) else {}
        source = flatten_source(entry.get('SourceCode', ''))
        return (source or None), (entry.get('ContractName') or None)

    def fetch(self, address: str, chain: str = 'ethereum') -> ChainContract:
        if chain not in CHAIN_REGISTRY or chain not in self.supported_chains:
            raise UnsupportedChainError(f"Unsupported blockchain: {chain}")

        logger.info(f"Fetching contract {address} on {chain}")
        bytecode = self.rpc(chain, 'eth_getCode', [address, 'latest'])
        if not isinstance(bytecode, str) or not bytecode.startswith('0x') or bytecode == '0x':
            raise ContractNotFoundError(f"No contract found at {address} on {chain}")

        balance, tx_count = self._details(chain, address)
        source, name = self.fetch_source(address, chain)

        return ChainContract(
            address=address,
            chain=chain,
            chain_id=CHAIN_REGISTRY[chain].chain_id,
            bytecode=bytecode,
            source_code=source,
            contract_name=name,
            balance=balance,
            transaction_count=tx_count,
        )
