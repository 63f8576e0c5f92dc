"""
Trusted issuer registry.

Trust-registry membership is additive metadata on a verification
result, never a gate: TrustRegistryClient.is_trusted() degrades every
failure (unconfigured, unreachable, malformed reply) to False.

The registry itself is a smart contract exposing the view function
checkTrusted(string) -> bool, called read-only through a mirror node's
contract call endpoint.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import requests
from Crypto.Hash import keccak

from .errors import DependencyUnavailable
from .logging_config import audit_log

logger = logging.getLogger(__name__)

CHECK_TRUSTED_SIGNATURE = "checkTrusted(string)"


def function_selector(signature: str) -> bytes:
    """First four bytes of keccak-256 over the canonical function signature."""
    h = keccak.new(digest_bits=256)
    h.update(signature.encode("ascii"))
    return h.digest()[:4]


def encode_string_call(signature: str, value: str) -> str:
    """ABI-encode a call to a function taking a single string argument."""
    data = value.encode("utf-8")
    padded = data + b"\x00" * (-len(data) % 32)
    body = (32).to_bytes(32, "big") + len(data).to_bytes(32, "big") + padded
    return "0x" + (function_selector(signature) + body).hex()


def decode_bool(result: str) -> bool:
    """Decode a single ABI-encoded bool return value."""
    raw = bytes.fromhex(result[2:] if result.startswith("0x") else result)
    if len(raw) < 32:
        raise ValueError("short ABI bool")
    word = int.from_bytes(raw[:32], "big")
    if word not in (0, 1):
        raise ValueError("ABI bool out of range")
    return word == 1


def contract_evm_address(contract_id: str) -> str:
    """
    Map a "shard.realm.num" contract id to its long-zero EVM address.

    Ids that are already 0x-prefixed EVM addresses pass through.
    """
    if contract_id.startswith("0x"):
        return contract_id.lower()
    shard, realm, num = (int(p) for p in contract_id.split("."))
    raw = shard.to_bytes(4, "big") + realm.to_bytes(8, "big") + num.to_bytes(8, "big")
    return "0x" + raw.hex()


class TrustRegistry(ABC):

    @abstractmethod
    def check_trusted(self, identity: str) -> bool:
        """Raises DependencyUnavailable when the registry cannot answer."""


class NullRegistry(TrustRegistry):
    """Used when no registry contract is configured: nobody is trusted."""

    def check_trusted(self, identity: str) -> bool:
        return False


class ContractRegistry(TrustRegistry):
    """
    Calls checkTrusted(string) through a mirror node.

    POST {mirror_url}/api/v1/contracts/call {"to": <evm address>, "data": <calldata>}
    """

    def __init__(
        self,
        mirror_url: str,
        contract_id: str,
        timeout: float = 5.0,
        gas: int = 100_000,
        session: Optional[requests.Session] = None
    ):
        self._url = mirror_url.rstrip("/") + "/api/v1/contracts/call"
        self._to = contract_evm_address(contract_id)
        self._timeout = timeout
        self._gas = gas
        self._session = session or requests.Session()

    def check_trusted(self, identity: str) -> bool:
        payload = {
            "to": self._to,
            "data": encode_string_call(CHECK_TRUSTED_SIGNATURE, identity),
            "gas": self._gas,
            "estimate": False,
            "block": "latest",
        }
        try:
            r = self._session.post(self._url, json=payload, timeout=self._timeout)
        except requests.RequestException as e:
            raise DependencyUnavailable("trust_registry", f"Registry call failed: {e}") from e
        if r.status_code >= 400:
            raise DependencyUnavailable("trust_registry", f"Registry call returned {r.status_code}")
        try:
            return decode_bool(r.json()["result"])
        except (KeyError, TypeError, ValueError) as e:
            raise DependencyUnavailable("trust_registry", f"Malformed registry reply: {e}") from e


class TrustRegistryClient:
    """Best-effort wrapper: any failure means "not trusted"."""

    def __init__(self, registry: TrustRegistry):
        self._registry = registry

    def is_trusted(self, identity: str) -> bool:
        try:
            trusted = self._registry.check_trusted(identity)
        except Exception as e:
            audit_log.trust_registry_degraded(identity, str(e))
            return False
        logger.debug("Trust status for %s: %s", identity, trusted)
        return bool(trusted)
