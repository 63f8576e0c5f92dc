"""
Identity resolution adapters.

Resolves a decentralized identifier to its current verification
methods. Resolution is always live: no resolver here caches documents,
so a rotated or revoked key can never be satisfied by a stale copy.

Verification methods are indexed by signature algorithm. Looking up a
key is a dict access that returns a typed PublicKey, never a scan that
tries each method in turn.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import quote

import requests

from .errors import DependencyUnavailable
from .keys import (
    MalformedKeyError,
    ed25519_from_base58,
    ed25519_from_jwk,
    ed25519_from_multibase,
    public_key_multibase,
)

logger = logging.getLogger(__name__)

ED25519 = "Ed25519"


class IdentityNotFound(Exception):
    """The resolver answered, but the identifier does not exist."""


class KeyType(str, Enum):
    ED25519_2020 = "Ed25519VerificationKey2020"
    ED25519_2018 = "Ed25519VerificationKey2018"
    JWK_2020 = "JsonWebKey2020"


@dataclass(frozen=True)
class PublicKey:
    """Decoded key material tagged with its algorithm and declared key type."""
    algorithm: str
    key_type: KeyType
    raw: bytes
    method_id: str


@dataclass(frozen=True)
class VerificationMethod:
    id: str
    type: str
    controller: str
    material: Mapping[str, Any] = field(default_factory=dict)

    @property
    def algorithm(self) -> Optional[str]:
        """Signature algorithm implied by the declared type, or None if unsupported."""
        if self.type in (KeyType.ED25519_2020.value, KeyType.ED25519_2018.value):
            return ED25519
        if self.type == KeyType.JWK_2020.value:
            jwk = self.material.get("publicKeyJwk") or {}
            if jwk.get("kty") == "OKP" and jwk.get("crv") == "Ed25519":
                return ED25519
        return None

    def decode(self) -> PublicKey:
        """Decode the encoded key. Raises MalformedKeyError."""
        key_type = KeyType(self.type)
        if key_type is KeyType.ED25519_2020:
            raw = ed25519_from_multibase(self.material.get("publicKeyMultibase", ""))
        elif key_type is KeyType.ED25519_2018:
            raw = ed25519_from_base58(self.material.get("publicKeyBase58", ""))
        else:
            raw = ed25519_from_jwk(self.material.get("publicKeyJwk"))
        return PublicKey(algorithm=ED25519, key_type=key_type, raw=raw, method_id=self.id)

    @classmethod
    def from_dict(cls, d: Mapping[str, Any], did: str) -> 'VerificationMethod':
        method_id = d.get("id", "")
        if method_id.startswith("#"):
            method_id = did + method_id
        material = {k: v for k, v in d.items() if k.startswith("publicKey")}
        return cls(id=method_id, type=d.get("type", ""), controller=d.get("controller", did), material=material)


@dataclass
class DidDocument:
    id: str
    verification_methods: List[VerificationMethod]
    assertion_method_ids: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, doc: Mapping[str, Any]) -> 'DidDocument':
        did = doc.get("id", "")
        methods = [VerificationMethod.from_dict(m, did) for m in doc.get("verificationMethod") or [] if isinstance(m, dict)]
        assertion_ids = []
        for ref in doc.get("assertionMethod") or []:
            if isinstance(ref, str):
                assertion_ids.append(did + ref if ref.startswith("#") else ref)
            elif isinstance(ref, dict):
                # Embedded methods count as both declared and asserting
                method = VerificationMethod.from_dict(ref, did)
                methods.append(method)
                assertion_ids.append(method.id)
        return cls(id=did, verification_methods=methods, assertion_method_ids=assertion_ids)

    def methods_by_algorithm(self) -> Dict[str, VerificationMethod]:
        """
        One method per supported algorithm.

        Methods listed under assertionMethod win over merely declared
        ones; otherwise declaration order decides.
        """
        index: Dict[str, VerificationMethod] = {}
        asserting = set(self.assertion_method_ids)
        for method in sorted(self.verification_methods, key=lambda m: m.id not in asserting):
            alg = method.algorithm
            if alg and alg not in index:
                index[alg] = method
        return index

    def key_for(self, algorithm: str) -> Optional[PublicKey]:
        """
        The decoded key for algorithm, or None if the document declares none.

        Raises MalformedKeyError if the declared key cannot be decoded.
        """
        method = self.methods_by_algorithm().get(algorithm)
        return method.decode() if method else None


class IdentityResolver(ABC):
    """Resolves an identity string to its current DID document."""

    @abstractmethod
    def resolve(self, identity: str) -> DidDocument:
        """
        Raises IdentityNotFound if the identifier does not exist and
        DependencyUnavailable if the resolver cannot be reached.
        """


class UniversalResolverClient(IdentityResolver):
    """
    HTTP client for a DIF Universal Resolver compatible endpoint.

    GET {base_url}/1.0/identifiers/{did}
    """

    ACCEPT = 'application/ld+json;profile="https://w3id.org/did-resolution", application/did+ld+json, application/json'

    def __init__(self, base_url: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()

    def resolve(self, identity: str) -> DidDocument:
        url = f"{self._base_url}/1.0/identifiers/{quote(identity, safe=':')}"
        try:
            r = self._session.get(url, headers={"Accept": self.ACCEPT}, timeout=self._timeout)
        except requests.RequestException as e:
            raise DependencyUnavailable("identity_resolver", f"DID resolution failed: {e}") from e

        if r.status_code in (404, 410):
            raise IdentityNotFound(identity)
        if r.status_code >= 400:
            raise DependencyUnavailable("identity_resolver", f"DID resolver returned {r.status_code}")

        try:
            body = r.json()
        except ValueError as e:
            raise DependencyUnavailable("identity_resolver", "DID resolver returned invalid JSON") from e

        metadata = body.get("didResolutionMetadata") or {}
        if metadata.get("error") == "notFound":
            raise IdentityNotFound(identity)
        doc = body.get("didDocument", body)
        if not isinstance(doc, dict) or not doc.get("id"):
            raise IdentityNotFound(identity)
        document = DidDocument.from_dict(doc)
        logger.debug("Resolved %s with %d verification methods", identity, len(document.verification_methods))
        return document


class DidKeyResolver(IdentityResolver):
    """
    Resolver for self-certifying did:key identifiers (Ed25519 only).

    The key is the identifier, so resolution needs no network.
    """

    PREFIX = "did:key:"

    def resolve(self, identity: str) -> DidDocument:
        if not identity.startswith(self.PREFIX):
            raise IdentityNotFound(identity)
        multibase = identity[len(self.PREFIX):].split("#", 1)[0]
        try:
            raw = ed25519_from_multibase(multibase)
        except MalformedKeyError as e:
            raise IdentityNotFound(identity) from e
        method_id = f"{identity}#{multibase}"
        method = VerificationMethod(
            id=method_id,
            type=KeyType.ED25519_2020.value,
            controller=identity,
            material={"publicKeyMultibase": public_key_multibase(raw)},
        )
        return DidDocument(id=identity, verification_methods=[method], assertion_method_ids=[method_id])


class CompositeResolver(IdentityResolver):
    """Routes each identity to a resolver by its DID method."""

    def __init__(self, routes: Mapping[str, IdentityResolver], default: Optional[IdentityResolver] = None):
        self._routes = dict(routes)
        self._default = default

    @staticmethod
    def method_of(identity: str) -> str:
        parts = identity.split(":")
        return parts[1] if len(parts) > 2 else ""

    def resolve(self, identity: str) -> DidDocument:
        resolver = self._routes.get(self.method_of(identity), self._default)
        if resolver is None:
            raise IdentityNotFound(identity)
        return resolver.resolve(identity)
