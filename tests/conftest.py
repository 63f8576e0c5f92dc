import threading
import time

import pytest
from fastapi.testclient import TestClient

from docanchor.config import Settings
from docanchor.consensus import ConsensusClient, LocalConsensusLog
from docanchor.db import Database
from docanchor.errors import DependencyUnavailable
from docanchor.identity import DidDocument, IdentityNotFound, IdentityResolver
from docanchor.keys import IssuerKey
from docanchor.main import create_app
from docanchor.registry import TrustRegistry
from docanchor.services import build_services

HELLO_HASH = "2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824"


def did_document(key: IssuerKey, method_type: str = "Ed25519VerificationKey2020") -> DidDocument:
    method = key.verification_method(method_type)
    return DidDocument.from_dict({
        "id": key.identity,
        "verificationMethod": [method],
        "assertionMethod": [method["id"]],
    })


class FakeResolver(IdentityResolver):
    """In-memory identity network."""

    def __init__(self, *keys: IssuerKey):
        self.documents = {k.identity: did_document(k) for k in keys}
        self.calls = 0
        self.unavailable = False

    def add(self, key: IssuerKey) -> None:
        self.documents[key.identity] = did_document(key)

    def resolve(self, identity: str) -> DidDocument:
        self.calls += 1
        if self.unavailable:
            raise DependencyUnavailable("identity_resolver", "resolver down")
        if identity not in self.documents:
            raise IdentityNotFound(identity)
        return self.documents[identity]


class FakeRegistry(TrustRegistry):

    def __init__(self, trusted=()):
        self.trusted = set(trusted)
        self.unavailable = False

    def check_trusted(self, identity: str) -> bool:
        if self.unavailable:
            raise DependencyUnavailable("trust_registry", "registry down")
        return identity in self.trusted


class CountingConsensus(ConsensusClient):
    """Wraps a real backend, counting submissions and optionally failing or stalling."""

    def __init__(self, backend: ConsensusClient, delay: float = 0.0):
        self.backend = backend
        self.delay = delay
        self.calls = 0
        self.error = None
        self._lock = threading.Lock()

    def submit(self, topic_id, payload):
        with self._lock:
            self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.backend.submit(topic_id, payload)


class Harness:
    """One fully wired service graph over a temporary database."""

    def __init__(self, settings: Settings, issuer: IssuerKey, delay: float = 0.0, mirror=None):
        self.settings = settings
        self.issuer = issuer
        self.resolver = FakeResolver(issuer)
        self.registry = FakeRegistry()
        self.db = Database(settings.db_path)
        self.db.init_schema()
        self.log = LocalConsensusLog(self.db, operator_id=settings.operator_id)
        self.consensus = CountingConsensus(self.log, delay=delay)
        self.services = build_services(
            settings,
            resolver=self.resolver,
            consensus=self.consensus,
            mirror=mirror or self.log,
            registry=self.registry,
        )
        self.orchestrator = self.services.orchestrator
        self.index = self.services.index
        self.organization, self.api_key = self.services.organizations.create("Acme University", identity=issuer.identity)

    def anchor(self, content_hash: str, key: IssuerKey = None, organization=None):
        key = key or self.issuer
        return self.orchestrator.anchor(
            content_hash, key.identity, key.sign_hash(content_hash), organization or self.organization
        )


@pytest.fixture
def settings(tmp_path):
    return Settings(
        db_path=str(tmp_path / "docanchor.db"),
        identity_prefixes=("did:", "id:"),
        anchor_claim_wait=5.0,
        log_json=False,
    )


@pytest.fixture
def issuer():
    return IssuerKey.generate()


@pytest.fixture
def make_harness(settings, issuer):
    def _make(delay: float = 0.0, mirror=None, **overrides):
        return Harness(settings.with_overrides(**overrides), issuer, delay=delay, mirror=mirror)
    return _make


@pytest.fixture
def harness(make_harness):
    return make_harness()


@pytest.fixture
def client(harness):
    return TestClient(create_app(harness.services))


class FakeResponse:

    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self._body = body

    def json(self):
        if isinstance(self._body, Exception):
            raise self._body
        return self._body


class FakeSession:
    """Records requests and replays queued responses (or raises queued exceptions)."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def _next(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def get(self, url, **kwargs):
        return self._next("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self._next("POST", url, **kwargs)
