"""
Service wiring.

Builds every network client and store exactly once from Settings and
hands them to the orchestrator by reference. There are no lazily
created module-level clients anywhere in docanchor.
"""

from dataclasses import dataclass
from typing import Optional

import requests

from .config import Settings
from .consensus import ConsensusClient, HttpConsensusGateway, LocalConsensusLog
from .db import Database
from .identity import CompositeResolver, DidKeyResolver, IdentityResolver, UniversalResolverClient
from .mirror import MirrorNodeClient, MirrorReconciler, MirrorSource
from .orchestrator import Orchestrator
from .organizations import OrganizationStore
from .proof_index import ProofIndex
from .rate_limit import RateLimiter
from .registry import ContractRegistry, NullRegistry, TrustRegistry, TrustRegistryClient
from .signatures import SignatureVerifier


@dataclass
class Services:
    settings: Settings
    db: Database
    index: ProofIndex
    organizations: OrganizationStore
    orchestrator: Orchestrator
    anchor_limiter: RateLimiter
    verify_limiter: RateLimiter


def build_resolver(settings: Settings, session: requests.Session) -> IdentityResolver:
    universal = UniversalResolverClient(settings.resolver_url, timeout=settings.resolver_timeout, session=session)
    return CompositeResolver({"key": DidKeyResolver()}, default=universal)


def build_registry(settings: Settings, session: requests.Session) -> TrustRegistry:
    if not settings.registry_contract_id or not settings.mirror_node_url:
        return NullRegistry()
    return ContractRegistry(
        settings.mirror_node_url,
        settings.registry_contract_id,
        timeout=settings.registry_timeout,
        session=session,
    )


def build_services(
    settings: Settings,
    resolver: Optional[IdentityResolver] = None,
    consensus: Optional[ConsensusClient] = None,
    mirror: Optional[MirrorSource] = None,
    registry: Optional[TrustRegistry] = None,
    session: Optional[requests.Session] = None
) -> Services:
    """
    Construct the service graph.

    Any collaborator can be supplied explicitly (tests, alternative
    deployments); the rest are built from settings.
    """
    session = session or requests.Session()
    db = Database(settings.db_path)
    db.init_schema()

    if consensus is None or mirror is None:
        if settings.consensus_backend == "http":
            consensus = consensus or HttpConsensusGateway(
                settings.consensus_gateway_url,
                token=settings.consensus_gateway_token,
                timeout=settings.consensus_timeout,
                session=session,
            )
            mirror = mirror or MirrorNodeClient(settings.mirror_node_url, timeout=settings.mirror_timeout, session=session)
        else:
            local = LocalConsensusLog(db, operator_id=settings.operator_id)
            consensus = consensus or local
            mirror = mirror or local

    index = ProofIndex(db)
    organizations = OrganizationStore(db)
    orchestrator = Orchestrator(
        verifier=SignatureVerifier(resolver or build_resolver(settings, session)),
        consensus=consensus,
        reconciler=MirrorReconciler(mirror, page_limit=settings.mirror_page_limit, max_pages=settings.mirror_max_pages),
        registry=TrustRegistryClient(registry or build_registry(settings, session)),
        index=index,
        topic_id=settings.topic_id,
        identity_prefixes=settings.identity_prefixes,
        organizations=organizations,
        claim_ttl=settings.anchor_claim_ttl,
        claim_wait=settings.anchor_claim_wait,
    )
    return Services(
        settings=settings,
        db=db,
        index=index,
        organizations=organizations,
        orchestrator=orchestrator,
        anchor_limiter=RateLimiter(settings.anchor_rpm),
        verify_limiter=RateLimiter(settings.verify_rpm),
    )
