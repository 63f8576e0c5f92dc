"""
Configuration module for docanchor.

Centralizes all configuration with environment variable support and
validation. Settings are snapshotted once at process start and handed to
the wiring layer; nothing downstream reads the environment directly.
"""

import os
from dataclasses import dataclass, field, replace
from typing import Dict, Optional, Tuple

# ============================================================
# Environment Configuration
# ============================================================

NETWORKS = ("mainnet", "testnet", "previewnet")

MIRROR_NODE_URLS = {
    "mainnet": "https://mainnet-public.mirrornode.hedera.com",
    "testnet": "https://testnet.mirrornode.hedera.com",
    "previewnet": "https://previewnet.mirrornode.hedera.com",
}

DEFAULT_RESOLVER_URL = "https://dev.uniresolver.io"


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.lower() in ("1", "true", "yes")


def _env_tuple(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = os.getenv(name)
    if not raw:
        return default
    return tuple(p.strip() for p in raw.split(",") if p.strip())


@dataclass(frozen=True)
class Settings:
    env: str = "dev"  # dev|stage|prod
    db_path: str = "data/docanchor.db"

    # Consensus log
    consensus_backend: str = "local"  # local|http
    consensus_gateway_url: str = ""
    consensus_gateway_token: str = ""
    topic_id: str = "0.0.local"
    network: str = "testnet"
    operator_id: str = "0.0.2"

    # Mirror
    mirror_node_url: str = ""
    mirror_page_limit: int = 100
    mirror_max_pages: int = 1

    # Identity
    resolver_url: str = DEFAULT_RESOLVER_URL
    identity_prefixes: Tuple[str, ...] = ("did:",)

    # Trust registry
    registry_contract_id: str = ""

    # Timeouts (seconds)
    resolver_timeout: float = 10.0
    consensus_timeout: float = 30.0
    mirror_timeout: float = 10.0
    registry_timeout: float = 5.0

    # Anchor claims
    anchor_claim_ttl: int = 120
    anchor_claim_wait: float = 10.0

    # Rate limits (requests per minute)
    anchor_rpm: int = 60
    verify_rpm: int = 600

    # Logging
    log_level: str = "INFO"
    log_json: bool = True
    log_file: Optional[str] = None

    cors_origins: Tuple[str, ...] = field(default=("http://localhost:3002", "http://localhost:3003"))

    @classmethod
    def from_env(cls) -> "Settings":
        network = os.getenv("HEDERA_NETWORK", "testnet")
        return cls(
            env=os.getenv("DOCANCHOR_ENV", "dev"),
            db_path=os.getenv("DOCANCHOR_DB_PATH", "data/docanchor.db"),
            consensus_backend=os.getenv("CONSENSUS_BACKEND", "local"),
            consensus_gateway_url=os.getenv("CONSENSUS_GATEWAY_URL", ""),
            consensus_gateway_token=os.getenv("CONSENSUS_GATEWAY_TOKEN", ""),
            topic_id=os.getenv("HCS_TOPIC_ID", "0.0.local"),
            network=network,
            operator_id=os.getenv("HEDERA_ACCOUNT_ID", "0.0.2"),
            mirror_node_url=os.getenv("MIRROR_NODE_URL", MIRROR_NODE_URLS.get(network, "")),
            mirror_page_limit=_env_int("MIRROR_PAGE_LIMIT", 100),
            mirror_max_pages=_env_int("MIRROR_MAX_PAGES", 1),
            resolver_url=os.getenv("DID_RESOLVER_URL", DEFAULT_RESOLVER_URL),
            identity_prefixes=_env_tuple("IDENTITY_PREFIXES", ("did:",)),
            registry_contract_id=os.getenv("REGISTRY_CONTRACT_ID", ""),
            resolver_timeout=_env_float("RESOLVER_TIMEOUT_SECONDS", 10.0),
            consensus_timeout=_env_float("CONSENSUS_TIMEOUT_SECONDS", 30.0),
            mirror_timeout=_env_float("MIRROR_TIMEOUT_SECONDS", 10.0),
            registry_timeout=_env_float("REGISTRY_TIMEOUT_SECONDS", 5.0),
            anchor_claim_ttl=_env_int("ANCHOR_CLAIM_TTL", 120),
            anchor_claim_wait=_env_float("ANCHOR_CLAIM_WAIT", 10.0),
            anchor_rpm=_env_int("ANCHOR_RPM", 60),
            verify_rpm=_env_int("VERIFY_RPM", 600),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_json=_env_bool("LOG_JSON", True),
            log_file=os.getenv("LOG_FILE") or None,
            cors_origins=_env_tuple("CORS_ORIGINS", ("http://localhost:3002", "http://localhost:3003")),
        )

    def with_overrides(self, **changes) -> "Settings":
        return replace(self, **changes)


# ============================================================
# Validation
# ============================================================

def validate_config(settings: Settings) -> Dict[str, bool]:
    """
    Check that every value the selected backends need is present.
    Returns dict of setting name -> ok.
    """
    checks = {
        "topic_id": bool(settings.topic_id),
        "network": settings.network in NETWORKS,
        "identity_prefixes": bool(settings.identity_prefixes),
    }
    if settings.consensus_backend == "http":
        checks["consensus_gateway_url"] = bool(settings.consensus_gateway_url)
        checks["mirror_node_url"] = bool(settings.mirror_node_url)
    else:
        checks["consensus_backend"] = settings.consensus_backend == "local"
    return checks


def missing_config(settings: Settings) -> Tuple[str, ...]:
    return tuple(name for name, ok in validate_config(settings).items() if not ok)


# ============================================================
# Feature Flags
# ============================================================

def is_production(settings: Settings) -> bool:
    """Check if running in production mode."""
    return settings.env == "prod"

