"""
Organization bindings.

Read side of the organization/API-key store: resolves a bearer API key
to its organization and exposes the identity bound to it. Each
organization owns at most one identity, and an identity belongs to at
most one organization (UNIQUE column).
"""

import logging
import sqlite3
import uuid
from dataclasses import dataclass
from typing import Optional, Tuple

from .db import Database
from .errors import AuthenticationError
from .util import generate_api_key, mask_sensitive, now_epoch

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Organization:
    id: str
    name: str
    identity: Optional[str] = None


class OrganizationStore:

    def __init__(self, db: Database):
        self._db = db

    def authenticate(self, api_key: Optional[str]) -> Organization:
        """
        Resolve a bearer API key to its organization.

        Raises AuthenticationError for a missing, unknown or expired key.
        """
        if not api_key:
            raise AuthenticationError("API key is required", code="MISSING_API_KEY")

        cur = self._db.connection().execute(
            "SELECT o.id, o.name, o.identity, k.expires_at FROM api_keys k "
            "JOIN organizations o ON o.id = k.organization_id WHERE k.key=?",
            (api_key,)
        )
        row = cur.fetchone()
        if row is None:
            logger.info("Rejected unknown API key %s", mask_sensitive(api_key))
            raise AuthenticationError("Invalid API key", code="INVALID_API_KEY")
        now = now_epoch()
        if row['expires_at'] is not None and row['expires_at'] < now:
            logger.info("Rejected expired API key %s", mask_sensitive(api_key))
            raise AuthenticationError("API key has expired", code="API_KEY_EXPIRED")

        with self._db.transaction() as conn:
            conn.execute("UPDATE api_keys SET last_used_at=? WHERE key=?", (now, api_key))

        return Organization(id=row['id'], name=row['name'], identity=row['identity'])

    def get(self, organization_id: str) -> Optional[Organization]:
        cur = self._db.connection().execute(
            "SELECT id, name, identity FROM organizations WHERE id=?",
            (organization_id,)
        )
        row = cur.fetchone()
        return Organization(id=row['id'], name=row['name'], identity=row['identity']) if row else None

    def identity_for(self, organization_id: str) -> Optional[str]:
        org = self.get(organization_id)
        return org.identity if org else None

    def find_by_identity(self, identity: str) -> Optional[Organization]:
        cur = self._db.connection().execute(
            "SELECT id, name, identity FROM organizations WHERE identity=?",
            (identity,)
        )
        row = cur.fetchone()
        return Organization(id=row['id'], name=row['name'], identity=row['identity']) if row else None

    def create(
        self,
        name: str,
        identity: Optional[str] = None,
        expires_at: Optional[int] = None
    ) -> Tuple[Organization, str]:
        """
        Create an organization and its first API key.

        Returns (organization, api_key). Raises ValueError if the identity
        is already bound to another organization.
        """
        org = Organization(id=str(uuid.uuid4()), name=name, identity=identity)
        api_key = generate_api_key()
        try:
            with self._db.transaction() as conn:
                conn.execute(
                    "INSERT INTO organizations(id, name, identity) VALUES(?,?,?)",
                    (org.id, org.name, org.identity)
                )
                conn.execute(
                    "INSERT INTO api_keys(key, organization_id, expires_at) VALUES(?,?,?)",
                    (api_key, org.id, expires_at)
                )
        except sqlite3.IntegrityError as e:
            raise ValueError(f"Identity already bound to an organization: {identity}") from e
        return org, api_key

    def bind_identity(self, organization_id: str, identity: str) -> Organization:
        """
        Assign an identity to an organization that has none.

        The binding is immutable once set.
        """
        try:
            with self._db.transaction() as conn:
                cur = conn.execute(
                    "UPDATE organizations SET identity=? WHERE id=? AND identity IS NULL",
                    (identity, organization_id)
                )
                updated = cur.rowcount == 1
        except sqlite3.IntegrityError as e:
            raise ValueError(f"Identity already bound to an organization: {identity}") from e
        if not updated:
            raise ValueError("Organization not found or identity already assigned")
        return self.get(organization_id)
