"""
auth/services.py -- Wiring of the engine's components from one Settings object.

build_services() is the single place where configuration is read and handed
to constructors. Components never reach back for settings on their own, so a
test can build a fully isolated engine from a hand-made Settings instance.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

from dataclasses import dataclass

from auth.audit import AuditTrail
from auth.authorization import AuthorizationEngine
from auth.directory import IdentityDirectory
from auth.passwords import DEFAULT_COST, HashCost, PasswordHasher
from auth.store import DirectoryStore
from auth.tokens import TokenService
from core.config import Settings


@dataclass
class Services:
    settings: Settings
    store: DirectoryStore
    hasher: PasswordHasher
    tokens: TokenService
    audit: AuditTrail
    directory: IdentityDirectory
    engine: AuthorizationEngine

    def close(self) -> None:
        self.store.close()


def build_services(
    settings: Settings, store: DirectoryStore | None = None, hash_cost: HashCost = DEFAULT_COST
) -> Services:
    """Construct every component. Pass `store` to reuse an existing database."""
    if store is None:
        store = DirectoryStore(
            settings.database_url,
            timeout_seconds=settings.db_timeout_seconds,
            permission_table=settings.permission_table,
            role_table=settings.role_table,
            user_table=settings.user_table,
            audit_table=settings.audit_table,
        )
    hasher = PasswordHasher(settings.hash_salt, cost=hash_cost)
    tokens = TokenService(settings.jwt_secret, settings.jwt_expiration)
    audit = AuditTrail(
        store.audits,
        enabled=settings.audit_enabled,
        ttl_seconds=settings.audit_ttl_seconds,
        max_fetch_limit=settings.max_fetch_limit,
    )
    directory = IdentityDirectory(
        store,
        hasher,
        audit,
        max_fetch_limit=settings.max_fetch_limit,
        default_role_name=settings.default_role_name,
    )
    engine = AuthorizationEngine(directory, hasher, tokens)
    return Services(
        settings=settings,
        store=store,
        hasher=hasher,
        tokens=tokens,
        audit=audit,
        directory=directory,
        engine=engine,
    )
