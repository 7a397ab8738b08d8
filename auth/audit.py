"""
auth/audit.py -- Best-effort, append-only audit trail of mutating operations.

Disabled by default (AUDIT_ENABLED=false): every mutating call would otherwise
pay an extra insert. When disabled, record() is a no-op that returns None.

Retention: with AUDIT_TTL_SECONDS > 0 each entry carries an expires_at stamp.
Reads never return expired entries, and purge_expired() deletes them. The
storage engine has no native TTL index, so the API lifespan calls
purge_expired() periodically (same shape as a cache purge loop). The audit
trail itself owns no background task.

Best effort: a failed audit write is logged and swallowed. Audit is
observability, not correctness, so it never fails or rolls back the
operation being audited.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from auth.models import AuditAction, AuditEntry, AuditOutcome, ResourceType
from auth.store import Collection
from core.pagination import Page, clamp_limit, validate_search_text, validate_skip

logger = logging.getLogger("gatehouse.audit")

SYSTEM_ACTOR = "SYSTEM"


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat(timespec="microseconds")


class AuditTrail:
    """Records who did what, when, on which entity.

    Usage:
        trail = AuditTrail(store.audits, enabled=True, ttl_seconds=86400)
        trail.record(actor.id, AuditAction.create, ResourceType.role, role.id)
    """

    def __init__(
        self,
        collection: Collection[AuditEntry],
        enabled: bool = False,
        ttl_seconds: int = 0,
        max_fetch_limit: int = 100,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._entries = collection
        self.enabled = enabled
        self.ttl_seconds = ttl_seconds
        self._max_fetch_limit = max_fetch_limit
        self._clock = clock

    def _now(self) -> str:
        return _iso(self._clock())

    def record(
        self,
        actor_id: str,
        action: AuditAction,
        resource_type: ResourceType,
        resource_id: str,
        outcome: AuditOutcome = AuditOutcome.success,
    ) -> AuditEntry | None:
        """Append one entry. Returns the stored entry, or None when disabled or on failure."""
        if not self.enabled:
            return None
        now = self._clock()
        expires_at = None
        if self.ttl_seconds > 0:
            expires_at = (datetime.fromtimestamp(now, tz=timezone.utc) + timedelta(seconds=self.ttl_seconds)).isoformat(
                timespec="microseconds"
            )
        entry = AuditEntry(
            actor_id=actor_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            outcome=outcome,
            created_at=_iso(now),
            expires_at=expires_at,
        )
        try:
            stored = self._entries.insert(entry)
        except Exception:  # noqa: BLE001 -- audit is best effort, never fails the caller
            logger.exception(
                "Failed to write audit entry (%s %s %s)",
                action.value,
                resource_type.value,
                resource_id,
            )
            return None
        logger.info(
            "Audit: actor=%s action=%s %s=%s outcome=%s",
            actor_id,
            action.value,
            resource_type.value,
            resource_id,
            outcome.value,
        )
        return stored

    def get(self, entry_id: str) -> AuditEntry | None:
        return self._entries.find_by_id(entry_id, now=self._now())

    def list_paged(self, skip: int | None = 0, limit: int | None = None) -> Page[AuditEntry]:
        skip = validate_skip(skip)
        return self._entries.find_paged(None, skip, clamp_limit(limit, self._max_fetch_limit), now=self._now())

    def search_paged(self, text: str, skip: int | None = 0, limit: int | None = None) -> Page[AuditEntry]:
        text = validate_search_text(text)
        skip = validate_skip(skip)
        return self._entries.text_search(
            text, skip, clamp_limit(limit, self._max_fetch_limit), now=self._now()
        )

    def purge_expired(self) -> int:
        """Delete all entries past their expiry. Returns number of rows removed."""
        removed = self._entries.delete_expired(self._now())
        if removed:
            logger.info("Purged %d expired audit entries", removed)
        return removed
