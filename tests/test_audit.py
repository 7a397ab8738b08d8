"""
tests/test_audit.py -- Unit tests for auth/audit.py and audit recording in the directory.

Coverage:
  - disabled trail records nothing
  - enabled trail records success and failure outcomes with the actor id
  - TTL: entries expire from reads, purge_expired deletes them
  - the background purge loop keeps running after a failed sweep
  - a failing audit write never fails the audited operation
  - search and paging over the trail
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from api.main import _purge_loop
from auth.audit import SYSTEM_ACTOR, AuditTrail
from auth.models import AuditAction, AuditOutcome, ResourceType
from auth.services import Services
from core.errors import ConflictError, TransientError, ValidationError


def _trail(services: Services, clock, **kwargs) -> AuditTrail:
    return AuditTrail(services.store.audits, clock=clock, **kwargs)


class TestDisabled:
    def test_record_is_noop(self, services: Services, clock) -> None:
        trail = _trail(services, clock)
        assert trail.record("u1", AuditAction.create, ResourceType.role, "r1") is None
        assert trail.list_paged().total == 0

    def test_directory_writes_leave_no_entries_by_default(self, services: Services) -> None:
        services.directory.create_permission("CAN_X")
        assert services.audit.list_paged().total == 0


class TestRecording:
    def test_record_stores_entry(self, services: Services, clock) -> None:
        trail = _trail(services, clock, enabled=True)
        entry = trail.record("u1", AuditAction.update, ResourceType.user, "target")
        assert entry is not None
        fetched = trail.get(entry.id)
        assert fetched.actor_id == "u1"
        assert fetched.action is AuditAction.update
        assert fetched.resource_type is ResourceType.user
        assert fetched.outcome is AuditOutcome.success
        assert fetched.expires_at is None

    def test_directory_records_success_with_actor(self, services_factory) -> None:
        svc = services_factory(audit_enabled=True)
        p = svc.directory.create_permission("CAN_X", actor_id="admin-1")
        entries = svc.audit.list_paged().items
        assert len(entries) == 1
        assert entries[0].actor_id == "admin-1"
        assert entries[0].resource_id == p.id
        assert entries[0].outcome is AuditOutcome.success

    def test_directory_records_failure(self, services_factory) -> None:
        svc = services_factory(audit_enabled=True)
        svc.directory.create_permission("CAN_X")
        with pytest.raises(ConflictError):
            svc.directory.create_permission("CAN_X")
        outcomes = [e.outcome for e in svc.audit.list_paged().items]
        assert outcomes == [AuditOutcome.success, AuditOutcome.failure]

    def test_registration_actor_is_system(self, services_factory) -> None:
        svc = services_factory(audit_enabled=True)
        svc.directory.register_user("bob", "bob@example.com", "pw")
        assert svc.audit.list_paged().items[0].actor_id == SYSTEM_ACTOR

    def test_validation_failure_writes_nothing(self, services_factory) -> None:
        """Input is validated before the audited block, so nothing is recorded."""
        svc = services_factory(audit_enabled=True)
        with pytest.raises(ValidationError):
            svc.directory.create_permission("")
        assert svc.audit.list_paged().total == 0


class TestRetention:
    def test_entries_expire_and_purge(self, services: Services, clock) -> None:
        trail = _trail(services, clock, enabled=True, ttl_seconds=60)
        entry = trail.record("u1", AuditAction.delete, ResourceType.role, "r1")
        assert entry.expires_at is not None

        clock.now += 59
        assert trail.get(entry.id) is not None

        clock.now += 1
        assert trail.get(entry.id) is None
        assert trail.list_paged().total == 0

        assert trail.purge_expired() == 1
        assert services.store.audits.find_by_id(entry.id) is None

    def test_zero_ttl_never_expires(self, services: Services, clock) -> None:
        trail = _trail(services, clock, enabled=True)
        entry = trail.record("u1", AuditAction.delete, ResourceType.role, "r1")
        clock.now += 10 * 365 * 86400
        assert trail.get(entry.id) is not None
        assert trail.purge_expired() == 0

    def test_purge_loop_survives_unexpected_errors(self) -> None:
        calls: list[int] = []

        def purge_expired() -> int:
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("disk full")
            return 0

        app = SimpleNamespace(state=SimpleNamespace(audit=SimpleNamespace(purge_expired=purge_expired)))

        async def run() -> None:
            task = asyncio.create_task(_purge_loop(app, 0))
            for _ in range(500):
                await asyncio.sleep(0.01)
                if len(calls) >= 2:
                    break
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(run())
        assert len(calls) >= 2


class TestBestEffort:
    def test_write_failure_is_swallowed(self, clock) -> None:
        collection = MagicMock()
        collection.insert.side_effect = TransientError("down")
        trail = AuditTrail(collection, enabled=True, clock=clock)
        assert trail.record("u1", AuditAction.create, ResourceType.user, "x") is None

    def test_audited_operation_succeeds_when_audit_fails(self, services_factory) -> None:
        svc = services_factory(audit_enabled=True)
        svc.audit._entries = MagicMock()
        svc.audit._entries.insert.side_effect = RuntimeError("disk full")

        created = svc.directory.create_role("PILOT")

        assert svc.directory.get_role(created.id).name == "PILOT"


class TestQuery:
    def test_search_by_resource_type(self, services: Services, clock) -> None:
        trail = _trail(services, clock, enabled=True)
        trail.record("u1", AuditAction.create, ResourceType.role, "r1")
        trail.record("u1", AuditAction.create, ResourceType.user, "x1")
        page = trail.search_paged("ROLE")
        assert [e.resource_id for e in page.items] == ["r1"]

    def test_empty_search_rejected(self, services: Services, clock) -> None:
        with pytest.raises(ValidationError):
            _trail(services, clock, enabled=True).search_paged("")

    def test_negative_skip_rejected(self, services: Services, clock) -> None:
        with pytest.raises(ValidationError):
            _trail(services, clock, enabled=True).list_paged(skip=-1)
