"""Tests for audit recording and querying."""

import logging

import pytest

from fleetaccess import (
    AccessControl,
    Actor,
    AuditAction,
    InsufficientRole,
    InvalidRequestError,
    SessionStatus,
)
from fleetaccess.audit import AuditTrail
from fleetaccess.repositories.base import AuditSink
from fleetaccess.repositories.memory import (
    MemoryAssignmentRepository,
    MemoryRevocationStore,
    MemorySessionRepository,
    MemoryUserRepository,
)


class BrokenSink(AuditSink):
    def __init__(self):
        self.calls = 0

    def log(self, record):
        self.calls += 1
        raise ConnectionError("audit database unreachable")

    def query(self, **kwargs):
        return []


@pytest.fixture
def broken_access(config, clock, access):
    """AccessControl sharing the seeded users but with a failing audit sink."""
    return AccessControl(
        config,
        users=MemoryUserRepository(access.users.list_users()),
        assignments=MemoryAssignmentRepository(),
        sessions=MemorySessionRepository(),
        audit_sink=BrokenSink(),
        revocations=MemoryRevocationStore(clock),
        clock=clock,
    )


class TestRecord:
    def test_impersonated_actions_name_both_identities(
        self, access, actor_for, audit_records
    ):
        _, token = access.start_session(actor_for("1"), "25")
        as_admin = access.authenticate(token)

        access.audit.record(as_admin, "REPORT_VIEWED", "REPORT", "r1")

        record = audit_records[-1]
        assert record.actor_id == "25"
        assert record.impersonator_id == "1"

    def test_timestamp_from_clock(self, access, actor_for, clock):
        record = access.audit.record(actor_for("25"), "X", "Y")
        assert record.timestamp == clock()


class TestSinkFailure:
    def test_start_and_end_succeed_without_audit(self, broken_access, caplog):
        admin = broken_access.users.get("25")
        actor = Actor(id=admin.id, role=admin.role)

        with caplog.at_level(logging.ERROR, logger="fleetaccess.audit"):
            session, _ = broken_access.start_session(actor, "26")
            ended = broken_access.end_session(session.session_id, actor)

        assert ended.status == SessionStatus.COMPLETED
        assert broken_access.audit.sink.calls == 2
        assert "Failed to write audit record" in caplog.text

    def test_record_never_raises(self):
        trail = AuditTrail(BrokenSink())
        record = trail.record(None, AuditAction.LOGIN_FAILED, "AUTH")
        assert record.action == AuditAction.LOGIN_FAILED


class TestQuery:
    def test_newest_first_with_filters(self, access, actor_for):
        access.admin.assign_csm(actor_for("25"), "26", "acc_a")
        access.admin.assign_user(actor_for("25"), "28", "acc_a")
        access.admin.assign_user(actor_for("30"), "29", "acc_a")

        records = access.audit.query(actor_for("1"), actor_id="25")

        assert [r.action for r in records] == [
            AuditAction.USER_ASSIGNED_TO_ACCOUNT,
            AuditAction.CSM_ASSIGNED_TO_ACCOUNT,
        ]

    def test_limit_capped_at_100(self, access, actor_for):
        for i in range(120):
            access.audit.record(actor_for("25"), "PING", "TEST", str(i))

        records = access.audit.query(actor_for("1"), action="PING", limit=1000)

        assert len(records) == 100
        assert records[0].resource_id == "119"

    def test_offset(self, access, actor_for):
        for i in range(5):
            access.audit.record(actor_for("25"), "PING", "TEST", str(i))
        records = access.audit.query(actor_for("1"), action="PING", limit=2, offset=2)
        assert [r.resource_id for r in records] == ["2", "1"]

    def test_requires_admin(self, access, actor_for):
        with pytest.raises(InsufficientRole):
            access.audit.query(actor_for("26"))

    def test_bad_paging(self, access, actor_for):
        with pytest.raises(InvalidRequestError):
            access.audit.query(actor_for("1"), limit=0)
