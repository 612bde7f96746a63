"""Tests for assignment and role administration."""

import pytest

from fleetaccess import (
    AssignmentKind,
    AuditAction,
    ConflictError,
    InsufficientRole,
    InvalidImpersonationState,
    InvalidRequestError,
    NotFoundError,
    Role,
    Unauthenticated,
)


class TestCsmAssignments:
    def test_assign_csm(self, access, actor_for, clock):
        assignment = access.admin.assign_csm(actor_for("25"), "26", "acc_a", is_primary=True)

        assert assignment.kind == AssignmentKind.CSM
        assert assignment.assigned_by == "25"
        assert assignment.is_primary
        assert assignment.assigned_at == clock()
        assert access.assignments.get_assignments_for("26") == {"acc_a"}

    def test_duplicate_conflicts(self, access, actor_for):
        access.admin.assign_csm(actor_for("25"), "26", "acc_a")
        with pytest.raises(ConflictError) as exc_info:
            access.admin.assign_csm(actor_for("1"), "26", "acc_a")
        assert exc_info.value.status_code == 409

    def test_target_must_be_csm(self, access, actor_for):
        with pytest.raises(InvalidRequestError):
            access.admin.assign_csm(actor_for("25"), "28", "acc_a")

    def test_unknown_csm(self, access, actor_for):
        with pytest.raises(NotFoundError):
            access.admin.assign_csm(actor_for("25"), "999", "acc_a")

    @pytest.mark.parametrize("user_id", ["26", "28"])
    def test_requires_admin(self, access, actor_for, user_id):
        with pytest.raises(InsufficientRole):
            access.admin.assign_csm(actor_for(user_id), "27", "acc_a")

    def test_requires_actor(self, access):
        with pytest.raises(Unauthenticated):
            access.admin.assign_csm(None, "26", "acc_a")

    def test_refused_while_impersonating(self, access, actor_for):
        _, token = access.start_session(actor_for("1"), "25")
        as_admin = access.authenticate(token)

        with pytest.raises(InvalidImpersonationState):
            access.admin.assign_csm(as_admin, "26", "acc_a")

    def test_remove_csm(self, access, actor_for, audit_records):
        access.admin.assign_csm(actor_for("25"), "26", "acc_a")

        access.admin.remove_csm(actor_for("25"), "26", "acc_a")

        assert access.assignments.get_assignments_for("26") == set()
        record = audit_records[-1]
        assert record.action == AuditAction.CSM_REMOVED_FROM_ACCOUNT
        assert record.old_value["actor_id"] == "26"

    def test_remove_missing(self, access, actor_for):
        with pytest.raises(NotFoundError):
            access.admin.remove_csm(actor_for("25"), "26", "acc_a")

    def test_remove_csm_does_not_touch_member_rows(self, access, actor_for):
        access.admin.assign_user(actor_for("25"), "28", "acc_a")
        with pytest.raises(NotFoundError):
            access.admin.remove_csm(actor_for("25"), "28", "acc_a")


class TestUserAssignments:
    def test_assign_user(self, access, actor_for, audit_records):
        assignment = access.admin.assign_user(actor_for("25"), "28", "acc_a", "owner")

        assert assignment.kind == AssignmentKind.MEMBER
        assert assignment.role_in_account == "owner"
        record = audit_records[-1]
        assert record.action == AuditAction.USER_ASSIGNED_TO_ACCOUNT
        assert record.actor_id == "25"
        assert record.resource_id == "acc_a"
        assert record.new_value["role_in_account"] == "owner"

    def test_invalid_role_in_account(self, access, actor_for):
        with pytest.raises(InvalidRequestError):
            access.admin.assign_user(actor_for("25"), "28", "acc_a", "janitor")

    def test_target_must_be_user(self, access, actor_for):
        with pytest.raises(InvalidRequestError):
            access.admin.assign_user(actor_for("25"), "26", "acc_a")

    def test_remove_user(self, access, actor_for):
        access.admin.assign_user(actor_for("25"), "28", "acc_a")
        access.admin.remove_user(actor_for("1"), "28", "acc_a")
        assert access.assignments.list_for_actor("28") == []

    def test_bulk_assign_collects_failures(self, access, actor_for, audit_records):
        access.admin.assign_user(actor_for("25"), "29", "acc_a")

        result = access.admin.bulk_assign_users(
            actor_for("25"), "acc_a", ["28", "29", "26", "999"], "viewer"
        )

        assert [a.actor_id for a in result["assignments"]] == ["28"]
        assert [e["user_id"] for e in result["errors"]] == ["29", "26", "999"]
        record = audit_records[-1]
        assert record.action == AuditAction.BULK_USER_ASSIGNMENT
        assert record.new_value["success_count"] == 1
        assert record.new_value["error_count"] == 3

    def test_bulk_assign_requires_users(self, access, actor_for):
        with pytest.raises(InvalidRequestError):
            access.admin.bulk_assign_users(actor_for("25"), "acc_a", [])

    def test_bulk_assign_requires_admin(self, access, actor_for):
        with pytest.raises(InsufficientRole):
            access.admin.bulk_assign_users(actor_for("26"), "acc_a", ["28"])


class TestChangeRole:
    def test_superadmin_promotes_to_admin(self, access, actor_for, audit_records):
        user = access.admin.change_role(actor_for("1"), "26", Role.ADMIN)

        assert user.role == Role.ADMIN
        assert access.users.get("26").role == Role.ADMIN
        record = audit_records[-1]
        assert record.action == AuditAction.ROLE_CHANGED
        assert record.old_value == {"role": "csm"}
        assert record.new_value == {"role": "admin"}

    def test_admin_moves_user_to_csm(self, access, actor_for):
        assert access.admin.change_role(actor_for("25"), "28", "csm").role == Role.CSM

    def test_admin_cannot_grant_admin(self, access, actor_for):
        with pytest.raises(InsufficientRole):
            access.admin.change_role(actor_for("25"), "28", Role.ADMIN)
        assert access.users.get("28").role == Role.USER

    def test_admin_cannot_demote_admin(self, access, actor_for):
        with pytest.raises(InsufficientRole):
            access.admin.change_role(actor_for("25"), "30", Role.USER)

    def test_cannot_change_own_role(self, access, actor_for):
        with pytest.raises(InvalidRequestError, match="own role"):
            access.admin.change_role(actor_for("1"), "1", Role.USER)

    def test_unknown_role(self, access, actor_for):
        with pytest.raises(InvalidRequestError):
            access.admin.change_role(actor_for("1"), "28", "owner")

    def test_unknown_user(self, access, actor_for):
        with pytest.raises(NotFoundError):
            access.admin.change_role(actor_for("1"), "999", Role.CSM)

    def test_same_role_is_a_no_op(self, access, actor_for, audit_records):
        before = len(audit_records)
        access.admin.change_role(actor_for("1"), "28", Role.USER)
        assert len(audit_records) == before
