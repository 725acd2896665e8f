"""
Validation gate tests:
  - Transition-table closure for every (status, role) pair
  - Mandatory-document gate (Sent to Bank, leaving Draft, owner submission)
  - Terminal Paid status
  - Comment requirement lookup and notification type mapping
"""

from types import SimpleNamespace

import pytest

from crm_workflow.models.application import (
    ADMIN_TRANSITIONS,
    APPLICATION_STATUSES,
    USER_TRANSITIONS,
)
from crm_workflow.models.profile import ROLE_ADMIN, ROLE_USER
from crm_workflow.services import status_rules


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════


def _doc(name, mandatory=True, uploaded=False):
    return SimpleNamespace(name=name, is_mandatory=mandatory, is_uploaded=uploaded)


def _app(status, documents=()):
    return SimpleNamespace(status=status, documents=list(documents))


_TABLES = {ROLE_ADMIN: ADMIN_TRANSITIONS, ROLE_USER: USER_TRANSITIONS}


# ═══════════════════════════════════════════════════════════════════════════
# Transition table
# ═══════════════════════════════════════════════════════════════════════════


class TestTransitionClosure:
    @pytest.mark.parametrize("role", [ROLE_ADMIN, ROLE_USER])
    @pytest.mark.parametrize("current", APPLICATION_STATUSES)
    def test_only_listed_targets_allowed(self, current, role):
        application = _app(current)
        expected = _TABLES[role].get(current, frozenset())
        for target in APPLICATION_STATUSES:
            gate = status_rules.can_transition(application, target, role)
            assert gate.allowed is (target in expected), (current, target, role)

    def test_admin_table_matches_workflow(self):
        assert status_rules.allowed_targets("Submitted", ROLE_ADMIN) == {"Returned", "Sent to Bank"}
        assert status_rules.allowed_targets("Sent to Bank", ROLE_ADMIN) == {
            "Complete", "Rejected", "Need More Info",
        }
        assert status_rules.allowed_targets("Need More Info", ROLE_ADMIN) == {"Sent to Bank", "Returned"}
        assert status_rules.allowed_targets("Rejected", ROLE_ADMIN) == {"Sent to Bank"}
        assert status_rules.allowed_targets("Complete", ROLE_ADMIN) == {"Paid"}

    def test_user_can_submit_and_resubmit_only(self):
        assert status_rules.allowed_targets("Draft", ROLE_USER) == {"Submitted"}
        assert status_rules.allowed_targets("Returned", ROLE_USER) == {"Submitted"}
        assert status_rules.allowed_targets("Submitted", ROLE_USER) == frozenset()

    def test_unknown_target_rejected(self):
        gate = status_rules.can_transition(_app("Submitted"), "Approved", ROLE_ADMIN)
        assert gate.allowed is False
        assert "Unknown status" in gate.reason

    def test_available_transitions_in_status_order(self):
        assert status_rules.available_transitions(_app("Sent to Bank"), ROLE_ADMIN) == [
            "Need More Info", "Complete", "Rejected",
        ]


class TestTerminalStatus:
    @pytest.mark.parametrize("role", [ROLE_ADMIN, ROLE_USER])
    def test_paid_allows_nothing(self, role):
        application = _app("Paid")
        for target in APPLICATION_STATUSES:
            assert status_rules.can_transition(application, target, role).allowed is False

    def test_paid_reason_names_final_status(self):
        gate = status_rules.can_transition(_app("Paid"), "Complete", ROLE_ADMIN)
        assert gate.reason == "Paid is a final status"
        assert status_rules.is_final_status("Paid")
        assert not status_rules.is_final_status("Draft")


# ═══════════════════════════════════════════════════════════════════════════
# Document gate
# ═══════════════════════════════════════════════════════════════════════════


class TestDocumentGate:
    def test_sent_to_bank_blocked_until_uploaded(self):
        passport = _doc("Passport Copy")
        application = _app("Submitted", [passport, _doc("Optional Letter", mandatory=False)])

        gate = status_rules.can_transition(application, "Sent to Bank", ROLE_ADMIN)
        assert gate.allowed is False
        assert gate.missing_documents == ["Passport Copy"]

        passport.is_uploaded = True
        gate = status_rules.can_transition(application, "Sent to Bank", ROLE_ADMIN)
        assert gate.allowed is True
        assert gate.missing_documents == []

    def test_owner_submission_needs_documents(self):
        application = _app("Draft", [_doc("Trade License"), _doc("MOA", uploaded=True)])
        gate = status_rules.can_transition(application, "Submitted", ROLE_USER)
        assert gate.allowed is False
        assert gate.missing_documents == ["Trade License"]

    def test_resubmission_needs_documents(self):
        application = _app("Returned", [_doc("Bank Statement")])
        gate = status_rules.can_transition(application, "Submitted", ROLE_USER)
        assert gate.allowed is False

    def test_returning_does_not_need_documents(self):
        application = _app("Submitted", [_doc("Bank Statement")])
        gate = status_rules.can_transition(application, "Returned", ROLE_ADMIN)
        assert gate.allowed is True

    def test_requires_documents_rules(self):
        assert status_rules.requires_documents("Rejected", "Sent to Bank", ROLE_ADMIN)
        assert status_rules.requires_documents("Draft", "Submitted", ROLE_ADMIN)
        assert status_rules.requires_documents("Returned", "Submitted", ROLE_USER)
        assert not status_rules.requires_documents("Sent to Bank", "Complete", ROLE_ADMIN)
        assert not status_rules.requires_documents("Submitted", "Returned", ROLE_ADMIN)

    def test_available_transitions_hide_blocked_targets(self):
        application = _app("Submitted", [_doc("Passport Copy")])
        assert status_rules.available_transitions(application, ROLE_ADMIN) == ["Returned"]


# ═══════════════════════════════════════════════════════════════════════════
# Lookups
# ═══════════════════════════════════════════════════════════════════════════


class TestLookups:
    @pytest.mark.parametrize("status", ["Returned", "Rejected", "Need More Info"])
    def test_comment_required(self, status):
        assert status_rules.requires_comment(status)

    @pytest.mark.parametrize("status", ["Submitted", "Sent to Bank", "Complete", "Paid"])
    def test_comment_optional(self, status):
        assert not status_rules.requires_comment(status)

    def test_notification_types(self):
        assert status_rules.notification_type_for("Complete") == "success"
        assert status_rules.notification_type_for("Rejected") == "error"
        assert status_rules.notification_type_for("Returned") == "warning"
        assert status_rules.notification_type_for("Sent to Bank") == "info"


class TestTransitionWarnings:
    @pytest.mark.parametrize("target", ["Complete", "Paid"])
    def test_irreversible_targets_warn(self, target):
        current = "Sent to Bank" if target == "Complete" else "Complete"
        gate = status_rules.can_transition(_app(current), target, ROLE_ADMIN)
        assert gate.allowed is True
        assert gate.warnings == ["This status change cannot be reversed once applied."]

    def test_rejected_suggests_need_more_info(self):
        gate = status_rules.can_transition(_app("Sent to Bank"), "Rejected", ROLE_ADMIN)
        assert len(gate.warnings) == 1
        assert "cannot be reopened" in gate.warnings[0]
        assert '"Need More Info"' in gate.warnings[0]

    def test_ordinary_move_has_no_warnings(self):
        gate = status_rules.can_transition(_app("Submitted"), "Returned", ROLE_ADMIN)
        assert gate.allowed is True
        assert gate.to_dict()["warnings"] == []

    def test_blocked_move_has_no_warnings(self):
        gate = status_rules.can_transition(_app("Submitted"), "Complete", ROLE_ADMIN)
        assert gate.allowed is False
        assert gate.warnings == []
