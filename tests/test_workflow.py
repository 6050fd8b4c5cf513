"""
Workflow service — actions, side effects, comments, audit and notifications.

Covers:
  - The register → live → live-cr → live lifecycle
  - Query routing and take_action
  - Reviewer / creator / requester / owner approval chain
  - PermissionDenied vs InvalidTransitionError
  - Append-only comments and one audit event per action
  - Notification failures never undo a committed transition
  - Last write wins on sequential updates
"""

import pytest

from conftest import actor_of
from sop_manager.core.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from sop_manager.models import db
from sop_manager.models.audit import events_for
from sop_manager.models.document import Document
from sop_manager.models.notification import Notification
from sop_manager.services import document_service, workflow
from sop_manager.services.notification import NotificationService


# ═══════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════

def _create(people, by="requester", **overrides):
    data = {
        "sop_name": "Petty cash handling",
        "department": "Finance",
        "document_type": "SOP",
        "language": "en",
        "document_owners": [people["owner"].as_person()],
        "reviewers": [people["reviewer"].as_person()],
        "document_creators": [people["creator"].as_person()],
        "last_revision_date": "2024-01-15",
    }
    data.update(overrides)
    return document_service.create_document(data, actor_of(people[by]))


def _act(people, who, doc, action, **opts):
    return workflow.transition_document(doc.id, action, actor_of(people[who]), **opts)


def _reload(doc):
    db.session.expire_all()
    return db.session.get(Document, doc.id)


def _move(doc, status, pending_with=None):
    doc.status = status
    doc.pending_with = pending_with
    db.session.commit()
    return doc


# ═══════════════════════════════════════════════════════════════
# Creation
# ═══════════════════════════════════════════════════════════════

class TestCreate:
    def test_starts_under_review_with_nobody_pending(self, people):
        doc = _create(people)
        assert doc.status == "under-review"
        assert doc.pending_with is None
        assert doc.version_number == "1.0"
        assert doc.document_code == "SDG-FIN-SOP-01-EN"
        assert doc.requested_by["id"] == people["requester"].id
        assert doc.comments == [f"Document created by {people['requester'].name}"]

    def test_same_initial_state_for_controller(self, people):
        doc = _create(people, by="controller")
        assert doc.status == "under-review"
        assert doc.pending_with is None
        assert doc.requested_by is None

    def test_next_revision_auto_filled(self, people):
        doc = _create(people)
        assert doc.next_revision_date.isoformat() == "2024-04-15"

    def test_next_revision_too_early_blocks_save(self, people):
        with pytest.raises(ValidationError) as exc:
            _create(people, next_revision_date="2024-04-14")
        assert "next_revision_date" in exc.value.details
        assert Document.query.count() == 0

    def test_owner_list_required(self, people):
        with pytest.raises(ValidationError):
            _create(people, document_owners=[])

    def test_reviewer_cannot_create(self, people):
        with pytest.raises(PermissionDenied):
            _create(people, by="reviewer")

    def test_only_draft_or_under_review(self, people):
        assert _create(people, status="draft").status == "draft"
        with pytest.raises(ValidationError):
            _create(people, status="live")

    def test_malformed_code_rejected(self, people):
        with pytest.raises(ValidationError):
            _create(people, document_code="FIN-01")

    def test_create_is_audited(self, people):
        doc = _create(people)
        kinds = [e.kind for e in events_for("document", doc.id)]
        assert kinds == ["document.create"]


# ═══════════════════════════════════════════════════════════════
# End-to-end lifecycle
# ═══════════════════════════════════════════════════════════════

class TestLifecycleScenario:
    def test_register_to_live_and_change(self, people):
        doc = _create(people)
        assert (doc.status, doc.pending_with) == ("under-review", None)

        result = _act(people, "controller", doc, "take_action", notes="Formatting fixed")
        assert result["new_status"] == "under-review"
        assert result["pending_with"] == "Document Requester"

        result = _act(people, "requester", doc, "approve")
        assert result["new_status"] == "approved"

        result = _act(people, "controller", doc, "push_live")
        assert result["new_status"] == "live"
        assert result["pending_with"] is None
        assert _reload(doc).effective_date is not None

        result = workflow.update_document(doc.id, {"description": "Updated limits"}, actor_of(people["owner"]))
        assert result["new_status"] == "live-cr"

        result = _act(people, "owner", doc, "complete_change", version_number="1.1")
        assert result["new_status"] == "live"
        assert _reload(doc).version_number == "1.1"

    def test_each_step_appends_exactly_one_comment(self, people):
        doc = _create(people)
        steps = [
            ("controller", "take_action", {}),
            ("requester", "approve", {}),
            ("controller", "push_live", {}),
        ]
        for who, action, opts in steps:
            before = list(_reload(doc).comments)
            _act(people, who, doc, action, **opts)
            after = list(_reload(doc).comments)
            assert after[:-1] == before
            assert len(after) == len(before) + 1

    def test_audit_trail_reproduces_transitions(self, people):
        doc = _create(people)
        _act(people, "controller", doc, "take_action")
        _act(people, "requester", doc, "approve")
        _act(people, "controller", doc, "push_live")
        moves = [
            (e.kind, e.payload["status"]["old"], e.payload["status"]["new"], e.actor_role)
            for e in events_for("document", doc.id)
        ]
        assert moves == [
            ("document.create", None, "under-review", "requester"),
            ("document.take_action", "under-review", "under-review", "document-controller"),
            ("document.approve", "under-review", "approved", "requester"),
            ("document.push_live", "approved", "live", "document-controller"),
        ]


# ═══════════════════════════════════════════════════════════════
# Approval chain
# ═══════════════════════════════════════════════════════════════

class TestApprovalChain:
    def test_reviewer_then_creator_then_requester_then_owner(self, people):
        doc = _create(people)

        r = _act(people, "reviewer", doc, "approve")
        assert (r["new_status"], r["pending_with"]) == ("pending-creator-approval", "Document Creator")

        r = _act(people, "creator", doc, "approve")
        assert (r["new_status"], r["pending_with"]) == ("pending-requester-approval", "Document Requester")

        r = _act(people, "requester", doc, "approve")
        assert (r["new_status"], r["pending_with"]) == ("under-revision", "Document Owner")

        r = _act(people, "owner", doc, "upload_revision", file_url="/uploads/v2.pdf", attachment_name="v2.pdf")
        assert (r["new_status"], r["pending_with"]) == ("pending-owner-approval", "Document Owner")
        assert _reload(doc).file_url == "/uploads/v2.pdf"

        r = _act(people, "owner", doc, "approve")
        assert (r["new_status"], r["pending_with"]) == ("approved", "Document Controller")

    def test_creator_hand_over_forwards_to_requester(self, people):
        doc = _move(_create(people), "under-review", "Document Creator")
        r = _act(people, "creator", doc, "approve")
        assert r["new_status"] == "under-review"
        assert r["pending_with"] == "Document Requester"

    def test_approve_comment_names_approver(self, people):
        doc = _create(people)
        _act(people, "reviewer", doc, "approve", comment="Looks fine")
        assert _reload(doc).comments[-1] == f"Approved by: {people['reviewer'].name}. Looks fine"

    def test_reject_appends_reason(self, people):
        doc = _move(_create(people), "pending-owner-approval", "Document Owner")
        r = _act(people, "owner", doc, "reject", reason="Wrong template")
        assert r["new_status"] == "under-revision"
        assert _reload(doc).comments[-1] == "Rejected: Wrong template"

    def test_reject_under_review_stays_under_review(self, people):
        doc = _create(people)
        r = _act(people, "reviewer", doc, "reject", reason="Missing section 4")
        assert r["new_status"] == "under-review"
        assert r["pending_with"] == "Document Controller"

    def test_reject_requires_reason(self, people):
        doc = _create(people)
        with pytest.raises(ValidationError):
            _act(people, "reviewer", doc, "reject")
        assert _reload(doc).status == "under-review"


# ═══════════════════════════════════════════════════════════════
# Queries
# ═══════════════════════════════════════════════════════════════

class TestQueries:
    def test_reviewer_query_goes_to_requester(self, people):
        doc = _create(people)
        r = _act(people, "reviewer", doc, "query", query="Which cash limit applies?")
        assert r["new_status"] == "queried"
        assert r["pending_with"] == "Document Requester"
        assert _reload(doc).comments[-1] == "Query: Which cash limit applies?"

    def test_owner_query_goes_to_controller(self, people):
        doc = _create(people)
        r = _act(people, "owner", doc, "query", query="Scope unclear")
        assert r["pending_with"] == "Document Controller"

    def test_take_action_routes_back_to_querier(self, people):
        doc = _create(people)
        _act(people, "reviewer", doc, "query", query="Section 2?")
        r = _act(people, "controller", doc, "take_action", notes="Clarified section 2",
                 updates={"description": "Clarified"})
        assert r["new_status"] == "under-review"
        assert r["pending_with"] == "Document Reviewer"
        doc = _reload(doc)
        assert doc.description == "Clarified"
        assert doc.comments[-1] == "Controller Action: Document updated and resubmitted. Clarified section 2"

    def test_take_action_defaults_to_requester(self, people):
        doc = _create(people)
        _act(people, "owner", doc, "query", query="Scope?")
        r = _act(people, "controller", doc, "take_action")
        assert r["pending_with"] == "Document Requester"

    def test_query_text_required(self, people):
        doc = _create(people)
        with pytest.raises(ValidationError):
            _act(people, "reviewer", doc, "query")


# ═══════════════════════════════════════════════════════════════
# Errors: 403 vs 409
# ═══════════════════════════════════════════════════════════════

class TestErrors:
    def test_wrong_role_in_valid_status_is_permission_denied(self, people):
        doc = _move(_create(people), "approved", "Document Controller")
        with pytest.raises(PermissionDenied):
            _act(people, "reviewer", doc, "push_live")

    def test_illegal_status_is_invalid_transition(self, people):
        doc = _create(people)
        with pytest.raises(InvalidTransitionError) as exc:
            _act(people, "controller", doc, "push_live")
        assert exc.value.from_status == "under-review"
        assert exc.value.to_status == "live"
        assert _reload(doc).status == "under-review"

    def test_unassigned_actor_denied(self, people):
        doc = _create(people)
        with pytest.raises(PermissionDenied):
            _act(people, "reviewer2", doc, "approve")

    def test_unknown_action(self, people):
        doc = _create(people)
        with pytest.raises(ValidationError):
            _act(people, "admin", doc, "teleport")

    def test_missing_document(self, people):
        with pytest.raises(NotFoundError):
            workflow.transition_document("nope", "approve", actor_of(people["admin"]))

    def test_status_cannot_be_set_by_edit(self, people):
        doc = _create(people)
        with pytest.raises(ValidationError):
            workflow.update_document(doc.id, {"status": "live"}, actor_of(people["admin"]))
        assert _reload(doc).status == "under-review"

    def test_failed_edit_applies_nothing(self, people):
        doc = _create(people)
        with pytest.raises(ValidationError):
            workflow.update_document(
                doc.id,
                {"description": "New text", "next_revision_date": "2024-02-01"},
                actor_of(people["admin"]),
            )
        doc = _reload(doc)
        assert doc.description != "New text"
        assert len(doc.comments) == 1


# ═══════════════════════════════════════════════════════════════
# Administrative operations
# ═══════════════════════════════════════════════════════════════

class TestAdministrative:
    def test_archive_and_restore(self, people):
        doc = _move(_create(people), "live")
        r = _act(people, "admin", doc, "archive")
        assert r["new_status"] == "archived"
        r = _act(people, "controller", doc, "restore")
        assert (r["new_status"], r["pending_with"]) == ("under-review", "Document Controller")

    def test_delete_hides_from_controller(self, people):
        doc = _create(people)
        _act(people, "admin", doc, "delete")
        docs = document_service.list_documents(actor_of(people["controller"]))
        assert doc.id not in [d.id for d in docs]

    def test_owner_cannot_archive(self, people):
        doc = _move(_create(people), "live")
        with pytest.raises(PermissionDenied):
            _act(people, "owner", doc, "archive")

    def test_start_review_from_rejected(self, people):
        doc = _move(_create(people), "rejected")
        r = _act(people, "controller", doc, "start_review", reviewers=[people["reviewer2"].as_person()])
        assert (r["new_status"], r["pending_with"]) == ("under-review", "Document Reviewer")
        assert _reload(doc).current_reviewers[0]["id"] == people["reviewer2"].id

    def test_start_review_on_live_forces_live_cr(self, people):
        doc = _move(_create(people), "live")
        r = _act(people, "controller", doc, "start_review")
        assert r["new_status"] == "live-cr"

    def test_start_review_comment(self, people):
        doc = _move(_create(people), "reviewed")
        _act(people, "controller", doc, "start_review")
        assert _reload(doc).comments[-1] == "Review started"
        _move(doc, "rejected")
        _act(people, "controller", doc, "start_review", comment="Second round")
        assert _reload(doc).comments[-1] == "Review started. Second round"


class TestCompleteChange:
    def test_malformed_version_rejected(self, people):
        doc = _move(_create(people), "live-cr")
        with pytest.raises(ValidationError) as exc:
            _act(people, "owner", doc, "complete_change", version_number="banana")
        assert "version_number" in exc.value.details
        doc = _reload(doc)
        assert (doc.status, doc.version_number) == ("live-cr", "1.0")

    def test_bare_major_normalized(self, people):
        doc = _move(_create(people), "live-cr")
        _act(people, "owner", doc, "complete_change", version_number="2")
        assert _reload(doc).version_number == "2.0"

    def test_version_optional(self, people):
        doc = _move(_create(people), "live-cr")
        r = _act(people, "controller", doc, "complete_change")
        assert r["new_status"] == "live"
        assert _reload(doc).version_number == "1.0"


# ═══════════════════════════════════════════════════════════════
# Notifications
# ═══════════════════════════════════════════════════════════════

class TestNotifications:
    def test_push_live_notifies_stakeholders(self, people):
        doc = _move(_create(people), "approved", "Document Controller")
        _act(people, "controller", doc, "push_live")
        rows = Notification.query.filter_by(document_id=doc.id, hook="notify_document_live").all()
        emails = sorted(n.recipient_email for n in rows)
        assert emails == sorted([
            people["owner"].email, people["reviewer"].email,
            people["creator"].email, people["requester"].email,
        ])
        assert all(n.status == "sent" for n in rows)

    def test_failing_hook_does_not_roll_back(self, people, monkeypatch):
        def _boom(doc):
            raise RuntimeError("SMTP down")

        monkeypatch.setattr(NotificationService, "notify_document_live", staticmethod(_boom))
        doc = _move(_create(people), "approved", "Document Controller")
        result = _act(people, "controller", doc, "push_live")
        assert result["new_status"] == "live"
        assert _reload(doc).status == "live"

    def test_query_notifies_controllers(self, people):
        doc = _create(people)
        _act(people, "owner", doc, "query", query="Scope?")
        rows = Notification.query.filter_by(hook="notify_document_controller_query").all()
        assert [n.recipient_email for n in rows] == [people["controller"].email]


# ═══════════════════════════════════════════════════════════════
# Concurrency model
# ═══════════════════════════════════════════════════════════════

class TestLastWriteWins:
    def test_sequential_conflicting_updates(self, people):
        doc = _create(people)
        admin = actor_of(people["admin"])
        controller = actor_of(people["controller"])
        workflow.update_document(doc.id, {"description": "first"}, admin)
        workflow.update_document(doc.id, {"description": "second"}, controller)
        assert _reload(doc).description == "second"
