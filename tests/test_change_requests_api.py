"""
Change Request API — /api/v1/change-requests

Covers new-request and change-request lifecycles, version numbering,
the document side effects (live → live-cr → live) and role scoping.
"""

import pytest

from conftest import actor_of
from sop_manager.models import db
from sop_manager.models.document import Document
from sop_manager.models.reference import Department
from sop_manager.services.document_service import create_document

BASE = "/api/v1/change-requests"


@pytest.fixture()
def live_doc(people):
    doc = create_document(
        {
            "sop_name": "Expense claims",
            "department": "Finance",
            "document_owners": [people["owner"].as_person()],
        },
        actor_of(people["admin"]),
    )
    doc.status = "live"
    db.session.commit()
    return doc


def _reload(doc_id):
    db.session.expire_all()
    return db.session.get(Document, doc_id)


def _raise(client, auth_headers, user, **body):
    res = client.post(BASE, json=body, headers=auth_headers(user))
    assert res.status_code == 201, res.get_json()
    return res.get_json()


class TestChangeRequestLifecycle:
    def test_minor_change_full_cycle(self, client, people, auth_headers, live_doc):
        cr = _raise(client, auth_headers, people["requester"], request_type="change-request",
                    document_id=live_doc.id, change_type="minor", description="Raise limits",
                    approvers=[people["owner"].as_person()])
        assert cr["status"] == "pending"
        assert cr["version_number"] == "1.1"
        assert cr["document_code"] == live_doc.document_code
        assert cr["approver_email"] == people["owner"].email

        res = client.post(f"{BASE}/{cr['id']}/approve", json={"comment": "Go ahead"},
                          headers=auth_headers(people["controller"]))
        assert res.status_code == 200
        assert res.get_json()["status"] == "approved"
        doc = _reload(live_doc.id)
        assert doc.status == "live-cr"
        assert doc.comments[-1].startswith("Change request approved")

        res = client.post(f"{BASE}/{cr['id']}/complete", headers=auth_headers(people["owner"]))
        assert res.status_code == 200
        assert res.get_json()["status"] == "completed"
        doc = _reload(live_doc.id)
        assert doc.status == "live"
        assert doc.version_number == "1.1"

    def test_major_change_version(self, client, people, auth_headers, live_doc):
        live_doc.version_number = "2.3"
        db.session.commit()
        cr = _raise(client, auth_headers, people["admin"], document_id=live_doc.id, change_type="major")
        assert cr["version_number"] == "3.0"

    def test_forward_to_owner_then_approve(self, client, people, auth_headers, live_doc):
        cr = _raise(client, auth_headers, people["requester"], document_id=live_doc.id, change_type="minor",
                    approvers=[people["owner"].as_person()])
        res = client.post(f"{BASE}/{cr['id']}/forward", headers=auth_headers(people["controller"]))
        assert res.get_json()["status"] == "pending-owner-approval"
        res = client.post(f"{BASE}/{cr['id']}/approve", headers=auth_headers(people["owner"]))
        assert res.get_json()["status"] == "approved"

    def test_reject_requires_comment(self, client, people, auth_headers, live_doc):
        cr = _raise(client, auth_headers, people["requester"], document_id=live_doc.id, change_type="minor")
        res = client.post(f"{BASE}/{cr['id']}/reject", headers=auth_headers(people["controller"]))
        assert res.status_code == 422
        res = client.post(f"{BASE}/{cr['id']}/reject", json={"comment": "Out of scope"},
                          headers=auth_headers(people["controller"]))
        assert res.status_code == 200
        body = res.get_json()
        assert body["status"] == "rejected"
        assert body["comments"][-1] == "Rejected by Cora Controller: Out of scope"
        assert _reload(live_doc.id).status == "live"

    def test_cancel_by_requester(self, client, people, auth_headers, live_doc):
        cr = _raise(client, auth_headers, people["requester"], document_id=live_doc.id, change_type="minor")
        res = client.post(f"{BASE}/{cr['id']}/cancel", headers=auth_headers(people["requester"]))
        assert res.status_code == 200
        assert res.get_json()["status"] == "rejected"

    def test_cancel_someone_elses_request(self, client, people, auth_headers, make_user, live_doc):
        cr = _raise(client, auth_headers, people["requester"], document_id=live_doc.id, change_type="minor")
        other = make_user("requester", name="Other Requester")
        res = client.post(f"{BASE}/{cr['id']}/cancel", headers=auth_headers(other))
        assert res.status_code == 403

    def test_cancel_after_approval_is_409(self, client, people, auth_headers, live_doc):
        cr = _raise(client, auth_headers, people["requester"], document_id=live_doc.id, change_type="minor")
        client.post(f"{BASE}/{cr['id']}/approve", headers=auth_headers(people["controller"]))
        res = client.post(f"{BASE}/{cr['id']}/cancel", headers=auth_headers(people["requester"]))
        assert res.status_code == 409

    def test_complete_pending_is_409(self, client, people, auth_headers, live_doc):
        cr = _raise(client, auth_headers, people["requester"], document_id=live_doc.id, change_type="minor")
        res = client.post(f"{BASE}/{cr['id']}/complete", headers=auth_headers(people["controller"]))
        assert res.status_code == 409
        assert res.get_json()["from"] == "pending"

    def test_reviewer_cannot_approve(self, client, people, auth_headers, live_doc):
        cr = _raise(client, auth_headers, people["requester"], document_id=live_doc.id, change_type="minor")
        res = client.post(f"{BASE}/{cr['id']}/approve", headers=auth_headers(people["reviewer"]))
        assert res.status_code == 403

    @pytest.mark.parametrize("action,body", [
        ("approve", {}),
        ("reject", {"comment": "No"}),
    ])
    def test_owner_must_be_the_approver(self, client, people, auth_headers, live_doc, action, body):
        cr = _raise(client, auth_headers, people["requester"], document_id=live_doc.id, change_type="minor",
                    approvers=[people["owner"].as_person()])
        res = client.post(f"{BASE}/{cr['id']}/{action}", json=body, headers=auth_headers(people["owner2"]))
        assert res.status_code == 403
        assert res.get_json()["action"] == action
        assert client.get(f"{BASE}/{cr['id']}", headers=auth_headers(people["admin"])).get_json()["status"] == "pending"
        assert _reload(live_doc.id).status == "live"

    def test_owner_cannot_complete_someone_elses_approval(self, client, people, auth_headers, live_doc):
        cr = _raise(client, auth_headers, people["requester"], document_id=live_doc.id, change_type="minor",
                    approvers=[people["owner"].as_person()])
        client.post(f"{BASE}/{cr['id']}/approve", headers=auth_headers(people["owner"]))
        res = client.post(f"{BASE}/{cr['id']}/complete", headers=auth_headers(people["owner2"]))
        assert res.status_code == 403
        assert _reload(live_doc.id).status == "live-cr"

    def test_owner_without_approver_set_is_refused(self, client, people, auth_headers, live_doc):
        cr = _raise(client, auth_headers, people["requester"], document_id=live_doc.id, change_type="minor")
        res = client.post(f"{BASE}/{cr['id']}/approve", headers=auth_headers(people["owner"]))
        assert res.status_code == 403

    def test_department_approver_may_approve(self, client, people, auth_headers, live_doc):
        db.session.add(Department(name="Finance", code="FIN", approver_name="Oscar Owner",
                                  approver_email=people["owner2"].email.upper()))
        db.session.commit()
        cr = _raise(client, auth_headers, people["requester"], document_id=live_doc.id, change_type="minor")
        res = client.post(f"{BASE}/{cr['id']}/approve", headers=auth_headers(people["owner2"]))
        assert res.status_code == 200
        assert res.get_json()["status"] == "approved"

    def test_query_appends_comment(self, client, people, auth_headers, live_doc):
        cr = _raise(client, auth_headers, people["requester"], document_id=live_doc.id, change_type="minor")
        res = client.post(f"{BASE}/{cr['id']}/query", json={"comment": "Which annex?"},
                          headers=auth_headers(people["controller"]))
        body = res.get_json()
        assert body["status"] == "pending"
        assert body["comments"][-1] == "Query: Which annex?"

    def test_unknown_action(self, client, people, auth_headers, live_doc):
        cr = _raise(client, auth_headers, people["requester"], document_id=live_doc.id, change_type="minor")
        res = client.post(f"{BASE}/{cr['id']}/escalate", headers=auth_headers(people["admin"]))
        assert res.status_code == 422

    def test_not_found(self, client, people, auth_headers):
        res = client.get(f"{BASE}/nope", headers=auth_headers(people["admin"]))
        assert res.status_code == 404


class TestCreateValidation:
    def test_target_must_be_live(self, client, people, auth_headers, live_doc):
        live_doc.status = "under-review"
        db.session.commit()
        res = client.post(BASE, json={"document_id": live_doc.id, "change_type": "minor"},
                          headers=auth_headers(people["requester"]))
        assert res.status_code == 422

    def test_change_type_required(self, client, people, auth_headers, live_doc):
        res = client.post(BASE, json={"document_id": live_doc.id}, headers=auth_headers(people["requester"]))
        assert res.status_code == 422

    def test_unknown_document(self, client, people, auth_headers):
        res = client.post(BASE, json={"document_id": "missing", "change_type": "minor"},
                          headers=auth_headers(people["requester"]))
        assert res.status_code == 404

    def test_department_approver_fallback(self, client, people, auth_headers, live_doc):
        db.session.add(Department(name="Finance", code="FIN", approver_name="Fin Lead",
                                  approver_email="fin.lead@acme.com"))
        db.session.commit()
        cr = _raise(client, auth_headers, people["requester"], document_id=live_doc.id, change_type="minor")
        assert cr["approver_name"] == "Fin Lead"
        assert cr["approver_email"] == "fin.lead@acme.com"


class TestNewRequest:
    def test_approval_registers_document(self, client, people, auth_headers):
        cr = _raise(client, auth_headers, people["requester"], request_type="new-request",
                    document_name="Travel policy", department="Finance", document_type="Policy")
        assert cr["version_number"] == "1.0"
        assert cr["document_id"] is None

        res = client.post(f"{BASE}/{cr['id']}/approve", headers=auth_headers(people["controller"]))
        body = res.get_json()
        assert body["status"] == "approved"
        doc = _reload(body["document_id"])
        assert doc.status == "under-review"
        assert doc.pending_with == "Document Controller"
        assert doc.document_code == "SDG-FIN-POL-01"
        assert doc.requested_by["id"] == people["requester"].id

    def test_name_and_department_required(self, client, people, auth_headers):
        res = client.post(BASE, json={"request_type": "new-request"}, headers=auth_headers(people["requester"]))
        assert res.status_code == 422
        assert set(res.get_json()["details"]) == {"document_name", "department"}


class TestListAndPreview:
    def test_scoping(self, client, people, auth_headers, make_user, live_doc):
        mine = _raise(client, auth_headers, people["requester"], document_id=live_doc.id, change_type="minor",
                      approvers=[people["owner"].as_person()])
        other = make_user("requester", name="Other Requester")
        theirs = _raise(client, auth_headers, other, document_id=live_doc.id, change_type="minor")

        def ids(user):
            return {c["id"] for c in client.get(BASE, headers=auth_headers(user)).get_json()["items"]}

        assert ids(people["admin"]) == {mine["id"], theirs["id"]}
        assert ids(people["requester"]) == {mine["id"]}
        assert ids(people["owner"]) == {mine["id"]}
        assert ids(people["owner2"]) == set()

    def test_next_version_preview(self, client, people, auth_headers, live_doc):
        headers = auth_headers(people["requester"])
        res = client.get(BASE + "/next-version",
                         query_string={"document_id": live_doc.id, "change_type": "minor"}, headers=headers)
        assert res.get_json() == {"document_id": live_doc.id, "current_version": "1.0", "version_number": "1.1"}

        res = client.get(BASE + "/next-version", query_string={"request_type": "new-request"}, headers=headers)
        assert res.get_json()["version_number"] == "1.0"

    def test_next_version_bad_input(self, client, people, auth_headers):
        headers = auth_headers(people["requester"])
        res = client.get(BASE + "/next-version", query_string={"request_type": "bogus"}, headers=headers)
        assert res.status_code == 400
        res = client.get(BASE + "/next-version", query_string={"change_type": "minor"}, headers=headers)
        assert res.status_code == 422

    def test_single_request_follows_list_scoping(self, client, people, auth_headers, make_user, live_doc):
        cr = _raise(client, auth_headers, people["requester"], document_id=live_doc.id, change_type="minor",
                    approvers=[people["owner"].as_person()])
        url = f"{BASE}/{cr['id']}"
        other = make_user("requester", name="Other Requester")

        for user in (people["admin"], people["controller"], people["requester"], people["owner"]):
            assert client.get(url, headers=auth_headers(user)).status_code == 200
        for user in (other, people["owner2"], people["reviewer"]):
            res = client.get(url, headers=auth_headers(user))
            assert res.status_code == 403
            assert "description" not in res.get_json()
