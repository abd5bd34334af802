"""
Form template creation and distribution tests.

Tests cover:
  - Template creation via API (validation, field normalisation)
  - Initial distribution to users and labs
  - Inter-lab distribution permission
  - Owner-only redistribution
  - Template read access
  - Response listing and reminders
"""

import pytest

from refportal.models.audit import AuditLog
from refportal.models.notification import EmailLog, Notification
from refportal.models.workflow import FormAssignment
from refportal.services import form_template_service
from refportal.services import form_workflow_service as workflow
from refportal.services.jwt_service import generate_access_token

BASE = "/api/v1/forms/templates"


def auth_headers(user):
    return {"Authorization": f"Bearer {generate_access_token(user.id)}"}


def _payload(**overrides):
    body = {
        "title": "Equipment Inventory 2025",
        "description": "List all equipment above the capitalisation limit",
        "fields": [
            {"id": "f1", "type": "text", "label": "Item"},
            {"id": "f2", "type": "SELECT", "label": "Condition"},
        ],
        "deadline": "2030-12-31",
        "filling_instructions": "Fill one row per item",
    }
    body.update(overrides)
    return body


# ═════════════════════════════════════════════════════════════════════════
# CREATE
# ═════════════════════════════════════════════════════════════════════════


class TestCreateTemplate:
    def test_create_and_distribute_to_users(self, client, distributor, director, scientist):
        res = client.post(
            BASE,
            json=_payload(shared_with_users=[director.id, scientist.id]),
            headers=auth_headers(distributor),
        )
        assert res.status_code == 201
        body = res.get_json()
        assert body["template"]["title"] == "Equipment Inventory 2025"
        assert body["template"]["created_by"] == distributor.id
        assert body["template"]["deadline"].startswith("2030-12-31")
        assert len(body["distribution"]["created"]) == 2

        roots = FormAssignment.query.order_by(FormAssignment.id).all()
        assert [r.assigned_to for r in roots] == sorted([director.id, scientist.id])
        assert all(r.origin == "distribution" for r in roots)
        assert all(r.instructions == "Fill one row per item" for r in roots)

    def test_fields_normalised(self, client, distributor):
        res = client.post(BASE, json=_payload(), headers=auth_headers(distributor))
        fields = res.get_json()["template"]["fields"]
        assert fields[1]["type"] == "select"
        assert [o["value"] for o in fields[1]["options"]] == ["option_1", "option_2"]
        assert "options" not in fields[0]

    def test_invalid_field_type(self, client, distributor):
        res = client.post(
            BASE,
            json=_payload(fields=[{"id": "f1", "type": "hologram", "label": "X"}]),
            headers=auth_headers(distributor),
        )
        assert res.status_code == 400
        assert "hologram" in res.get_json()["error"]

    @pytest.mark.parametrize("overrides", [{"title": ""}, {"fields": []}, {"fields": "text"}])
    def test_title_and_fields_required(self, client, distributor, overrides):
        res = client.post(BASE, json=_payload(**overrides), headers=auth_headers(distributor))
        assert res.status_code == 400

    def test_bad_deadline(self, client, distributor):
        res = client.post(BASE, json=_payload(deadline="next tuesday"), headers=auth_headers(distributor))
        assert res.status_code == 400

    def test_create_audited_and_announced(self, client, distributor, director):
        client.post(BASE, json=_payload(shared_with_users=[director.id]), headers=auth_headers(distributor))

        assert AuditLog.query.filter_by(action="FORM_TEMPLATE_CREATE").count() == 1
        notif = Notification.query.filter_by(recipient_id=director.id).one()
        assert notif.type == "FORM_SHARED"
        email = EmailLog.query.filter_by(recipient_email=director.email).one()
        assert email.template_name == "form_shared"
        assert email.status == "sent"
        assert "Equipment Inventory 2025" in email.subject


# ═════════════════════════════════════════════════════════════════════════
# LAB SCOPE
# ═════════════════════════════════════════════════════════════════════════


class TestLabDistribution:
    def test_admin_distributes_to_other_lab(self, client, distributor, director, scientist, assistant):
        res = client.post(
            BASE, json=_payload(shared_with_labs=["Physics Lab"]), headers=auth_headers(distributor),
        )
        assert res.status_code == 201
        holders = {r.assigned_to for r in FormAssignment.query.all()}
        assert holders == {director.id, scientist.id, assistant.id}

    def test_non_admin_cannot_share_across_labs(self, client, director):
        res = client.post(
            BASE, json=_payload(shared_with_labs=["Chemistry Lab"]), headers=auth_headers(director),
        )
        assert res.status_code == 403
        assert FormAssignment.query.count() == 0

    def test_own_lab_skips_distributor(self, client, director, scientist):
        res = client.post(
            BASE, json=_payload(shared_with_labs=["Physics Lab"]), headers=auth_headers(director),
        )
        assert res.status_code == 201
        assert director.id in res.get_json()["distribution"]["skipped"]
        holders = {r.assigned_to for r in FormAssignment.query.all()}
        assert holders == {scientist.id}


# ═════════════════════════════════════════════════════════════════════════
# REDISTRIBUTE / READ
# ═════════════════════════════════════════════════════════════════════════


class TestRedistribute:
    def test_owner_adds_recipients(self, client, template, distributor, director, scientist):
        res = client.post(
            f"{BASE}/{template.id}/distribute",
            json={"user_ids": [director.id]},
            headers=auth_headers(distributor),
        )
        assert res.status_code == 201
        res = client.post(
            f"{BASE}/{template.id}/distribute",
            json={"user_ids": [director.id, scientist.id]},
            headers=auth_headers(distributor),
        )
        body = res.get_json()
        assert len(body["created"]) == 1
        assert body["skipped"] == [director.id]

    def test_unknown_user_skipped(self, client, template, distributor):
        res = client.post(
            f"{BASE}/{template.id}/distribute", json={"user_ids": [8888]}, headers=auth_headers(distributor),
        )
        assert res.status_code == 201
        assert res.get_json() == {"created": [], "skipped": [8888]}

    def test_non_owner_forbidden(self, client, template, director, scientist):
        res = client.post(
            f"{BASE}/{template.id}/distribute", json={"user_ids": [scientist.id]}, headers=auth_headers(director),
        )
        assert res.status_code == 403

    def test_empty_distribution_rejected(self, client, template, distributor):
        res = client.post(f"{BASE}/{template.id}/distribute", json={}, headers=auth_headers(distributor))
        assert res.status_code == 400

    def test_unknown_template(self, client, distributor):
        res = client.post(f"{BASE}/5555/distribute", json={"user_ids": [1]}, headers=auth_headers(distributor))
        assert res.status_code == 404


class TestReadTemplate:
    def test_owner_can_read(self, client, template, distributor):
        res = client.get(f"{BASE}/{template.id}", headers=auth_headers(distributor))
        assert res.status_code == 200
        assert res.get_json()["id"] == template.id

    def test_recipient_can_read(self, client, template, distributor, director):
        client.post(
            f"{BASE}/{template.id}/distribute", json={"user_ids": [director.id]}, headers=auth_headers(distributor),
        )
        res = client.get(f"{BASE}/{template.id}", headers=auth_headers(director))
        assert res.status_code == 200

    def test_stranger_cannot_read(self, client, template, scientist):
        res = client.get(f"{BASE}/{template.id}", headers=auth_headers(scientist))
        assert res.status_code == 403


# ═════════════════════════════════════════════════════════════════════════
# RESPONSES / REMINDERS
# ═════════════════════════════════════════════════════════════════════════


@pytest.fixture()
def single_step(distributor, director, scientist, make_template):
    """Single-step form sent to director and scientist; director has submitted."""
    tpl = make_template(distributor, title="Lab Safety Census", allow_delegation=False)
    form_template_service.distribute(tpl.id, distributor, user_ids=[director.id, scientist.id])
    _, assignment = workflow.save_draft(director, tpl.id, {"f1": "All clear"})
    workflow.submit_to_distributor(director, assignment.id)
    return tpl


class TestResponses:
    def test_owner_sees_every_response(self, client, single_step, distributor, director, scientist):
        workflow.save_draft(scientist, single_step.id, {"f1": "Pending check"})

        res = client.get(f"{BASE}/{single_step.id}/responses", headers=auth_headers(distributor))
        assert res.status_code == 200
        body = res.get_json()
        assert body["total"] == 2
        assert [r["submitted_by"] for r in body["items"]] == [scientist.id, director.id]
        assert body["items"][1]["status"] == "Submitted"
        assert body["items"][1]["submitter"]["id"] == director.id
        assert "movement_history" not in body["items"][0]

    def test_recipient_sees_only_own(self, client, single_step, director, scientist):
        workflow.save_draft(scientist, single_step.id, {"f1": "Pending check"})

        res = client.get(f"{BASE}/{single_step.id}/responses", headers=auth_headers(scientist))
        items = res.get_json()["items"]
        assert [r["submitted_by"] for r in items] == [scientist.id]

    def test_inter_lab_distributor_sees_foreign_form(self, client, director, scientist, distributor, make_template):
        tpl = make_template(director, allow_delegation=False, shared_with_users=[scientist.id])
        workflow.save_draft(scientist, tpl.id, {"f1": "x"})

        res = client.get(f"{BASE}/{tpl.id}/responses", headers=auth_headers(distributor))
        assert res.get_json()["total"] == 1

    def test_unknown_template(self, client, distributor):
        res = client.get(f"{BASE}/5555/responses", headers=auth_headers(distributor))
        assert res.status_code == 404


class TestReminders:
    def test_only_pending_recipients_reminded(self, client, single_step, distributor, director, scientist):
        res = client.post(f"{BASE}/{single_step.id}/reminders", json={}, headers=auth_headers(distributor))
        assert res.status_code == 200
        body = res.get_json()
        assert body == {"reminded": [scientist.id], "message": "Reminders sent to 1 users"}

        notif = Notification.query.filter_by(type="FORM_REMINDER").one()
        assert notif.recipient_id == scientist.id
        assert notif.title == "Form Submission Reminder"
        assert notif.message == 'Reminder: Please submit the form "Lab Safety Census" shared by Dana Distributor.'
        email = EmailLog.query.filter_by(template_name="form_reminder").one()
        assert email.recipient_email == scientist.email
        assert email.subject == 'Reminder: Action Required for "Lab Safety Census"'
        assert AuditLog.query.filter_by(action="FORM_REMINDER").count() == 1

    def test_explicit_targets_skip_submitted(self, client, single_step, distributor, director, scientist):
        res = client.post(
            f"{BASE}/{single_step.id}/reminders",
            json={"user_ids": [director.id, scientist.id, 8888]},
            headers=auth_headers(distributor),
        )
        assert res.get_json()["reminded"] == [scientist.id]

    def test_empty_target_list_rejected(self, client, single_step, distributor):
        res = client.post(
            f"{BASE}/{single_step.id}/reminders", json={"user_ids": []}, headers=auth_headers(distributor),
        )
        assert res.status_code == 400

    def test_recipient_cannot_send(self, client, single_step, scientist):
        res = client.post(f"{BASE}/{single_step.id}/reminders", json={}, headers=auth_headers(scientist))
        assert res.status_code == 403
        assert Notification.query.filter_by(type="FORM_REMINDER").count() == 0
