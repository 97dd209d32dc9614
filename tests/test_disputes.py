from datetime import timedelta
from decimal import Decimal

import pytest

from trustdesk.models.dispute import (
    DisputePriority,
    DisputeStatus,
    EvidenceType,
    NoteKind,
    ResolutionOutcome,
    ThreadRole,
    VerificationStatus,
)
from trustdesk.schemas.dispute import DisputeResolutionCreate, EvidenceCreate
from trustdesk.services import disputes as dispute_service
from trustdesk.utils.errors import InvalidStateError, NotFoundError, PermissionDeniedError, ValidationError
from trustdesk.utils.ids import new_object_id
from trustdesk.utils.time import ensure_utc, utcnow


def _open(db_session, dispute_payload, *, initiator_id=None, respondent_id=None, **overrides):
    initiator_id = initiator_id or new_object_id()
    respondent_id = respondent_id or new_object_id()
    return dispute_service.open_dispute(
        db_session, dispute_payload(respondent_id, **overrides), initiator_id=initiator_id
    )


def test_open_dispute_fixes_deadlines(db_session, dispute_payload):
    dispute = _open(db_session, dispute_payload)

    assert dispute.status == DisputeStatus.OPENED
    assert dispute.priority == DisputePriority.MEDIUM
    assert dispute.respondent_role.value == "freelancer"
    assert dispute.response_deadline - dispute.created_at == timedelta(days=5)
    assert dispute.escalation_deadline - dispute.created_at == timedelta(days=14)
    assert dispute.next_action_date == dispute.response_deadline
    assert dispute.amount_disputed == Decimal("150.00")
    assert dispute.thread == []

    response_deadline = dispute.response_deadline
    escalation_deadline = dispute.escalation_deadline
    dispute_service.update_dispute_status(db_session, dispute.id, DisputeStatus.UNDER_REVIEW)
    updated = dispute_service.get_dispute(db_session, dispute.id)
    assert updated.response_deadline == response_deadline
    assert updated.escalation_deadline == escalation_deadline


def test_open_dispute_validation(db_session, dispute_payload):
    user_id = new_object_id()
    with pytest.raises(ValidationError):
        dispute_service.open_dispute(db_session, dispute_payload(user_id), initiator_id=user_id)
    with pytest.raises(ValidationError):
        dispute_service.open_dispute(db_session, dispute_payload("bad-id"), initiator_id=new_object_id())
    with pytest.raises(ValidationError):
        _open(db_session, dispute_payload, job_id="nope")


def test_next_action_follows_status(db_session, dispute_payload):
    dispute = _open(db_session, dispute_payload)

    before = utcnow()
    dispute = dispute_service.update_dispute_status(db_session, dispute.id, "under_review")
    after = utcnow()
    assert before + timedelta(hours=48) <= ensure_utc(dispute.next_action_date) <= after + timedelta(hours=48)

    dispute = dispute_service.update_dispute_status(db_session, dispute.id, DisputeStatus.EVIDENCE_NEEDED)
    assert ensure_utc(dispute.next_action_date) >= before + timedelta(hours=72)

    before = utcnow()
    dispute = dispute_service.update_dispute_status(db_session, dispute.id, DisputeStatus.MEDIATION)
    after = utcnow()
    assert before + timedelta(days=7) <= ensure_utc(dispute.next_action_date) <= after + timedelta(days=7)
    assert dispute.mediation_started_at is not None

    resolved = dispute_service.resolve_dispute(
        db_session, dispute.id, {"outcome": "resolved_mutually"}, new_object_id()
    )
    assert resolved.next_action_date is None
    assert resolved.mediation_ended_at is not None


def test_invalid_status_transitions(db_session, dispute_payload):
    dispute = _open(db_session, dispute_payload)

    with pytest.raises(InvalidStateError) as exc:
        dispute_service.update_dispute_status(db_session, dispute.id, DisputeStatus.MEDIATION)
    assert exc.value.details["status"] == "opened"

    with pytest.raises(ValidationError):
        dispute_service.update_dispute_status(db_session, dispute.id, DisputeStatus.RESOLVED)
    with pytest.raises(ValidationError):
        dispute_service.update_dispute_status(db_session, dispute.id, "closed")

    assert dispute_service.get_dispute(db_session, dispute.id).status == DisputeStatus.OPENED


def test_negotiation_and_resolution(db_session, dispute_payload):
    client_id = new_object_id()
    freelancer_id = new_object_id()
    admin_id = new_object_id()
    dispute = _open(db_session, dispute_payload, initiator_id=client_id, respondent_id=freelancer_id)

    dispute_service.add_message(db_session, dispute.id, client_id, "client", "Where is the delivery?")
    dispute_service.add_message(db_session, dispute.id, freelancer_id, ThreadRole.FREELANCER, "Half is done.")
    message = dispute_service.add_message(
        db_session, dispute.id, client_id, "client", "Then refund half.", ["https://files.test/invoice.pdf"]
    )
    assert message.attachments == ["https://files.test/invoice.pdf"]

    resolved = dispute_service.resolve_dispute(
        db_session, dispute.id, {"outcome": "partial_refund", "amount": 50}, admin_id
    )

    assert resolved.status == DisputeStatus.RESOLVED
    assert [entry.role for entry in resolved.thread] == [ThreadRole.CLIENT, ThreadRole.FREELANCER, ThreadRole.CLIENT]
    assert resolved.resolution_outcome == ResolutionOutcome.PARTIAL_REFUND
    assert resolved.resolution_amount == Decimal("50")
    assert resolved.resolution_currency == "USD"
    assert resolved.resolved_by == admin_id
    assert resolved.resolution_resolved_at is not None
    assert resolved.resolved_at is not None
    assert resolved.resolution["accepted_by_initiator"] is None


def test_resolve_rejects_bad_payload(db_session, dispute_payload):
    dispute = _open(db_session, dispute_payload)
    with pytest.raises(ValidationError):
        dispute_service.resolve_dispute(db_session, dispute.id, {"outcome": "nobody_wins"}, new_object_id())
    assert dispute_service.get_dispute(db_session, dispute.id).status == DisputeStatus.OPENED


def test_closed_dispute_accepts_only_resolution_responses(db_session, dispute_payload):
    client_id = new_object_id()
    freelancer_id = new_object_id()
    dispute = _open(db_session, dispute_payload, initiator_id=client_id, respondent_id=freelancer_id)
    dispute_service.resolve_dispute(
        db_session,
        dispute.id,
        DisputeResolutionCreate(outcome=ResolutionOutcome.IN_FAVOR_OF_CLIENT),
        new_object_id(),
    )

    with pytest.raises(InvalidStateError):
        dispute_service.add_message(db_session, dispute.id, client_id, "client", "One more thing")
    with pytest.raises(InvalidStateError):
        dispute_service.add_evidence(
            db_session, dispute.id, EvidenceCreate(type=EvidenceType.SCREENSHOT), uploaded_by=client_id
        )
    with pytest.raises(InvalidStateError):
        dispute_service.escalate_dispute(db_session, dispute.id, "not happy", actor=freelancer_id)
    with pytest.raises(InvalidStateError):
        dispute_service.cancel_dispute(db_session, dispute.id, client_id, "changed my mind")
    with pytest.raises(InvalidStateError):
        dispute_service.resolve_dispute(db_session, dispute.id, {"outcome": "other"}, new_object_id())
    with pytest.raises(InvalidStateError):
        dispute_service.assign_dispute(db_session, dispute.id, new_object_id())

    closed = dispute_service.get_dispute(db_session, dispute.id)
    assert closed.status == DisputeStatus.RESOLVED
    assert closed.thread == []
    assert closed.evidence == []

    dispute_service.respond_to_resolution(db_session, dispute.id, client_id, True)
    answered = dispute_service.respond_to_resolution(db_session, dispute.id, freelancer_id, False)
    assert answered.accepted_by_initiator is True
    assert answered.accepted_by_respondent is False
    assert answered.resolution["accepted_by_respondent"]["accepted"] is False

    with pytest.raises(PermissionDeniedError):
        dispute_service.respond_to_resolution(db_session, dispute.id, new_object_id(), True)


def test_resolution_response_requires_resolution(db_session, dispute_payload):
    initiator_id = new_object_id()
    dispute = _open(db_session, dispute_payload, initiator_id=initiator_id)
    with pytest.raises(InvalidStateError):
        dispute_service.respond_to_resolution(db_session, dispute.id, initiator_id, True)


def test_evidence_and_verification(db_session, dispute_payload):
    initiator_id = new_object_id()
    dispute = _open(db_session, dispute_payload, initiator_id=initiator_id)

    evidence = dispute_service.add_evidence(
        db_session,
        dispute.id,
        EvidenceCreate(type=EvidenceType.CONTRACT, title="Signed SOW", url="https://files.test/sow.pdf"),
        uploaded_by=initiator_id,
    )
    assert evidence.verification_status == VerificationStatus.PENDING
    assert evidence.uploaded_by == initiator_id

    verified = dispute_service.verify_evidence(
        db_session, dispute.id, evidence.id, "verified", admin_id=new_object_id()
    )
    assert verified.verification_status == VerificationStatus.VERIFIED

    with pytest.raises(NotFoundError):
        dispute_service.verify_evidence(db_session, dispute.id, new_object_id(), "rejected", admin_id=new_object_id())
    with pytest.raises(ValidationError):
        dispute_service.verify_evidence(db_session, dispute.id, evidence.id, "maybe", admin_id=new_object_id())


def test_assign_and_admin_notes(db_session, dispute_payload):
    admin_id = new_object_id()
    dispute = _open(db_session, dispute_payload)

    assigned = dispute_service.assign_dispute(db_session, dispute.id, admin_id, priority="urgent")
    assert assigned.assigned_to == admin_id
    assert assigned.assigned_at is not None
    assert assigned.admin_priority == DisputePriority.URGENT
    assert assigned.priority == DisputePriority.MEDIUM

    note = dispute_service.add_admin_note(db_session, dispute.id, admin_id, "Asked both sides for files")
    assert note.kind == NoteKind.ADMIN
    assert [n.content for n in dispute_service.get_dispute(db_session, dispute.id).admin_notes] == [
        "Asked both sides for files"
    ]
    with pytest.raises(ValidationError):
        dispute_service.add_admin_note(db_session, dispute.id, admin_id, "   ")


def test_escalate_and_cancel(db_session, dispute_payload):
    initiator_id = new_object_id()
    dispute = _open(db_session, dispute_payload, initiator_id=initiator_id)

    escalated = dispute_service.escalate_dispute(db_session, dispute.id, "No response", actor=initiator_id)
    assert escalated.status == DisputeStatus.ESCALATED
    assert escalated.mediation_required is True
    assert escalated.next_action_date is None
    assert [n.content for n in escalated.system_notes] == ["Dispute escalated: No response"]

    with pytest.raises(InvalidStateError):
        dispute_service.escalate_dispute(db_session, dispute.id, "again", actor=initiator_id)

    back = dispute_service.update_dispute_status(db_session, dispute.id, DisputeStatus.UNDER_REVIEW)
    assert back.status == DisputeStatus.UNDER_REVIEW

    cancelled = dispute_service.cancel_dispute(db_session, dispute.id, initiator_id, "Settled privately")
    assert cancelled.status == DisputeStatus.CANCELLED
    assert cancelled.next_action_date is None
    assert cancelled.system_notes[-1].content == "Dispute cancelled: Settled privately"
    assert cancelled.system_notes[-1].author_id == initiator_id


def test_disputes_requiring_attention_order(db_session, dispute_payload):
    low = _open(db_session, dispute_payload, priority=DisputePriority.LOW)
    urgent = _open(db_session, dispute_payload, priority=DisputePriority.URGENT)
    medium = _open(db_session, dispute_payload, priority=DisputePriority.MEDIUM)
    closed = _open(db_session, dispute_payload, priority=DisputePriority.URGENT)
    dispute_service.cancel_dispute(db_session, closed.id, closed.initiator_user_id, "duplicate")

    assert dispute_service.get_disputes_requiring_attention(db_session, now=utcnow()) == []

    later = utcnow() + timedelta(days=6)
    ordered = dispute_service.get_disputes_requiring_attention(db_session, now=later)
    assert [d.id for d in ordered] == [urgent.id, medium.id, low.id]

    dispute_service.assign_dispute(db_session, low.id, new_object_id(), priority=DisputePriority.HIGH)
    ordered = dispute_service.get_disputes_requiring_attention(db_session, now=later)
    assert [d.id for d in ordered] == [urgent.id, low.id, medium.id]


def test_overdue_disputes_are_escalated(db_session, dispute_payload):
    overdue = _open(db_session, dispute_payload)
    resolved = _open(db_session, dispute_payload)
    dispute_service.resolve_dispute(db_session, resolved.id, {"outcome": "other"}, new_object_id())

    assert dispute_service.escalate_overdue_disputes(db_session, now=utcnow() + timedelta(days=13)) == 0
    assert dispute_service.escalate_overdue_disputes(db_session, now=utcnow() + timedelta(days=15)) == 1

    escalated = dispute_service.get_dispute(db_session, overdue.id)
    assert escalated.status == DisputeStatus.ESCALATED
    assert escalated.system_notes[-1].content == (
        f"Dispute escalated: {dispute_service.OVERDUE_ESCALATION_REASON}"
    )
    assert escalated.system_notes[-1].author_id is None
    assert dispute_service.get_dispute(db_session, resolved.id).status == DisputeStatus.RESOLVED

    assert dispute_service.escalate_overdue_disputes(db_session, now=utcnow() + timedelta(days=15)) == 0


def test_user_disputes_and_stats(db_session, dispute_payload):
    user_id = new_object_id()
    first = _open(db_session, dispute_payload, initiator_id=user_id, amount="100.00")
    _open(db_session, dispute_payload, respondent_id=user_id, amount="20.00")
    _open(db_session, dispute_payload, initiator_id=user_id, amount=None)
    _open(db_session, dispute_payload)
    dispute_service.cancel_dispute(db_session, first.id, user_id, "withdrawn")

    assert len(dispute_service.get_user_disputes(db_session, user_id)) == 3
    assert len(dispute_service.get_user_disputes(db_session, user_id, page=1, limit=2)) == 2
    assert len(dispute_service.get_user_disputes(db_session, user_id, page=2, limit=2)) == 1
    cancelled = dispute_service.get_user_disputes(db_session, user_id, status=DisputeStatus.CANCELLED)
    assert [d.id for d in cancelled] == [first.id]
    with pytest.raises(ValidationError):
        dispute_service.get_user_disputes(db_session, user_id, limit=0)

    stats = dispute_service.get_dispute_stats(db_session, user_id=user_id)
    assert [(row["status"], row["count"]) for row in stats] == [
        (DisputeStatus.OPENED, 2),
        (DisputeStatus.CANCELLED, 1),
    ]
    assert stats[0]["total_amount"] == Decimal("20.00")
    assert stats[1]["total_amount"] == Decimal("100.00")


@pytest.mark.anyio("asyncio")
async def test_dispute_api_flow(client, make_caller, admin_caller, support_caller):
    client_id, client_headers = make_caller()
    freelancer_id, freelancer_headers = make_caller()
    _, outsider_headers = make_caller()
    admin_id, admin_headers = admin_caller
    _, support_headers = support_caller

    response = await client.post(
        "/disputes",
        json={
            "respondent_id": freelancer_id,
            "initiator_role": "client",
            "type": "quality",
            "amount_disputed": "75.00",
            "title": "Logo does not match brief",
            "description": "Colours and typeface differ from the agreed brief.",
            "desired_outcome": "Revision or partial refund",
        },
        headers=client_headers,
    )
    assert response.status_code == 201
    dispute = response.json()
    dispute_id = dispute["id"]
    assert dispute["initiator"] == {"user_id": client_id, "role": "client"}
    assert dispute["respondent"] == {"user_id": freelancer_id, "role": "freelancer"}

    response = await client.get(f"/disputes/{dispute_id}", headers=outsider_headers)
    assert response.status_code == 403

    response = await client.post(
        f"/disputes/{dispute_id}/messages", json={"message": "I will revise it."}, headers=freelancer_headers
    )
    assert response.status_code == 201
    assert response.json()["role"] == "freelancer"

    response = await client.post(
        f"/disputes/{dispute_id}/messages",
        json={"message": "internal", "visibility": "admin_only"},
        headers=client_headers,
    )
    assert response.status_code == 403

    response = await client.post(
        f"/disputes/{dispute_id}/messages",
        json={"message": "Reviewing the brief", "visibility": "admin_only"},
        headers=admin_headers,
    )
    assert response.status_code == 201
    assert response.json()["role"] == "admin"

    response = await client.post(
        f"/disputes/{dispute_id}/notes", json={"content": "Brief attached to job"}, headers=admin_headers
    )
    assert response.status_code == 201

    party_view = (await client.get(f"/disputes/{dispute_id}", headers=client_headers)).json()
    assert [entry["message"] for entry in party_view["thread"]] == ["I will revise it."]
    assert party_view["admin_notes"] == []

    staff_view = (await client.get(f"/disputes/{dispute_id}", headers=support_headers)).json()
    assert len(staff_view["thread"]) == 2
    assert len(staff_view["admin_notes"]) == 1

    response = await client.post(
        f"/disputes/{dispute_id}/status", json={"status": "under_review"}, headers=client_headers
    )
    assert response.status_code == 403

    response = await client.post(
        f"/disputes/{dispute_id}/status", json={"status": "under_review"}, headers=admin_headers
    )
    assert response.status_code == 200
    assert response.json()["status"] == "under_review"

    response = await client.post(
        f"/disputes/{dispute_id}/status", json={"status": "opened"}, headers=admin_headers
    )
    assert response.status_code == 400

    response = await client.post(
        f"/disputes/{dispute_id}/cancel", json={"reason": "not mine"}, headers=freelancer_headers
    )
    assert response.status_code == 403

    response = await client.post(
        f"/disputes/{dispute_id}/resolve",
        json={"outcome": "partial_refund", "amount": "30.00", "description": "Refund a third"},
        headers=admin_headers,
    )
    assert response.status_code == 200
    resolution = response.json()["resolution"]
    assert resolution["outcome"] == "partial_refund"
    assert resolution["resolved_by"] == admin_id
    assert Decimal(resolution["amount"]) == Decimal("30.00")

    response = await client.post(
        f"/disputes/{dispute_id}/messages", json={"message": "too late"}, headers=client_headers
    )
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "INVALID_STATE"

    response = await client.post(
        f"/disputes/{dispute_id}/resolution-response", json={"accepted": True}, headers=client_headers
    )
    assert response.status_code == 200
    assert response.json()["resolution"]["accepted_by_initiator"]["accepted"] is True

    response = await client.get("/disputes", headers=freelancer_headers)
    assert response.status_code == 200
    page = response.json()
    assert [item["id"] for item in page["items"]] == [dispute_id]
    assert page["page"] == 1


@pytest.mark.anyio("asyncio")
async def test_dispute_staff_endpoints(client, db_session, dispute_payload, make_caller, support_caller):
    _, user_headers = make_caller()
    _, support_headers = support_caller
    _open(db_session, dispute_payload, priority=DisputePriority.HIGH)

    response = await client.get("/disputes/attention", headers=user_headers)
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "INSUFFICIENT_SCOPE"

    response = await client.get("/disputes/attention", headers=support_headers)
    assert response.status_code == 200
    assert response.json() == []

    response = await client.get("/disputes/stats", headers=support_headers)
    assert response.status_code == 200
    assert [(row["status"], row["count"]) for row in response.json()] == [("opened", 1)]
