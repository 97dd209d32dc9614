from decimal import Decimal

import pytest

from trustdesk.models.transaction import TransactionStatus, TransactionType
from trustdesk.schemas.transaction import (
    FeeComponents,
    MoneyAmount,
    RecipientParty,
    SenderParty,
    TransactionCreate,
)
from trustdesk.services import transactions as transactions_service
from trustdesk.utils.errors import NotFoundError, ValidationError
from trustdesk.utils.ids import new_object_id


def _payload(sender_id=None, recipient_id=None, **overrides) -> TransactionCreate:
    data = {
        "sender": SenderParty(user_id=sender_id or new_object_id(), type="client"),
        "recipient": RecipientParty(user_id=recipient_id or new_object_id(), type="freelancer"),
        "type": TransactionType.PAYMENT,
        "sub_type": "milestone_payment",
        "description": "Milestone 1 payment",
        "amount": MoneyAmount(value=Decimal("100.00")),
        "fees": FeeComponents(platform=Decimal("5.00"), processing=Decimal("3.20")),
        "payment_method": "credit_card",
    }
    data.update(overrides)
    return TransactionCreate(**data)


def test_generate_transaction_id_format():
    first = transactions_service.generate_transaction_id()
    assert first.startswith("TXN")
    assert first[3:].isdigit()
    assert transactions_service.compute_total(Decimal("10"), Decimal("1"), None) == Decimal("11")


def test_create_transaction_starts_pending(db_session):
    transaction = transactions_service.create_transaction(db_session, _payload())

    assert transaction.status == TransactionStatus.PENDING
    assert transaction.transaction_id.startswith("TXN")
    assert transaction.total_value == Decimal("108.20")
    assert transaction.fee_currency == "USD"
    assert [entry.status for entry in transaction.status_history] == [TransactionStatus.PENDING]
    assert transaction.completed_at is None


def test_create_completed_transaction_records_both_statuses(db_session):
    actor = new_object_id()
    transaction = transactions_service.create_transaction(
        db_session, _payload(status=TransactionStatus.COMPLETED), actor=actor
    )

    assert transaction.status == TransactionStatus.COMPLETED
    assert [entry.status for entry in transaction.status_history] == [
        TransactionStatus.PENDING,
        TransactionStatus.COMPLETED,
    ]
    assert {entry.updated_by for entry in transaction.status_history} == {actor}
    assert transaction.completed_at is not None


def test_total_must_match_amount_plus_fees(db_session):
    with pytest.raises(ValidationError):
        transactions_service.create_transaction(db_session, _payload(total=Decimal("100.00")))

    transaction = transactions_service.create_transaction(db_session, _payload(total=Decimal("108.20")))
    assert transaction.total_value == Decimal("108.20")


def test_create_rejects_malformed_links(db_session):
    with pytest.raises(ValidationError):
        transactions_service.create_transaction(db_session, _payload(escrow_id="escrow-1"))
    with pytest.raises(ValidationError):
        transactions_service.create_transaction(db_session, _payload(sender_id="sender"))


def test_get_transaction_by_pk_or_business_id(db_session):
    transaction = transactions_service.create_transaction(
        db_session, _payload(transaction_id="TXN-EXTERNAL-1")
    )

    assert transactions_service.get_transaction(db_session, transaction.id) is transaction
    assert transactions_service.get_transaction(db_session, "TXN-EXTERNAL-1") is transaction
    with pytest.raises(NotFoundError):
        transactions_service.get_transaction(db_session, "TXN-MISSING")


def test_update_status_appends_history(db_session):
    admin_id = new_object_id()
    transaction = transactions_service.create_transaction(db_session, _payload())

    updated = transactions_service.update_status(
        db_session, transaction.id, TransactionStatus.PROCESSING, reason="Sent to processor", updated_by=admin_id
    )
    updated = transactions_service.update_status(
        db_session, transaction.transaction_id, TransactionStatus.COMPLETED, updated_by=admin_id
    )

    assert updated.status == TransactionStatus.COMPLETED
    assert [(e.status, e.reason) for e in updated.status_history] == [
        (TransactionStatus.PENDING, "Transaction created"),
        (TransactionStatus.PROCESSING, "Sent to processor"),
        (TransactionStatus.COMPLETED, None),
    ]
    assert updated.status_history[-1].updated_by == admin_id
    assert updated.completed_at is not None


def test_processing_attempts(db_session):
    transaction = transactions_service.create_transaction(db_session, _payload())

    transactions_service.add_processing_attempt(db_session, transaction.id, "declined", error={"message": "Card declined"})
    updated = transactions_service.add_processing_attempt(db_session, transaction.id, "succeeded")

    assert [attempt.status for attempt in updated.attempts] == ["declined", "succeeded"]
    assert updated.attempts[0].error == {"message": "Card declined"}
    assert updated.failure_reason == "Card declined"
    assert updated.processor_status == "succeeded"


def test_user_transactions_and_stats(db_session):
    user_id = new_object_id()
    transactions_service.create_transaction(db_session, _payload(sender_id=user_id))
    transactions_service.create_transaction(
        db_session, _payload(recipient_id=user_id, status=TransactionStatus.COMPLETED)
    )
    transactions_service.create_transaction(
        db_session,
        _payload(sender_id=user_id, type=TransactionType.REFUND, amount=MoneyAmount(value=Decimal("40.00"))),
    )
    transactions_service.create_transaction(db_session, _payload())

    mine = transactions_service.get_user_transactions(db_session, user_id)
    assert len(mine) == 3
    assert all(user_id in {t.sender_user_id, t.recipient_user_id} for t in mine)
    completed = transactions_service.get_user_transactions(db_session, user_id, status=TransactionStatus.COMPLETED)
    assert len(completed) == 1
    refunds = transactions_service.get_user_transactions(db_session, user_id, type=TransactionType.REFUND)
    assert [t.amount_value for t in refunds] == [Decimal("40.00")]

    stats = transactions_service.get_transaction_stats(db_session, user_id=user_id)
    assert [row["type"] for row in stats] == [TransactionType.PAYMENT, TransactionType.REFUND]
    payments = stats[0]
    assert payments["total_count"] == 2
    assert payments["total_amount"] == Decimal("200.00")
    assert sorted((s["status"].value, s["count"]) for s in payments["statuses"]) == [
        ("completed", 1),
        ("pending", 1),
    ]
    assert stats[1]["total_amount"] == Decimal("40.00")


@pytest.mark.anyio("asyncio")
async def test_transactions_api(client, make_caller, admin_caller, support_caller):
    sender_id, sender_headers = make_caller()
    _, outsider_headers = make_caller()
    _, admin_headers = admin_caller
    _, support_headers = support_caller
    body = _payload(sender_id=sender_id).model_dump(mode="json")

    response = await client.post("/transactions", json=body, headers=sender_headers)
    assert response.status_code == 403

    response = await client.post("/transactions", json=body, headers=admin_headers)
    assert response.status_code == 201
    created = response.json()
    assert created["status"] == "pending"
    assert Decimal(created["total"]["value"]) == Decimal("108.20")
    business_id = created["transaction_id"]

    response = await client.get(f"/transactions/{business_id}", headers=sender_headers)
    assert response.status_code == 200
    assert response.json()["id"] == created["id"]

    response = await client.get(f"/transactions/{business_id}", headers=outsider_headers)
    assert response.status_code == 403

    response = await client.post(
        f"/transactions/{created['id']}/status",
        json={"status": "failed", "reason": "Insufficient funds"},
        headers=admin_headers,
    )
    assert response.status_code == 200
    assert [entry["status"] for entry in response.json()["status_history"]] == ["pending", "failed"]

    response = await client.post(
        f"/transactions/{created['id']}/attempts",
        json={"status": "declined", "error": {"message": "Insufficient funds"}},
        headers=admin_headers,
    )
    assert response.status_code == 200
    assert response.json()["failure_reason"] == "Insufficient funds"

    response = await client.get("/transactions", headers=sender_headers)
    assert [item["id"] for item in response.json()] == [created["id"]]

    response = await client.get("/transactions/stats", headers=sender_headers)
    assert response.status_code == 403
    response = await client.get("/transactions/stats", params={"user_id": sender_id}, headers=support_headers)
    assert response.status_code == 200
    assert [row["type"] for row in response.json()] == ["payment"]

    response = await client.get("/transactions/TXN-NOPE", headers=admin_headers)
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "TRANSACTION_NOT_FOUND"
