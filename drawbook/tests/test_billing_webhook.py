"""
Payment webhook processing: credit packs, book orders, and replay safety.
"""
from unittest.mock import Mock, patch

import pytest
from sqlalchemy import select

from drawbook.core.database import get_db_session, payment_events
from drawbook.core.errors import WebhookSignatureError
from drawbook.features.billing.provider import PaymentWebhookEvent
from drawbook.features.billing.service import process_webhook_event
from drawbook.features.credits.service import get_balance
from drawbook.features.orders.service import create_pending_order, get_order
from drawbook.models.order import BookCheckoutRequest, OrderStatus, OrderType


@pytest.fixture
def mock_webhook_provider():
    """Mock provider whose parse_webhook returns whatever the test sets."""
    with patch("drawbook.features.billing.service.get_provider") as mock_get:
        mock_provider = Mock()
        mock_get.return_value = mock_provider
        yield mock_provider


def _credit_event(event_id="evt_1", payment_intent="pi_1", pack_name="starter", **overrides):
    values = dict(
        event_id=event_id,
        event_type="checkout.session.completed",
        session_id="cs_credit_1",
        payment_intent=payment_intent,
        client_reference_id="user_alice",
        payment_status="paid",
        amount_total=1299,
        metadata={"user_id": "user_alice", "pack_name": pack_name, "credits": "3"},
    )
    values.update(overrides)
    return PaymentWebhookEvent(**values)


def _event_rows():
    with get_db_session() as session:
        return session.execute(select(payment_events)).all()


def test_credit_pack_purchase_adds_credits(db, mock_webhook_provider):
    mock_webhook_provider.parse_webhook.return_value = _credit_event()

    process_webhook_event({"stripe-signature": "sig"}, b"{}")

    assert get_balance("user_alice").paid_credits == 3
    rows = _event_rows()
    assert len(rows) == 1
    assert rows[0].processed is True
    assert rows[0].payload_hash


def test_duplicate_event_is_not_reprocessed(db, mock_webhook_provider):
    mock_webhook_provider.parse_webhook.return_value = _credit_event()

    process_webhook_event({"stripe-signature": "sig"}, b"{}")
    process_webhook_event({"stripe-signature": "sig"}, b"{}")

    assert get_balance("user_alice").paid_credits == 3
    assert len(_event_rows()) == 1


def test_same_payment_under_new_event_id_is_credited_once(db, mock_webhook_provider):
    mock_webhook_provider.parse_webhook.return_value = _credit_event(event_id="evt_a")
    process_webhook_event({}, b"{}")
    mock_webhook_provider.parse_webhook.return_value = _credit_event(event_id="evt_b")
    process_webhook_event({}, b"{}")

    assert get_balance("user_alice").paid_credits == 3
    assert len(_event_rows()) == 2


def test_payment_reference_falls_back_to_session_id(db, mock_webhook_provider):
    mock_webhook_provider.parse_webhook.return_value = _credit_event(payment_intent=None)

    process_webhook_event({}, b"{}")

    from drawbook.features.credits.service import list_transactions
    assert list_transactions("user_alice")[0].payment_reference == "cs_credit_1"


def test_unpaid_session_is_recorded_but_not_credited(db, mock_webhook_provider):
    mock_webhook_provider.parse_webhook.return_value = _credit_event(payment_status="unpaid")

    process_webhook_event({}, b"{}")

    assert get_balance("user_alice").paid_credits == 0
    assert _event_rows()[0].processed is True


def test_failed_event_records_error_and_is_retried(db, mock_webhook_provider):
    mock_webhook_provider.parse_webhook.return_value = _credit_event(pack_name="mega")

    with pytest.raises(Exception):
        process_webhook_event({}, b"{}")
    row = _event_rows()[0]
    assert row.processed is False
    assert "Invalid pack name" in row.error

    mock_webhook_provider.parse_webhook.return_value = _credit_event(pack_name="starter")
    process_webhook_event({}, b"{}")

    row = _event_rows()[0]
    assert row.processed is True
    assert row.error is None
    assert get_balance("user_alice").paid_credits == 3


def test_invalid_signature_is_rejected(db, mock_webhook_provider):
    mock_webhook_provider.parse_webhook.side_effect = WebhookSignatureError("Invalid signature")

    with pytest.raises(WebhookSignatureError):
        process_webhook_event({"stripe-signature": "bad"}, b"{}")
    assert _event_rows() == []


def test_billing_disabled_rejects_webhooks(db):
    with patch("drawbook.features.billing.service.get_provider", return_value=None):
        with pytest.raises(WebhookSignatureError):
            process_webhook_event({}, b"{}")


def test_book_checkout_completion_marks_order_paid(db, mock_webhook_provider):
    order = create_pending_order(
        BookCheckoutRequest(
            user_id="user_bob",
            creation_id="creation_1",
            product_type=OrderType.EBOOK,
            user_email="bob@example.com",
        ),
        stripe_session_id="cs_book_1",
        amount=1299,
    )
    mock_webhook_provider.parse_webhook.return_value = PaymentWebhookEvent(
        event_id="evt_book_1",
        event_type="checkout.session.completed",
        session_id="cs_book_1",
        payment_intent="pi_book_1",
        client_reference_id="user_bob",
        payment_status="paid",
        amount_total=1299,
        metadata={"order_source": "book_checkout", "product_type": "ebook", "user_id": "user_bob"},
    )

    process_webhook_event({}, b"{}")

    paid = get_order("user_bob", order.id)
    assert paid.status == OrderStatus.PAYMENT_RECEIVED
    assert paid.payment_reference == "pi_book_1"
    assert paid.amount_paid == 1299
    # A book purchase never touches the credit ledger
    assert get_balance("user_bob").paid_credits == 0
