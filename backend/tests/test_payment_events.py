import copy
import itertools

import pytest

from storefront.repositories import orders as orders_repo
from storefront.schemas.order import OrderState
from storefront.schemas.paypal import PayPalEventType, WebhookEvent
from storefront.services.payment_events import HANDLERS

_ids = itertools.count(1)


def make_event(event_type, event_id=None, **resource):
    return WebhookEvent.model_validate({
        "id": event_id or f"WH-{next(_ids)}",
        "event_type": event_type,
        "resource": resource,
    })


def capture_completed(order_id, capture_id="CAP-1", event_id=None, value="100.00"):
    return make_event(
        "PAYMENT.CAPTURE.COMPLETED",
        event_id,
        id=capture_id,
        status="COMPLETED",
        custom_id=order_id,
        amount={"currency_code": "AUD", "value": value},
    )


def test_every_event_type_has_a_handler():
    assert set(HANDLERS) == set(PayPalEventType)


@pytest.mark.asyncio
async def test_capture_marks_order_paid_and_sends_one_confirmation(db, processor, provider, make_order):
    order_id = make_order()

    outcome = await processor.handle(capture_completed(order_id, event_id="WH-CAP"))

    order = orders_repo.get(db, order_id)
    assert outcome.status == "processed"
    assert order["state"] == "processing"
    assert order["payment_status"] == "paid"
    assert order["paypal_transaction_id"] == "CAP-1"
    assert order["paid_at"] is not None
    assert provider.templates() == ["payment_confirmation"]


@pytest.mark.asyncio
async def test_redelivered_capture_is_a_noop(db, processor, provider, make_order):
    order_id = make_order()
    event = capture_completed(order_id, event_id="WH-CAP")

    await processor.handle(event)
    paid_at = orders_repo.get(db, order_id)["paid_at"]
    again = await processor.handle(event)

    assert again.status == "duplicate"
    assert orders_repo.get(db, order_id)["paid_at"] == paid_at
    assert provider.templates() == ["payment_confirmation"]


@pytest.mark.asyncio
async def test_second_event_for_same_capture_sends_no_email(db, processor, provider, make_order):
    order_id = make_order()

    await processor.handle(capture_completed(order_id))
    outcome = await processor.handle(
        make_event(
            "CHECKOUT.ORDER.COMPLETED",
            id="PP-ORDER-1",
            purchase_units=[{"custom_id": order_id, "payments": {"captures": [{"id": "CAP-1", "status": "COMPLETED"}]}}],
        )
    )

    assert outcome.status == "ignored"
    assert outcome.detail == "already paid"
    assert provider.templates() == ["payment_confirmation"]


@pytest.mark.asyncio
async def test_checkout_order_completed_uses_capture_id(db, processor, make_order):
    order_id = make_order()
    await processor.handle(
        make_event(
            "CHECKOUT.ORDER.COMPLETED",
            id="PP-ORDER-9",
            purchase_units=[{"custom_id": order_id, "payments": {"captures": [{"id": "CAP-77"}]}}],
        )
    )
    assert orders_repo.get(db, order_id)["paypal_transaction_id"] == "CAP-77"


@pytest.mark.asyncio
async def test_order_completed_without_capture_waits_for_the_capture(db, processor, provider, make_order):
    order_id = make_order()

    outcome = await processor.handle(
        make_event("CHECKOUT.ORDER.COMPLETED", id="PP-ORDER-1", purchase_units=[{"custom_id": order_id}])
    )
    assert outcome.detail == "no capture id"
    assert orders_repo.get(db, order_id)["paypal_transaction_id"] is None

    await processor.handle(capture_completed(order_id, capture_id="CAP-1"))

    order = orders_repo.get(db, order_id)
    assert order["paypal_transaction_id"] == "CAP-1"
    assert provider.templates() == ["payment_confirmation"]


@pytest.mark.asyncio
async def test_paid_order_ignores_capture_with_other_transaction(db, processor, provider, make_order):
    order_id = make_order(OrderState.SHIPPED, paypal_transaction_id="CAP-1")

    outcome = await processor.handle(capture_completed(order_id, capture_id="CAP-2"))

    order = orders_repo.get(db, order_id)
    assert outcome.detail == "already paid"
    assert order["state"] == "shipped"
    assert order["paypal_transaction_id"] == "CAP-1"
    assert provider.sent == []


@pytest.mark.asyncio
async def test_unknown_correlation_id_changes_nothing(db, processor, provider, make_order):
    order_id = make_order()
    before = copy.deepcopy(db.docs("orders"))

    outcome = await processor.handle(capture_completed("no-such-order", event_id="WH-LOST"))

    assert outcome.status == "ignored"
    assert db.docs("orders") == before
    assert provider.sent == []
    assert db.docs("paypal_webhook_events")["WH-LOST"]["status"] == "ignored"
    assert orders_repo.get(db, order_id)["payment_status"] == "pending"


@pytest.mark.asyncio
async def test_missing_correlation_id_is_dropped(db, processor):
    outcome = await processor.handle(make_event("PAYMENT.CAPTURE.COMPLETED", id="CAP-X"))
    assert outcome.status == "ignored"


@pytest.mark.asyncio
async def test_unhandled_event_type_is_acknowledged_without_ledger_entry(db, processor):
    outcome = await processor.handle(make_event("BILLING.SUBSCRIPTION.CREATED", event_id="WH-SUB"))
    assert outcome.status == "ignored"
    assert "WH-SUB" not in db.docs("paypal_webhook_events")


@pytest.mark.asyncio
async def test_refund_sets_refunded_even_when_email_fails(db, processor, provider, make_order):
    order_id = make_order(OrderState.PROCESSING, paypal_transaction_id="CAP-1", paid_at=None)
    provider.fail = True

    outcome = await processor.handle(
        make_event(
            "PAYMENT.CAPTURE.REFUNDED",
            id="REF-1",
            custom_id=order_id,
            amount={"currency_code": "AUD", "value": "100.00"},
        )
    )

    order = orders_repo.get(db, order_id)
    assert outcome.status == "processed"
    assert order["payment_status"] == "refunded"
    assert order["refunded_at"] is not None
    assert order["paypal_refund_id"] == "REF-1"
    assert provider.templates() == ["order_refunded"]
    logs = list(db.docs("email_logs").values())
    assert [log["status"] for log in logs] == ["failed"]


@pytest.mark.asyncio
async def test_refund_of_refunded_order_is_ignored(db, processor, provider, make_order):
    order_id = make_order(OrderState.REFUNDED, refunded_at=None)
    outcome = await processor.handle(make_event("PAYMENT.CAPTURE.REFUNDED", id="REF-2", custom_id=order_id))
    assert outcome.detail == "already refunded"
    assert provider.sent == []


@pytest.mark.asyncio
async def test_last_processed_event_wins(db, processor, make_order):
    order_id = make_order()

    await processor.handle(capture_completed(order_id))
    await processor.handle(make_event("PAYMENT.CAPTURE.PENDING", id="CAP-1", custom_id=order_id))

    order = orders_repo.get(db, order_id)
    assert order["state"] == "awaiting_payment"
    assert order["payment_status"] == "pending"


@pytest.mark.asyncio
async def test_denied_capture_records_reason(db, processor, make_order):
    order_id = make_order()
    await processor.handle(
        make_event(
            "PAYMENT.CAPTURE.DENIED",
            id="CAP-2",
            custom_id=order_id,
            status_details={"reason": "RISK"},
        )
    )
    order = orders_repo.get(db, order_id)
    assert order["state"] == "payment_failed"
    assert order["payment_status"] == "failed"
    assert order["payment_failure_reason"] == "Payment denied by PayPal: RISK"


@pytest.mark.asyncio
async def test_voided_order_is_cancelled(db, processor, make_order):
    order_id = make_order()
    await processor.handle(make_event("CHECKOUT.ORDER.VOIDED", id="PP-ORDER-3", custom_id=order_id))
    order = orders_repo.get(db, order_id)
    assert order["state"] == "cancelled"
    assert order["cancelled_at"] is not None


@pytest.mark.asyncio
async def test_approved_order_is_acknowledged_only(db, processor, make_order):
    order_id = make_order()
    outcome = await processor.handle(
        make_event("CHECKOUT.ORDER.APPROVED", id="PP-ORDER-4", purchase_units=[{"custom_id": order_id}])
    )
    assert outcome.status == "ignored"
    assert orders_repo.get(db, order_id)["state"] == "awaiting_payment"


@pytest.mark.asyncio
async def test_dispute_round_trip_restores_previous_state(db, processor, provider, make_order):
    order_id = make_order(OrderState.PROCESSING, paypal_transaction_id="CAP-9")

    await processor.handle(
        make_event(
            "CUSTOMER.DISPUTE.CREATED",
            dispute_id="PP-D-1",
            reason="MERCHANDISE_OR_SERVICE_NOT_RECEIVED",
            disputed_transactions=[{"seller_transaction_id": "CAP-9"}],
        )
    )
    order = orders_repo.get(db, order_id)
    assert order["state"] == "disputed"
    assert order["payment_status"] == "paid"
    assert order["dispute"]["status"] == "open"
    assert order["dispute"]["previous_state"] == "processing"
    assert provider.sent[-1]["to"] == "orders@geelonggaragedoors.com"
    assert provider.templates() == ["dispute_alert"]

    await processor.handle(
        make_event(
            "CUSTOMER.DISPUTE.RESOLVED",
            dispute_id="PP-D-1",
            dispute_outcome={"outcome_code": "RESOLVED_SELLER_FAVOUR"},
            disputed_transactions=[{"seller_transaction_id": "CAP-9"}],
        )
    )
    order = orders_repo.get(db, order_id)
    assert order["state"] == "processing"
    assert order["dispute"]["status"] == "resolved"
    assert order["dispute"]["outcome"] == "RESOLVED_SELLER_FAVOUR"
    assert order["dispute"]["resolved_at"] is not None


@pytest.mark.asyncio
async def test_dispute_correlates_through_custom_field(db, processor, make_order):
    order_id = make_order(OrderState.SHIPPED, paypal_transaction_id="CAP-5")
    await processor.handle(
        make_event("CUSTOMER.DISPUTE.CREATED", dispute_id="PP-D-2", disputed_transactions=[{"custom": order_id}])
    )
    assert orders_repo.get(db, order_id)["state"] == "disputed"


@pytest.mark.asyncio
async def test_capture_notifies_every_staff_member(db, processor, staff_users, make_order):
    order_id = make_order()
    await processor.handle(capture_completed(order_id))

    notes = list(db.docs("notifications").values())
    assert sorted(n["user_id"] for n in notes) == sorted(staff_users)
    assert {n["type"] for n in notes} == {"payment_received"}


@pytest.mark.asyncio
async def test_failed_processing_releases_the_claim(db, processor, make_order, monkeypatch):
    order_id = make_order()
    event = capture_completed(order_id, event_id="WH-RETRY")
    real_update = orders_repo.update

    def broken_update(*args, **kwargs):
        raise RuntimeError("firestore unavailable")

    monkeypatch.setattr(orders_repo, "update", broken_update)
    with pytest.raises(RuntimeError):
        await processor.handle(event)
    assert "WH-RETRY" not in db.docs("paypal_webhook_events")

    monkeypatch.setattr(orders_repo, "update", real_update)
    outcome = await processor.handle(event)
    assert outcome.status == "processed"
    assert db.docs("paypal_webhook_events")["WH-RETRY"]["status"] == "processed"
