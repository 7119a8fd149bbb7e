import copy

import pytest

from storefront.config import settings
from storefront.repositories import orders as orders_repo
from storefront.schemas.order import OrderState
from storefront.services.lifecycle import (
    IllegalTransition,
    InvalidTrackingNumber,
    MissingPaymentReference,
    OrderNotFound,
)
from storefront.services.order_status import OrderStatusService


@pytest.fixture
def service(db, mailer, notifier):
    return OrderStatusService(db, mailer, notifier, settings)


@pytest.fixture
def paid_order(make_order):
    return make_order(OrderState.PROCESSING, paypal_transaction_id="CAP-1")


@pytest.mark.asyncio
@pytest.mark.parametrize("tracking", ["12345", "1234567890123", "ABCDEFGHIJKL", ""])
async def test_bad_tracking_number_is_rejected_before_any_write(db, service, provider, paid_order, tracking):
    before = copy.deepcopy(db.docs("orders"))

    with pytest.raises(InvalidTrackingNumber):
        await service.ship(paid_order, tracking)

    assert db.docs("orders") == before
    assert provider.sent == []


@pytest.mark.asyncio
async def test_ship_persists_tracking_and_sends_email(db, service, provider, paid_order, staff_users):
    order = await service.ship(paid_order, "123456789012", box_size="M", box_cost="12.5")

    assert order["state"] == "shipped"
    assert order["shipping_status"] == "shipped"
    assert order["shipment"]["tracking_number"] == "123456789012"
    assert order["shipment"]["tracking_url"].endswith("/123456789012")
    assert order["shipment"]["box_cost"] == "12.50"
    assert provider.templates() == ["order_shipped"]
    assert "123456789012" in provider.sent[0]["html"]

    stored = orders_repo.get(db, paid_order)
    assert stored["shipping_notification_sent_at"] is not None
    types = {n["type"] for n in db.docs("notifications").values()}
    assert types == {"order_shipped"}


@pytest.mark.asyncio
async def test_ship_keeps_state_when_email_fails(db, service, provider, paid_order):
    provider.fail = True

    order = await service.ship(paid_order, "123456789012")

    assert order["state"] == "shipped"
    assert orders_repo.get(db, paid_order).get("shipping_notification_sent_at") is None


@pytest.mark.asyncio
async def test_illegal_admin_transition_is_refused(db, service, make_order):
    order_id = make_order(OrderState.DELIVERED, paypal_transaction_id="CAP-1")
    with pytest.raises(IllegalTransition):
        await service.change_status(order_id, OrderState.PENDING)
    assert orders_repo.get(db, order_id)["state"] == "delivered"


@pytest.mark.asyncio
async def test_setting_current_state_again_changes_nothing(db, service, provider, paid_order):
    before = orders_repo.get(db, paid_order)
    after = await service.change_status(paid_order, OrderState.PROCESSING)
    assert after["updated_at"] == before["updated_at"]
    assert provider.sent == []


@pytest.mark.asyncio
async def test_shipping_an_unpaid_order_is_refused(service, make_order):
    order_id = make_order(OrderState.AWAITING_PAYMENT)
    with pytest.raises(IllegalTransition):
        await service.ship(order_id, "123456789012")


@pytest.mark.asyncio
async def test_manual_payment_needs_a_reference(db, service, make_order):
    order_id = make_order(OrderState.PENDING, payment_method="manual")
    with pytest.raises(MissingPaymentReference):
        await service.change_status(order_id, OrderState.PROCESSING)

    order = await service.change_status(order_id, OrderState.PROCESSING, transaction_id="BANK-42")
    assert order["payment_status"] == "paid"
    assert order["paypal_transaction_id"] == "BANK-42"
    assert order["paid_at"] is not None


@pytest.mark.asyncio
async def test_status_change_sends_matching_email(service, provider, make_order):
    order_id = make_order(OrderState.SHIPPED, paypal_transaction_id="CAP-1")
    await service.change_status(order_id, OrderState.DELIVERED)
    assert provider.templates() == ["order_delivered"]


@pytest.mark.asyncio
async def test_state_without_template_sends_no_email(service, provider, make_order):
    order_id = make_order(OrderState.PENDING, payment_method="manual")
    await service.change_status(order_id, OrderState.AWAITING_PAYMENT)
    assert provider.sent == []


@pytest.mark.asyncio
async def test_unknown_order(service):
    with pytest.raises(OrderNotFound):
        await service.change_status("missing", OrderState.CANCELLED)
