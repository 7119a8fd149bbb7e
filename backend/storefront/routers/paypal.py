"""
PayPal router: checkout (create / capture) and the webhook receiver.

The webhook answers 200 for every verified event, handled or not, so PayPal
stops retrying; 401 when the signature does not verify; 500 when processing
failed and the event should be redelivered.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError

from storefront.config import get_db, settings
from storefront.core.deps import get_payment_processor, get_paypal_client, get_webhook_verifier
from storefront.integrations.paypal import PayPalClient, PayPalError, approve_link, capture_details
from storefront.integrations.paypal_webhook import SignatureError, WebhookVerifier
from storefront.repositories import orders as orders_repo
from storefront.schemas.paypal import PayPalConfigOut, PayPalOrderCreate, WebhookEvent
from storefront.services.payment_events import PaymentEventProcessor

logger = logging.getLogger("storefront.paypal")

router = APIRouter(prefix="/paypal", tags=["PayPal"])


@router.get("/config", response_model=PayPalConfigOut)
def paypal_config():
    """Public client id for the PayPal JS SDK."""
    return PayPalConfigOut(
        client_id=settings.paypal_client_id,
        environment=settings.paypal_environment,
        currency=settings.currency,
    )


@router.post("/orders", status_code=status.HTTP_201_CREATED)
async def create_paypal_order(
    body: PayPalOrderCreate,
    db=Depends(get_db),
    client: PayPalClient = Depends(get_paypal_client),
):
    order = orders_repo.get(db, body.order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    if order.get("payment_status") == "paid":
        raise HTTPException(status_code=409, detail="Order is already paid")

    try:
        result = await client.create_order(order)
    except PayPalError as e:
        raise HTTPException(status_code=502, detail=f"PayPal error: {e}")

    orders_repo.update(db, order["id"], {"paypal_order_id": result["id"]})
    logger.info("PayPal order %s created for %s", result["id"], order.get("order_number"))
    return {"id": result["id"], "status": result.get("status"), "approve_url": approve_link(result)}


@router.post("/orders/{paypal_order_id}/capture")
async def capture_paypal_order(
    paypal_order_id: str,
    db=Depends(get_db),
    client: PayPalClient = Depends(get_paypal_client),
    processor: PaymentEventProcessor = Depends(get_payment_processor),
):
    """
    Captures an approved PayPal order and marks our order paid. The
    PAYMENT.CAPTURE.COMPLETED webhook that follows is then a no-op.
    """
    order = orders_repo.find_by_paypal_order(db, paypal_order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found for this PayPal order")

    try:
        result = await client.capture_order(paypal_order_id)
    except PayPalError as e:
        raise HTTPException(status_code=502, detail=f"PayPal error: {e}")

    capture_id, capture_status, amount, currency = capture_details(result)
    if capture_status != "COMPLETED" or not capture_id:
        # PENDING captures complete later through the webhook
        logger.info("PayPal order %s captured with status %s", paypal_order_id, capture_status)
        return {"order_id": order["id"], "status": capture_status, "paid": False}

    await processor.mark_paid(order, capture_id, amount=amount, currency=currency)
    return {
        "order_id": order["id"],
        "status": capture_status,
        "paid": True,
        "transaction_id": capture_id,
    }


@router.post("/webhook")
async def paypal_webhook(
    request: Request,
    verifier: WebhookVerifier = Depends(get_webhook_verifier),
    processor: PaymentEventProcessor = Depends(get_payment_processor),
):
    body = await request.body()
    try:
        await verifier.verify(request.headers, body)
    except SignatureError as e:
        logger.warning("Rejected PayPal webhook: %s", e)
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    try:
        event = WebhookEvent.model_validate_json(body)
    except ValidationError as e:
        logger.warning("Malformed PayPal webhook body: %s", e.errors()[:3])
        raise HTTPException(status_code=400, detail="Malformed webhook event")

    try:
        outcome = await processor.handle(event)
    except Exception:
        logger.exception("Processing PayPal event %s (%s) failed", event.id, event.event_type)
        raise HTTPException(status_code=500, detail="Webhook processing failed")

    return {"status": outcome.status, "order_id": outcome.order_id, "detail": outcome.detail}
