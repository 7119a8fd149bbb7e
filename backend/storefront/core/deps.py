# storefront/core/deps.py
"""
FastAPI dependencies that assemble the services from the Firestore client and
settings. Tests replace `get_db`, `get_email_provider`, `get_webhook_verifier`
and `get_paypal_client` through `app.dependency_overrides`.
"""
from functools import lru_cache

from fastapi import Depends
from starlette.requests import HTTPConnection

from storefront.config import get_db, settings
from storefront.integrations.email_provider import build_provider
from storefront.integrations.paypal import PayPalClient
from storefront.integrations.paypal_webhook import WebhookVerifier
from storefront.services.mailer import Mailer
from storefront.services.notifications import ConnectionRegistry, NotificationService
from storefront.services.order_status import OrderStatusService
from storefront.services.payment_events import PaymentEventProcessor


@lru_cache(maxsize=1)
def get_email_provider():
    return build_provider(settings)


@lru_cache(maxsize=1)
def get_paypal_client() -> PayPalClient:
    return PayPalClient(settings)


@lru_cache(maxsize=1)
def get_webhook_verifier() -> WebhookVerifier:
    # one instance so the certificate cache survives between deliveries
    return WebhookVerifier.from_settings(settings)


def get_registry(conn: HTTPConnection) -> ConnectionRegistry:
    return conn.app.state.connections


def get_mailer(db=Depends(get_db), provider=Depends(get_email_provider)) -> Mailer:
    return Mailer(db, provider, settings)


def get_notifier(db=Depends(get_db), registry: ConnectionRegistry = Depends(get_registry)) -> NotificationService:
    return NotificationService(db, registry)


def get_payment_processor(
    db=Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
    notifier: NotificationService = Depends(get_notifier),
) -> PaymentEventProcessor:
    return PaymentEventProcessor(db, mailer, notifier)


def get_status_service(
    db=Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
    notifier: NotificationService = Depends(get_notifier),
) -> OrderStatusService:
    return OrderStatusService(db, mailer, notifier, settings)
