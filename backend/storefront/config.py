"""
storefront/config.py - Application configuration and Firebase initialization.

This module defines a Pydantic BaseSettings class to load configuration from environment,
and lazily initializes the Firebase Admin SDK (Firestore DB) using the provided credentials.
Request handlers receive the Firestore client through the `get_db` dependency so tests can
swap it out; nothing talks to Firebase at import time.
"""
from decimal import Decimal
from functools import lru_cache
from typing import List, Literal, Optional

import firebase_admin
from firebase_admin import credentials, firestore
from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""
    firebase_cred_file: str = Field('firebase_service_account.json')
    firebase_project_id: Optional[str] = None

    # Firebase credentials from environment variables (for Cloud Run)
    firebase_private_key_id: Optional[str] = None
    firebase_private_key: Optional[str] = None
    firebase_client_email: Optional[str] = None
    firebase_client_id: Optional[str] = None
    firebase_auth_uri: Optional[str] = None
    firebase_token_uri: Optional[str] = None
    firebase_auth_provider_x509_cert_url: Optional[str] = None
    firebase_client_x509_cert_url: Optional[str] = None

    debug: bool = False
    log_level: str = "INFO"
    allowed_origins: str = '*'  # Comma-separated list or '*' for all

    # PayPal
    paypal_client_id: str = ''
    paypal_client_secret: str = ''
    paypal_environment: Literal["sandbox", "live"] = "sandbox"
    paypal_webhook_id: str = ''
    paypal_cert_subject: str = 'messageverificationcerts.paypal.com'
    paypal_allowed_cert_hosts: str = 'api.paypal.com,api-m.paypal.com,api.sandbox.paypal.com,api-m.sandbox.paypal.com'
    paypal_timeout: int = 20
    webhook_event_retention_days: int = 30

    # Email
    email_provider: Literal["resend", "smtp"] = "resend"
    resend_api_key: str = ''
    email_from: str = 'orders@geelonggaragedoors.com'
    email_from_name: str = 'Geelong Garage Doors'
    email_reply_to: Optional[str] = None
    admin_email: str = 'orders@geelonggaragedoors.com'
    smtp_host: str = "localhost"
    smtp_port: int = 465
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_use_starttls: bool = False  # true for 587

    # Store
    store_url: str = 'https://geelonggaragedoors.com'
    order_number_prefix: str = 'GGD'
    currency: str = 'AUD'
    tax_rate: Decimal = Decimal("0.10")
    prices_include_tax: bool = True
    tracking_url_template: str = 'https://auspost.com.au/mypost/track/details/{tracking_number}'

    @property
    def PAYPAL_BASE_URL(self) -> str:
        """REST endpoint for the configured PayPal environment."""
        return (
            "https://api-m.paypal.com"
            if self.paypal_environment == "live"
            else "https://api-m.sandbox.paypal.com"
        )

    @property
    def cert_hosts(self) -> List[str]:
        return [h.strip().lower() for h in self.paypal_allowed_cert_hosts.split(',') if h.strip()]

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


# Load settings from environment (.env file, etc.)
settings = Settings()


def _credentials():
    # Check if we have environment variables for Firebase credentials (Cloud Run)
    if all([
        settings.firebase_private_key_id,
        settings.firebase_private_key,
        settings.firebase_client_email,
        settings.firebase_client_id,
        settings.firebase_auth_uri,
        settings.firebase_token_uri,
        settings.firebase_auth_provider_x509_cert_url,
        settings.firebase_client_x509_cert_url,
    ]):
        return credentials.Certificate({
            "type": "service_account",
            "project_id": settings.firebase_project_id,
            "private_key_id": settings.firebase_private_key_id,
            "private_key": settings.firebase_private_key.replace("\\n", "\n"),
            "client_email": settings.firebase_client_email,
            "client_id": settings.firebase_client_id,
            "auth_uri": settings.firebase_auth_uri,
            "token_uri": settings.firebase_token_uri,
            "auth_provider_x509_cert_url": settings.firebase_auth_provider_x509_cert_url,
            "client_x509_cert_url": settings.firebase_client_x509_cert_url,
        })
    # Use service account file (local development)
    return credentials.Certificate(settings.firebase_cred_file)


def init_firebase() -> firebase_admin.App:
    """Initialize the default Firebase app once and return it."""
    try:
        return firebase_admin.get_app()
    except ValueError:
        options = {'projectId': settings.firebase_project_id} if settings.firebase_project_id else None
        return firebase_admin.initialize_app(_credentials(), options)


@lru_cache(maxsize=1)
def get_db():
    """Firestore client (FastAPI dependency)."""
    init_firebase()
    return firestore.client()
