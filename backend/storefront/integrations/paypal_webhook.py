# storefront/integrations/paypal_webhook.py
"""
PayPal webhook signature verification (offline method).

PayPal signs `<transmission id>|<transmission time>|<webhook id>|<crc32 of body>`
with the key of the certificate served at `paypal-cert-url`. Verification:

1. all transmission headers present, algorithm SHA256withRSA;
2. cert URL is https on a PayPal host;
3. certificate bundle downloaded (cached per URL) and the leaf validated
   against the trust roots (certifi unless a store is given) for the PayPal
   subject name;
4. RSA / SHA-256 signature check over the rebuilt message.

Any failure raises SignatureError; the router answers 401.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Mapping, Optional, Sequence
from urllib.parse import urlparse

import certifi
import httpx
from cryptography import x509
from cryptography.x509.verification import PolicyBuilder, Store, VerificationError

from storefront.config import Settings
from storefront.core.crypto import rsa_sha256_valid, transmission_message

logger = logging.getLogger("storefront.paypal.webhook")

REQUIRED_HEADERS = (
    "paypal-transmission-id",
    "paypal-transmission-time",
    "paypal-transmission-sig",
    "paypal-cert-url",
    "paypal-auth-algo",
)
SUPPORTED_ALGO = "SHA256withRSA"

CertFetcher = Callable[[str], Awaitable[bytes]]
ChainValidator = Callable[[x509.Certificate, Sequence[x509.Certificate], str, datetime], None]


class SignatureError(Exception):
    pass


def load_trust_store(bundle_path: Optional[str] = None) -> Store:
    """Reads a PEM bundle of root certificates (certifi by default)."""
    with open(bundle_path or certifi.where(), "rb") as f:
        return Store(x509.load_pem_x509_certificates(f.read()))


def verify_certificate_chain(
    leaf: x509.Certificate,
    intermediates: Sequence[x509.Certificate],
    subject: str,
    now: datetime,
    store: Store,
) -> None:
    """Leaf must chain to a root in `store` and be valid for `subject` at `now`."""
    verifier = PolicyBuilder().store(store).time(now).build_server_verifier(x509.DNSName(subject))
    try:
        verifier.verify(leaf, list(intermediates))
    except VerificationError as e:
        raise SignatureError(f"certificate chain rejected: {e}") from e


async def fetch_certificate(url: str, timeout: float = 10.0) -> bytes:
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            r = await client.get(url)
            r.raise_for_status()
            return r.content
    except httpx.HTTPError as e:
        raise SignatureError(f"could not download certificate: {e}") from e


class WebhookVerifier:
    def __init__(
        self,
        webhook_id: str,
        allowed_hosts: Sequence[str],
        cert_subject: str,
        *,
        fetch: CertFetcher = fetch_certificate,
        chain_validator: Optional[ChainValidator] = None,
        trust_store: Optional[Store] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.webhook_id = webhook_id
        self.allowed_hosts = {h.lower() for h in allowed_hosts}
        self.cert_subject = cert_subject
        self.fetch = fetch
        self.chain_validator = chain_validator
        self.trust_store = trust_store
        self.clock = clock
        self._certs: Dict[str, List[x509.Certificate]] = {}

    @classmethod
    def from_settings(cls, cfg: Settings) -> "WebhookVerifier":
        return cls(cfg.paypal_webhook_id, cfg.cert_hosts, cfg.paypal_cert_subject)

    async def _store(self) -> Store:
        # the bundle is read once, off the event loop
        if self.trust_store is None:
            loop = asyncio.get_running_loop()
            self.trust_store = await loop.run_in_executor(None, load_trust_store)
        return self.trust_store

    def check_cert_url(self, url: str) -> None:
        parsed = urlparse(url)
        if parsed.scheme != "https" or (parsed.hostname or "").lower() not in self.allowed_hosts:
            raise SignatureError(f"certificate URL not allowed: {url}")

    async def certificates(self, url: str) -> List[x509.Certificate]:
        if url not in self._certs:
            pem = await self.fetch(url)
            try:
                certs = x509.load_pem_x509_certificates(pem)
            except ValueError as e:
                raise SignatureError(f"bad certificate bundle: {e}") from e
            if self.chain_validator is not None:
                self.chain_validator(certs[0], certs[1:], self.cert_subject, self.clock())
            else:
                store = await self._store()
                verify_certificate_chain(certs[0], certs[1:], self.cert_subject, self.clock(), store)
            self._certs[url] = certs
        return self._certs[url]

    async def verify(self, headers: Mapping[str, str], body: bytes) -> None:
        h = {k.lower(): v for k, v in headers.items()}
        missing = [name for name in REQUIRED_HEADERS if not h.get(name)]
        if missing:
            raise SignatureError(f"missing headers: {', '.join(missing)}")
        if not self.webhook_id:
            raise SignatureError("PAYPAL_WEBHOOK_ID is not configured")
        if h["paypal-auth-algo"] != SUPPORTED_ALGO:
            raise SignatureError(f"unsupported algorithm {h['paypal-auth-algo']}")

        url = h["paypal-cert-url"]
        self.check_cert_url(url)
        leaf = (await self.certificates(url))[0]

        # validity window is re-checked on every call, the cache outlives it
        now = self.clock()
        if not (leaf.not_valid_before_utc <= now <= leaf.not_valid_after_utc):
            self._certs.pop(url, None)
            raise SignatureError("certificate expired or not yet valid")

        message = transmission_message(
            h["paypal-transmission-id"], h["paypal-transmission-time"], self.webhook_id, body,
        )
        if not rsa_sha256_valid(leaf, message, h["paypal-transmission-sig"]):
            raise SignatureError("signature mismatch")
