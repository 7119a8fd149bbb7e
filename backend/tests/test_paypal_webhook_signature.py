import base64
import json
from datetime import datetime, timedelta, timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.x509.oid import NameOID

from storefront.core.crypto import crc32_decimal, transmission_message
from storefront.integrations.paypal_webhook import SignatureError, WebhookVerifier

CERT_URL = "https://api-m.sandbox.paypal.com/v1/notifications/certs/CERT-360caa42"
SUBJECT = "messageverificationcerts.paypal.com"
WEBHOOK_ID = "WH-CONFIGURED-1"
NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)
BODY = json.dumps({"id": "WH-1", "event_type": "PAYMENT.CAPTURE.COMPLETED", "resource": {}}).encode()


@pytest.fixture(scope="module")
def signing_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="module")
def cert_pem(signing_key):
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, SUBJECT)])
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(signing_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(NOW - timedelta(days=30))
        .not_valid_after(NOW + timedelta(days=30))
        .sign(signing_key, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.PEM)


class CertSource:
    def __init__(self, pem: bytes):
        self.pem = pem
        self.calls = []

    async def __call__(self, url: str) -> bytes:
        self.calls.append(url)
        return self.pem


def sign(key, body: bytes, webhook_id: str = WEBHOOK_ID, transmission_id: str = "TX-1", when: str = "2026-05-01T12:00:00Z"):
    message = transmission_message(transmission_id, when, webhook_id, body)
    signature = key.sign(message, padding.PKCS1v15(), hashes.SHA256())
    return {
        "PAYPAL-TRANSMISSION-ID": transmission_id,
        "PAYPAL-TRANSMISSION-TIME": when,
        "PAYPAL-TRANSMISSION-SIG": base64.b64encode(signature).decode(),
        "PAYPAL-CERT-URL": CERT_URL,
        "PAYPAL-AUTH-ALGO": "SHA256withRSA",
    }


@pytest.fixture
def chain_calls():
    return []


@pytest.fixture
def make_verifier(cert_pem, chain_calls):
    def _make(webhook_id=WEBHOOK_ID, clock=lambda: NOW, chain_validator=None):
        def accept_chain(leaf, intermediates, subject, now):
            chain_calls.append((leaf.subject.rfc4514_string(), subject))

        source = CertSource(cert_pem)
        verifier = WebhookVerifier(
            webhook_id,
            ["api-m.sandbox.paypal.com", "api-m.paypal.com"],
            SUBJECT,
            fetch=source,
            chain_validator=chain_validator or accept_chain,
            clock=clock,
        )
        return verifier, source

    return _make


def test_crc32_is_unsigned_decimal():
    assert crc32_decimal(b"hello") == "907060870"
    assert transmission_message("a", "b", "c", b"hello") == b"a|b|c|907060870"


@pytest.mark.asyncio
async def test_valid_signature_is_accepted(make_verifier, signing_key, chain_calls):
    verifier, _ = make_verifier()
    await verifier.verify(sign(signing_key, BODY), BODY)
    assert chain_calls == [(f"CN={SUBJECT}", SUBJECT)]


@pytest.mark.asyncio
async def test_certificate_is_downloaded_once_per_url(make_verifier, signing_key):
    verifier, source = make_verifier()
    await verifier.verify(sign(signing_key, BODY), BODY)
    await verifier.verify(sign(signing_key, BODY, transmission_id="TX-2"), BODY)
    assert source.calls == [CERT_URL]


@pytest.mark.asyncio
async def test_tampered_body_is_rejected(make_verifier, signing_key):
    verifier, _ = make_verifier()
    headers = sign(signing_key, BODY)
    with pytest.raises(SignatureError, match="signature mismatch"):
        await verifier.verify(headers, BODY.replace(b"WH-1", b"WH-2"))


@pytest.mark.asyncio
async def test_signature_for_another_webhook_is_rejected(make_verifier, signing_key):
    verifier, _ = make_verifier()
    with pytest.raises(SignatureError):
        await verifier.verify(sign(signing_key, BODY, webhook_id="WH-SOMEONE-ELSE"), BODY)


@pytest.mark.asyncio
async def test_signature_by_another_key_is_rejected(make_verifier):
    verifier, _ = make_verifier()
    other = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    with pytest.raises(SignatureError, match="signature mismatch"):
        await verifier.verify(sign(other, BODY), BODY)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "url",
    [
        "http://api-m.sandbox.paypal.com/v1/notifications/certs/CERT-1",
        "https://evil.example.com/cert.pem",
        "https://api-m.sandbox.paypal.com.evil.example.com/cert.pem",
    ],
)
async def test_untrusted_cert_url_is_rejected_before_download(make_verifier, signing_key, url):
    verifier, source = make_verifier()
    headers = sign(signing_key, BODY)
    headers["PAYPAL-CERT-URL"] = url
    with pytest.raises(SignatureError, match="not allowed"):
        await verifier.verify(headers, BODY)
    assert source.calls == []


@pytest.mark.asyncio
async def test_missing_headers_are_rejected(make_verifier, signing_key):
    verifier, _ = make_verifier()
    headers = sign(signing_key, BODY)
    del headers["PAYPAL-TRANSMISSION-SIG"]
    with pytest.raises(SignatureError, match="paypal-transmission-sig"):
        await verifier.verify(headers, BODY)


@pytest.mark.asyncio
async def test_unconfigured_webhook_id_rejects_everything(make_verifier, signing_key):
    verifier, _ = make_verifier(webhook_id="")
    with pytest.raises(SignatureError, match="not configured"):
        await verifier.verify(sign(signing_key, BODY, webhook_id=""), BODY)


@pytest.mark.asyncio
async def test_unsupported_algorithm_is_rejected(make_verifier, signing_key):
    verifier, _ = make_verifier()
    headers = sign(signing_key, BODY)
    headers["PAYPAL-AUTH-ALGO"] = "SHA1withRSA"
    with pytest.raises(SignatureError, match="unsupported algorithm"):
        await verifier.verify(headers, BODY)


@pytest.mark.asyncio
async def test_expired_certificate_is_rejected(make_verifier, signing_key):
    verifier, _ = make_verifier(clock=lambda: NOW + timedelta(days=60))
    with pytest.raises(SignatureError, match="expired"):
        await verifier.verify(sign(signing_key, BODY), BODY)


@pytest.mark.asyncio
async def test_rejected_chain_is_not_cached(make_verifier, signing_key):
    def reject(leaf, intermediates, subject, now):
        raise SignatureError("certificate chain rejected: untrusted root")

    verifier, source = make_verifier(chain_validator=reject)
    for _ in range(2):
        with pytest.raises(SignatureError, match="chain rejected"):
            await verifier.verify(sign(signing_key, BODY), BODY)
    assert len(source.calls) == 2


@pytest.mark.asyncio
async def test_garbage_signature_is_rejected(make_verifier, signing_key):
    verifier, _ = make_verifier()
    headers = sign(signing_key, BODY)
    headers["PAYPAL-TRANSMISSION-SIG"] = "not base64!!"
    with pytest.raises(SignatureError):
        await verifier.verify(headers, BODY)
