import base64
import binascii
import zlib

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.x509 import Certificate


def crc32_decimal(body: bytes) -> str:
    # unsigned, as PayPal computes it
    return str(zlib.crc32(body) & 0xFFFFFFFF)


def transmission_message(transmission_id: str, transmission_time: str, webhook_id: str, body: bytes) -> bytes:
    return f"{transmission_id}|{transmission_time}|{webhook_id}|{crc32_decimal(body)}".encode("utf-8")


def rsa_sha256_valid(cert: Certificate, message: bytes, signature_b64: str) -> bool:
    """True if `signature_b64` is an RSA PKCS#1 v1.5 / SHA-256 signature of `message` by `cert`."""
    try:
        signature = base64.b64decode(signature_b64, validate=True)
    except (binascii.Error, ValueError):
        return False
    key = cert.public_key()
    if not isinstance(key, rsa.RSAPublicKey):
        return False
    try:
        key.verify(signature, message, padding.PKCS1v15(), hashes.SHA256())
    except InvalidSignature:
        return False
    return True
