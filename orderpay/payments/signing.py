"""Gateway message codec: MD5 request signing, flat XML, refund payload decryption.

The canonical signing string is::

    k1=v1&k2=v2&...&kn=vn&key=<secret>

over keys sorted ascending, skipping empty values and the ``sign`` field
itself. The digest is the uppercase hex MD5 of that string (UTF-8). The same
routine signs outbound requests and verifies inbound callbacks.
"""
import base64
import binascii
import hashlib
import hmac
import secrets
import string
import xml.etree.ElementTree as ET
from typing import Any, Mapping

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from orderpay.errors import DecryptionFailed
from orderpay.logging import get_logger

logger = get_logger(__name__)

NONCE_ALPHABET = string.ascii_letters + string.digits
SIGN_FIELD = "sign"

ACK_TEMPLATE = (
    "<xml><return_code><![CDATA[{code}]]></return_code>"
    "<return_msg><![CDATA[{message}]]></return_msg></xml>"
)


def generate_nonce(length: int = 32) -> str:
    """Random alphanumeric nonce for `nonce_str` / `nonceStr`."""
    return "".join(secrets.choice(NONCE_ALPHABET) for _ in range(length))


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


def canonical_string(params: Mapping[str, Any], key: str) -> str:
    """Build the string that gets hashed (exposed for debugging signatures)."""
    parts = [
        f"{name}={params[name]}"
        for name in sorted(params)
        if name != SIGN_FIELD and not _is_empty(params[name])
    ]
    parts.append(f"key={key}")
    return "&".join(parts)


def sign_params(params: Mapping[str, Any], key: str) -> str:
    """Uppercase hex MD5 signature of params with the shared secret."""
    # nosec B324 - MD5 is mandated by the gateway signing protocol
    return hashlib.md5(canonical_string(params, key).encode("utf-8")).hexdigest().upper()


def verify_signature(params: Mapping[str, Any], key: str) -> bool:
    """Recompute the signature over everything except `sign` and compare."""
    received = str(params.get(SIGN_FIELD) or "")
    if not received:
        return False
    expected = sign_params(params, key)
    return hmac.compare_digest(received.upper(), expected)


def build_xml(params: Mapping[str, Any]) -> str:
    """Flat `<xml><field>value</field>...</xml>` document; None values are skipped."""
    root = ET.Element("xml")
    for name, value in params.items():
        if value is None:
            continue
        child = ET.SubElement(root, name)
        child.text = str(value)
    return ET.tostring(root, encoding="unicode")


def parse_xml(xml_data: str | bytes) -> dict[str, str]:
    """
    Parse a flat gateway XML document into a dict of strings.

    CDATA sections are unwrapped by the parser. Nested elements are not
    part of the protocol and are ignored.

    Raises:
        ValueError: If the body is not well-formed XML
    """
    if isinstance(xml_data, bytes):
        xml_data = xml_data.decode("utf-8")
    if not xml_data or not xml_data.strip():
        raise ValueError("Empty XML body")
    try:
        root = ET.fromstring(xml_data)
    except ET.ParseError as e:
        raise ValueError(f"Malformed XML: {e}") from e
    return {child.tag: child.text or "" for child in root if len(child) == 0}


def ack_xml(success: bool, message: str = "OK") -> str:
    """Fixed acknowledgment body the gateway expects from callback handlers."""
    code = "SUCCESS" if success else "FAIL"
    safe_message = message.replace("]]>", "")
    return ACK_TEMPLATE.format(code=code, message=safe_message)


def refund_cipher_key(pay_key: str) -> bytes:
    """AES-256 key for `req_info`: lowercase hex MD5 of the shared secret (32 bytes)."""
    # nosec B324 - key derivation defined by the gateway
    return hashlib.md5(pay_key.encode("utf-8")).hexdigest().lower().encode("ascii")


def decrypt_req_info(req_info: str, pay_key: str) -> dict[str, str]:
    """
    Decrypt the refund-outcome payload and parse its XML.

    `req_info` is base64 of AES-256-ECB ciphertext with PKCS#7 padding.

    Raises:
        DecryptionFailed: If the payload cannot be decoded, decrypted or parsed
    """
    if not req_info:
        raise DecryptionFailed("Missing req_info")
    try:
        ciphertext = base64.b64decode(req_info, validate=True)
        decryptor = Cipher(algorithms.AES(refund_cipher_key(pay_key)), modes.ECB()).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        plaintext = unpadder.update(padded) + unpadder.finalize()
        return parse_xml(plaintext.decode("utf-8"))
    except (binascii.Error, ValueError, UnicodeDecodeError) as e:
        logger.error("Failed to decrypt refund req_info: %s", type(e).__name__)
        raise DecryptionFailed() from e


def encrypt_req_info(payload: Mapping[str, Any], pay_key: str) -> str:
    """Inverse of `decrypt_req_info`, used to build refund notifications in tests and tools."""
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(build_xml(payload).encode("utf-8")) + padder.finalize()
    encryptor = Cipher(algorithms.AES(refund_cipher_key(pay_key)), modes.ECB()).encryptor()
    return base64.b64encode(encryptor.update(padded) + encryptor.finalize()).decode("ascii")
