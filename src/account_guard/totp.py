"""TOTP capability: secret generation, code validation and provisioning QR codes."""

from __future__ import annotations

import base64
import io
import logging
import secrets
from typing import Protocol, runtime_checkable

import qrcode
import qrcode.image.svg
from cryptography.hazmat.primitives.hashes import SHA1
from cryptography.hazmat.primitives.twofactor import InvalidToken
from cryptography.hazmat.primitives.twofactor.totp import TOTP

logger = logging.getLogger(__name__)

# 160-bit shared secrets, the RFC 4226 recommendation
SECRET_BYTES = 20


@runtime_checkable
class TotpProvider(Protocol):
    """Protocol for the time-based one-time password algorithm.

    The two-factor manager never computes codes itself; it delegates to an
    implementation of this protocol, so tests or HSM-backed deployments can
    swap it out.
    """

    def generate_secret(self) -> str:
        """Return a fresh shared secret in the encoding :meth:`verify` accepts."""
        ...

    def verify(self, code: str, secret: str, for_time: int) -> bool:
        """Return ``True`` if *code* is valid for *secret* at *for_time* (Unix seconds)."""
        ...

    def provisioning_uri(self, secret: str, label: str, issuer: str) -> str:
        """Return the ``otpauth://`` URI authenticator apps import."""
        ...


def decode_secret(secret: str) -> bytes:
    """Decode an unpadded, case-insensitive base32 secret."""
    normalized = secret.strip().replace(" ", "").upper()
    return base64.b32decode(normalized + "=" * (-len(normalized) % 8))


class CryptographyTotpProvider:
    """RFC 6238 TOTP (HMAC-SHA1) built on ``cryptography``'s two-factor primitives.

    Secrets are exchanged as unpadded base32 strings, the format authenticator
    apps expect.

    Args:
        digits: Code length (6 to 8).
        interval: Time step in seconds.
        valid_window: Number of steps of clock skew tolerated on each side.
    """

    def __init__(self, digits: int = 6, interval: int = 30, valid_window: int = 1) -> None:
        self.digits = digits
        self.interval = interval
        self.valid_window = valid_window

    def _totp(self, secret: str) -> TOTP:
        return TOTP(decode_secret(secret), self.digits, SHA1(), self.interval)

    def generate_secret(self) -> str:
        return base64.b32encode(secrets.token_bytes(SECRET_BYTES)).decode("ascii").rstrip("=")

    def verify(self, code: str, secret: str, for_time: int) -> bool:
        try:
            totp = self._totp(secret)
        except ValueError:
            # Not base32, or shorter than the 128-bit minimum
            logger.warning("TOTP verification failed: stored secret is unusable")
            return False

        token = code.encode("ascii", errors="replace")
        for step in range(-self.valid_window, self.valid_window + 1):
            try:
                totp.verify(token, for_time + step * self.interval)
            except InvalidToken:
                continue
            return True
        return False

    def provisioning_uri(self, secret: str, label: str, issuer: str) -> str:
        return self._totp(secret).get_provisioning_uri(label, issuer)


def render_qr_data_uri(uri: str) -> str:
    """Render *uri* as a QR code and return it as an ``image/svg+xml`` data URI."""
    img = qrcode.make(uri, image_factory=qrcode.image.svg.SvgPathImage)
    buf = io.BytesIO()
    img.save(buf)
    encoded = base64.b64encode(buf.getvalue()).decode("ascii")
    return f"data:image/svg+xml;base64,{encoded}"
