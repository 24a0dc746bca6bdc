"""Summary: Obfuscation for provider API keys stored in SQLite.

Importance: Keeps user-supplied keys out of the database in plain text.
Alternatives: Use a secrets manager or the cryptography package.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import secrets


_VERSION = "v1"


class KeyCodecError(ValueError):
    """Stored key could not be decoded with the configured secret."""


class TokenCodec:
    """Summary: Encodes API keys with a per-value nonce and an integrity tag.

    Importance: A changed secret or tampered row fails loudly instead of yielding a wrong key.
    Alternatives: Store keys base64-encoded without a secret.
    """

    def __init__(self, secret: str) -> None:
        self._secret = secret.encode("utf-8")

    def encode(self, plaintext: str) -> str:
        nonce = secrets.token_bytes(12)
        raw = plaintext.encode("utf-8")
        cipher = bytes(b ^ k for b, k in zip(raw, self._keystream(nonce, len(raw))))
        tag = self._tag(nonce + cipher)
        return ":".join((_VERSION, _b64(nonce), _b64(cipher), _b64(tag)))

    def decode(self, payload: str) -> str:
        """Summary: Verify and decode a stored key.

        Importance: Raises KeyCodecError so callers can fall back to the global key.
        Alternatives: Return an empty string on failure.
        """

        try:
            version, nonce_text, cipher_text, tag_text = payload.split(":")
        except ValueError as exc:
            raise KeyCodecError("Malformed stored key") from exc
        if version != _VERSION:
            raise KeyCodecError(f"Unsupported key encoding: {version}")
        nonce, cipher, tag = _unb64(nonce_text), _unb64(cipher_text), _unb64(tag_text)
        if not hmac.compare_digest(tag, self._tag(nonce + cipher)):
            raise KeyCodecError("Stored key failed integrity check")
        plaintext = bytes(b ^ k for b, k in zip(cipher, self._keystream(nonce, len(cipher))))
        return plaintext.decode("utf-8")

    def _tag(self, data: bytes) -> bytes:
        return hmac.new(self._secret, data, hashlib.sha256).digest()[:16]

    def _keystream(self, nonce: bytes, length: int) -> bytes:
        output = b""
        counter = 0
        while len(output) < length:
            output += hashlib.sha256(self._secret + nonce + counter.to_bytes(4, "big")).digest()
            counter += 1
        return output[:length]


def _b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _unb64(text: str) -> bytes:
    try:
        return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))
    except ValueError as exc:
        raise KeyCodecError("Malformed stored key") from exc
