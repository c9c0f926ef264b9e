"""HS256 token codec.

Tokens are compact JWS strings carrying ``{sub, iat, exp, type, jti}``.
Decoding never raises for malformed or hostile input; it returns a
``Failure`` tagged ``invalid_signature`` or ``expired``.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Union

from credence.logging import get_logger
from credence.service.results import ErrorKind, Failure
from credence.storage.models import TokenType, utcnow

logger = get_logger(__name__)

_HEADER = {"alg": "HS256", "typ": "JWT"}


@dataclass(frozen=True)
class Claims:
    sub: str
    type: TokenType
    iat: int
    exp: int
    jti: Optional[str] = None

    @property
    def expires_at(self) -> datetime:
        return datetime.fromtimestamp(self.exp, tz=timezone.utc)


def _encode_segment(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _decode_segment(segment: str) -> bytes:
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return base64.urlsafe_b64decode(segment + padding)


def _json_segment(payload: dict[str, Any]) -> str:
    return _encode_segment(json.dumps(payload, separators=(",", ":")).encode())


class TokenCodec:
    """Signs and verifies claim sets with a shared secret. Performs no I/O."""

    def __init__(
        self, secret: str, *, clock: Callable[[], datetime] = utcnow
    ) -> None:
        if not secret:
            raise ValueError("token secret must not be empty")
        self._key = secret.encode()
        self._clock = clock

    def _sign(self, signing_input: str) -> str:
        digest = hmac.new(self._key, signing_input.encode(), hashlib.sha256).digest()
        return _encode_segment(digest)

    def encode(self, subject_id: str, expires_at: datetime, type: TokenType) -> str:
        payload = {
            "sub": subject_id,
            "iat": int(self._clock().timestamp()),
            "exp": int(expires_at.timestamp()),
            "type": TokenType(type).value,
            # two tokens minted in the same second must still differ
            "jti": uuid.uuid4().hex,
        }
        signing_input = f"{_json_segment(_HEADER)}.{_json_segment(payload)}"
        return f"{signing_input}.{self._sign(signing_input)}"

    def decode(self, token: str) -> Union[Claims, Failure]:
        if not isinstance(token, str):
            return Failure(ErrorKind.INVALID_SIGNATURE, "token must be a string")
        if not token.isascii():
            return Failure(ErrorKind.INVALID_SIGNATURE, "malformed token")
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            return Failure(ErrorKind.INVALID_SIGNATURE, "malformed token")

        # nothing is parsed until the MAC over the raw segments matches
        expected_sig = self._sign(f"{header_b64}.{payload_b64}")
        if not hmac.compare_digest(expected_sig.encode(), sig_b64.encode()):
            return Failure(ErrorKind.INVALID_SIGNATURE, "signature mismatch")

        header = self._json_object(header_b64)
        if header is None:
            logger.warning("jwt_header_decode_failed")
            return Failure(ErrorKind.INVALID_SIGNATURE, "malformed header")
        if header.get("alg") != "HS256":
            logger.warning("jwt_invalid_algorithm", alg=header.get("alg"))
            return Failure(ErrorKind.INVALID_SIGNATURE, "unsupported algorithm")

        payload = self._json_object(payload_b64)
        if payload is None:
            logger.warning("jwt_payload_decode_failed")
            return Failure(ErrorKind.INVALID_SIGNATURE, "malformed payload")

        claims = self._claims_from_payload(payload)
        if isinstance(claims, Failure):
            return claims
        # no clock-skew allowance: exp at or before now is expired
        if claims.exp <= self._clock().timestamp():
            return Failure(ErrorKind.EXPIRED, "token expired")
        return claims

    @staticmethod
    def _json_object(segment: str) -> Optional[dict[str, Any]]:
        try:
            value = json.loads(_decode_segment(segment))
        except (binascii.Error, ValueError, UnicodeDecodeError, RecursionError):
            return None
        return value if isinstance(value, dict) else None

    @staticmethod
    def _claims_from_payload(payload: dict[str, Any]) -> Union[Claims, Failure]:
        sub = payload.get("sub")
        raw_type = payload.get("type")
        iat = payload.get("iat")
        exp = payload.get("exp")
        if not isinstance(sub, str) or not sub:
            return Failure(ErrorKind.INVALID_SIGNATURE, "missing subject")
        try:
            token_type = TokenType(raw_type)
        except ValueError:
            return Failure(ErrorKind.INVALID_SIGNATURE, "unknown token type")
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            return Failure(ErrorKind.INVALID_SIGNATURE, "missing expiry")
        if isinstance(iat, bool) or not isinstance(iat, (int, float)):
            return Failure(ErrorKind.INVALID_SIGNATURE, "missing issued-at")
        jti = payload.get("jti")
        return Claims(
            sub=sub,
            type=token_type,
            iat=int(iat),
            exp=int(exp),
            jti=jti if isinstance(jti, str) else None,
        )


__all__ = ["Claims", "TokenCodec"]
