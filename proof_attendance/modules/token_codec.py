"""
Token Codec Module - Proof Attendance System

This module turns proof tokens into opaque transportable strings and back.
Tokens are serialized to canonical JSON and sealed with Fernet (AES-CBC with
an HMAC-SHA256 tag) under a shared secret known to the server and the
instructor-side emitter. The output is URL-safe base64, so it can be embedded
in a QR image or stored as-is in the session record.

Features:
- Canonical JSON serialization with a kind tag
- Authenticated encryption, fresh IV per call
- Strict structural validation on decode
- Injectable secret with an observable default fallback
"""

import base64
import hashlib
import json
import logging
import re
from typing import Any, Dict, Optional

from cryptography.fernet import Fernet, InvalidToken

from proof_attendance.modules.proof_token import OTP_CODE_LENGTH, OtpToken, ProofToken, QrToken, TokenKind

DEFAULT_SECRET = 'default-secret-key-change-in-production'

OTP_CODE_PATTERN = re.compile(rf'^\d{{{OTP_CODE_LENGTH}}}$')

_COMMON_FIELDS = {
    'kind': str,
    'session_id': str,
    'issued_at_ms': int,
    'subject': str,
    'cohort_year': int,
    'cohort_semester': int,
}


class DecodeError(Exception):
    """Raised when an encoded token cannot be decrypted or parsed."""

    def __init__(self, message: str, reason: str = 'invalid'):
        super().__init__(message)
        self.reason = reason


class TokenCodec:
    """
    Encrypting codec for proof tokens.

    Ciphertext differs on every call for the same token, so callers must
    never compare encoded strings to decide whether two tokens are equal.
    """

    def __init__(self, secret: Optional[str] = None):
        """
        Initialize the codec.

        Args:
            secret (str): Shared secret. When empty, the well-known default
                is used and ``using_default_secret`` is set.
        """
        self.logger = logging.getLogger(__name__)
        self.using_default_secret = not secret
        if self.using_default_secret:
            secret = DEFAULT_SECRET
            self.logger.warning(
                "PROOF_TOKEN_SECRET is not set; falling back to the default secret. "
                "Tokens can be forged by anyone who knows the default."
            )
        self._fernet = Fernet(self._derive_key(secret))

    @staticmethod
    def _derive_key(secret: str) -> bytes:
        digest = hashlib.sha256(secret.encode('utf-8')).digest()
        return base64.urlsafe_b64encode(digest)

    def encode(self, token: ProofToken) -> str:
        """
        Encrypt a token into an opaque string.

        Args:
            token (ProofToken): Token to encode

        Returns:
            str: URL-safe encrypted token
        """
        json_data = json.dumps(token.to_payload(), sort_keys=True, separators=(',', ':'))
        return self._fernet.encrypt(json_data.encode('utf-8')).decode('ascii')

    def decode(self, encoded: Any) -> ProofToken:
        """
        Decrypt and parse an encoded token.

        Args:
            encoded (str): String produced by ``encode``

        Returns:
            ProofToken: The decoded QrToken or OtpToken

        Raises:
            DecodeError: If the input is not decryptable with this secret or
                the payload does not have the expected shape.
        """
        if not isinstance(encoded, str) or not encoded.strip():
            raise DecodeError('Token must be a non-empty string', reason='format_error')

        try:
            raw = encoded.strip().encode('ascii')
        except UnicodeEncodeError:
            raise DecodeError('Token contains non-ASCII characters', reason='format_error')

        try:
            plaintext = self._fernet.decrypt(raw)
        except InvalidToken:
            raise DecodeError('Token could not be decrypted', reason='security_error')

        try:
            payload = json.loads(plaintext.decode('utf-8'))
        except (UnicodeDecodeError, ValueError):
            raise DecodeError('Token payload is not valid JSON', reason='format_error')

        return self._build_token(payload)

    def _build_token(self, payload: Any) -> ProofToken:
        if not isinstance(payload, dict):
            raise DecodeError('Token payload must be an object', reason='format_error')

        kind = payload.get('kind')
        if kind == TokenKind.QR.value:
            expected = dict(_COMMON_FIELDS)
        elif kind == TokenKind.OTP.value:
            expected = dict(_COMMON_FIELDS, code=str)
        else:
            raise DecodeError(f'Unknown token kind: {kind!r}', reason='type_error')

        self._check_fields(payload, expected)

        common = {
            'session_id': payload['session_id'],
            'issued_at_ms': payload['issued_at_ms'],
            'subject': payload['subject'],
            'cohort_year': payload['cohort_year'],
            'cohort_semester': payload['cohort_semester'],
        }

        if kind == TokenKind.QR.value:
            return QrToken(**common)

        if not OTP_CODE_PATTERN.match(payload['code']):
            raise DecodeError('OTP code must be six digits', reason='format_error')
        return OtpToken(code=payload['code'], **common)

    @staticmethod
    def _check_fields(payload: Dict[str, Any], expected: Dict[str, type]) -> None:
        missing = set(expected) - set(payload)
        if missing:
            raise DecodeError(f"Missing required field: {sorted(missing)[0]}", reason='missing_field')

        extra = set(payload) - set(expected)
        if extra:
            raise DecodeError(f"Unexpected field: {sorted(extra)[0]}", reason='format_error')

        for field, field_type in expected.items():
            value = payload[field]
            # bool is an int subclass; reject it explicitly
            if isinstance(value, bool) or not isinstance(value, field_type):
                raise DecodeError(f"Field {field} has the wrong type", reason='format_error')

        if not payload['session_id']:
            raise DecodeError('Field session_id is empty', reason='format_error')
