"""Security utilities: password hashing and the signed-token codec."""

import base64
import binascii
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Mapping

import bcrypt as _bcrypt
import structlog
from jose import JWTError, jwt
from jose.exceptions import ExpiredSignatureError, JOSEError, JWKError
from pydantic import ValidationError

from app.core.config import Settings
from app.core.errors import (
    ExpiredTokenError,
    KeyConfigError,
    SignatureError,
    SigningError,
)
from app.schemas.token import Claims, TokenClass, new_claims

logger = structlog.get_logger(__name__)

PEM_PREFIX = "-----BEGIN"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a plain password against a hashed password.

    Args:
        plain_password: Plain text password
        hashed_password: Hashed password from database

    Returns:
        True if password matches, False otherwise
    """
    # Bcrypt has a 72 byte limit - truncate password bytes if necessary
    password_bytes = plain_password.encode("utf-8")
    if len(password_bytes) > 72:
        password_bytes = password_bytes[:72]

    try:
        return _bcrypt.checkpw(password_bytes, hashed_password.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt hash
        return False


def get_password_hash(password: str) -> str:
    """
    Hash a password using bcrypt.

    Args:
        password: Plain text password

    Returns:
        Hashed password
    """
    password_bytes = password.encode("utf-8")
    if len(password_bytes) > 72:
        password_bytes = password_bytes[:72]

    salt = _bcrypt.gensalt(rounds=12)
    return _bcrypt.hashpw(password_bytes, salt).decode("utf-8")


def decode_key_material(value: str) -> str:
    """
    Return PEM text from either raw PEM or base64-encoded PEM.

    Raises:
        KeyConfigError: If the value is empty or not decodable
    """
    value = value.strip()
    if not value:
        raise KeyConfigError("key material is not configured")
    if value.startswith(PEM_PREFIX):
        return value
    try:
        pem = base64.b64decode(value, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise KeyConfigError(f"key material is neither PEM nor base64 PEM: {exc}") from exc
    if not pem.lstrip().startswith(PEM_PREFIX):
        raise KeyConfigError("decoded key material is not PEM")
    return pem


@dataclass(frozen=True)
class KeyPair:
    """Key material for one token class, as configured (PEM or base64 PEM)."""

    private_key: str = ""
    public_key: str = ""


class TokenCodec:
    """
    Signs claims into compact JWS strings and verifies them back.

    Each token class has its own key pair, so a refresh token never verifies
    as an access token and vice versa. Instances are read-only after
    construction and safe to share across concurrent requests.
    """

    def __init__(
        self,
        keys: Mapping[TokenClass, KeyPair],
        *,
        algorithm: str = "RS256",
        issuer: str | None = None,
    ) -> None:
        self._keys = dict(keys)
        self.algorithm = algorithm
        self.issuer = issuer

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenCodec":
        return cls(
            {
                TokenClass.ACCESS: KeyPair(
                    private_key=settings.ACCESS_TOKEN_PRIVATE_KEY,
                    public_key=settings.ACCESS_TOKEN_PUBLIC_KEY,
                ),
                TokenClass.REFRESH: KeyPair(
                    private_key=settings.REFRESH_TOKEN_PRIVATE_KEY,
                    public_key=settings.REFRESH_TOKEN_PUBLIC_KEY,
                ),
            },
            algorithm=settings.JWT_ALGORITHM,
            issuer=settings.JWT_ISSUER,
        )

    def _key_pair(self, token_class: TokenClass) -> KeyPair:
        return self._keys.get(token_class) or KeyPair()

    def sign(self, token_class: TokenClass, claims: Claims) -> str:
        """
        Sign claims with the private key of ``token_class``.

        Raises:
            SigningError: If the private key is absent or malformed
        """
        try:
            private_key = decode_key_material(self._key_pair(token_class).private_key)
        except KeyConfigError as exc:
            raise SigningError(f"{token_class.value} private key: {exc}") from exc

        try:
            return jwt.encode(claims.to_payload(), private_key, algorithm=self.algorithm)
        except (JOSEError, ValueError, TypeError) as exc:
            raise SigningError(f"{token_class.value} private key rejected: {exc}") from exc

    def verify(
        self,
        token_class: TokenClass,
        token: str,
        *,
        verify_expiry: bool = True,
    ) -> Claims:
        """
        Verify a token's signature with the public key of ``token_class``.

        Args:
            token_class: Expected class of the token
            token: Compact token string, without any scheme prefix
            verify_expiry: Skip only the clock check when False

        Returns:
            Verified claims

        Raises:
            ExpiredTokenError: If ``expires_at`` is not in the future
            SignatureError: If the signature or structure is invalid
            KeyConfigError: If no usable public key is configured
        """
        public_key = decode_key_material(self._key_pair(token_class).public_key)

        if not token or not token.strip():
            raise SignatureError("empty token")

        try:
            payload = jwt.decode(
                token,
                public_key,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                options={"verify_exp": verify_expiry},
            )
        except ExpiredSignatureError as exc:
            raise ExpiredTokenError(str(exc)) from exc
        except JWTError as exc:
            raise SignatureError(str(exc)) from exc
        except JWKError as exc:
            raise KeyConfigError(f"{token_class.value} public key rejected: {exc}") from exc
        except JOSEError as exc:
            raise SignatureError(str(exc)) from exc

        try:
            claims = Claims.model_validate(payload)
        except ValidationError as exc:
            raise SignatureError(f"malformed claims: {exc.error_count()} error(s)") from exc

        if verify_expiry and claims.expires_at <= int(time.time()):
            raise ExpiredTokenError("token has expired")

        return claims


def validate_token_keys(codec: TokenCodec, issuer: str) -> None:
    """
    Sign and verify a probe token for every class.

    Raises:
        TokenConfigError: If any class has missing or mismatched keys
    """
    for token_class in TokenClass:
        probe = new_claims("startup-probe", issuer, timedelta(minutes=1))
        try:
            codec.verify(token_class, codec.sign(token_class, probe))
        except SignatureError as exc:
            raise KeyConfigError(
                f"{token_class.value} public key does not match its private key"
            ) from exc
        logger.info("security.token_keys_validated", token_class=token_class.value)
