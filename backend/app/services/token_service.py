"""Token lifecycle: issuance at login, rotation at refresh, revocation at logout.

A token is accepted only while both hold:
- its signature and expiry verify at the codec, and
- its session entry is still present in the session store.
"""

from dataclasses import dataclass
from datetime import timedelta

import structlog

from app.core.config import Settings
from app.core.errors import (
    BadRequestError,
    ExpiredTokenError,
    TokenConfigError,
    TokenError,
    UnauthorizedError,
)
from app.core.security import TokenCodec
from app.models.user import User
from app.schemas.token import Claims, TokenClass, new_claims
from app.schemas.user import UserLogin
from app.services.session_store import SessionEntry, SessionStore
from app.services.user_directory import UserDirectory

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class TokenPair:
    """Access and refresh tokens issued together, with their claims."""

    access_token: str
    refresh_token: str
    access_claims: Claims
    refresh_claims: Claims


@dataclass(frozen=True)
class LoginResult:
    user: User
    tokens: TokenPair


@dataclass(frozen=True)
class AccessContext:
    """Outcome of a successful access-token verification."""

    user_id: str
    claims: Claims


class TokenService:
    def __init__(
        self,
        codec: TokenCodec,
        store: SessionStore,
        users: UserDirectory,
        *,
        issuer: str,
        access_ttl_minutes: int,
        refresh_ttl_minutes: int,
    ) -> None:
        self.codec = codec
        self.store = store
        self.users = users
        self.issuer = issuer
        self.access_ttl = timedelta(minutes=access_ttl_minutes)
        self.refresh_ttl = timedelta(minutes=refresh_ttl_minutes)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: SessionStore,
        users: UserDirectory,
        codec: TokenCodec | None = None,
    ) -> "TokenService":
        return cls(
            codec or TokenCodec.from_settings(settings),
            store,
            users,
            issuer=settings.JWT_ISSUER,
            access_ttl_minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES,
            refresh_ttl_minutes=settings.REFRESH_TOKEN_EXPIRE_MINUTES,
        )

    def _mint_pair(self, subject: str) -> TokenPair:
        access_claims = new_claims(subject, self.issuer, self.access_ttl)
        refresh_claims = new_claims(subject, self.issuer, self.refresh_ttl)
        return TokenPair(
            access_token=self.codec.sign(TokenClass.ACCESS, access_claims),
            refresh_token=self.codec.sign(TokenClass.REFRESH, refresh_claims),
            access_claims=access_claims,
            refresh_claims=refresh_claims,
        )

    def _entries(self, pair: TokenPair, user_id: str) -> tuple[SessionEntry, SessionEntry]:
        return (
            SessionEntry(pair.access_claims.token_id, user_id, int(self.access_ttl.total_seconds())),
            SessionEntry(pair.refresh_claims.token_id, user_id, int(self.refresh_ttl.total_seconds())),
        )

    def _verify(self, token_class: TokenClass, token: str, *, verify_expiry: bool = True) -> Claims:
        try:
            return self.codec.verify(token_class, token, verify_expiry=verify_expiry)
        except ExpiredTokenError as exc:
            logger.info("auth.token_expired", token_class=token_class.value)
            raise UnauthorizedError("Invalid token", detail=str(exc)) from exc
        except TokenConfigError as exc:
            logger.error("auth.token_key_misconfigured", token_class=token_class.value, error=str(exc))
            raise UnauthorizedError("Invalid token", detail=str(exc)) from exc
        except TokenError as exc:
            logger.info("auth.token_rejected", token_class=token_class.value, reason=str(exc))
            raise UnauthorizedError("Invalid token", detail=str(exc)) from exc

    async def login(self, credentials: UserLogin) -> LoginResult:
        """
        Verify credentials and issue a new token pair.

        Raises:
            BadRequestError: If email or password is empty
            UnauthorizedError: If the credentials do not verify
            StoreUnavailableError: If either session entry could not be stored
        """
        if not credentials.email.strip() or not credentials.password:
            raise BadRequestError("Email and password are required")

        user = await self.users.verify_credentials(credentials.email.strip(), credentials.password)
        if user is None:
            logger.info("auth.login_failed")
            raise UnauthorizedError("Incorrect email or password")

        user_id = str(user.id)
        pair = self._mint_pair(user.email)
        await self.store.put_pair(*self._entries(pair, user_id))

        logger.info(
            "auth.login_succeeded",
            user_id=user_id,
            access_token_id=pair.access_claims.token_id,
            refresh_token_id=pair.refresh_claims.token_id,
        )
        return LoginResult(user=user, tokens=pair)

    async def refresh(self, refresh_token: str) -> TokenPair:
        """
        Exchange a live refresh token for a brand-new pair.

        The presented refresh token is consumed in the same transaction that
        stores the new pair, so it can be used exactly once.

        Raises:
            UnauthorizedError: If the token is invalid, expired, revoked,
                already used, or its user no longer exists
        """
        if not refresh_token:
            raise UnauthorizedError("Invalid refresh token")

        claims = self._verify(TokenClass.REFRESH, refresh_token)

        user_id = await self.store.get(claims.token_id)
        if user_id is None:
            logger.info("auth.refresh_not_live", token_id=claims.token_id)
            raise UnauthorizedError("Invalid refresh token")

        # Identity comes from the session entry, never from the token's subject
        subject = await self.users.get_subject(user_id)
        if subject is None:
            logger.info("auth.refresh_user_missing", user_id=user_id)
            await self.store.delete(claims.token_id)
            raise UnauthorizedError("Invalid refresh token")

        pair = self._mint_pair(subject)
        access_entry, refresh_entry = self._entries(pair, user_id)
        if not await self.store.rotate(claims.token_id, user_id, access_entry, refresh_entry):
            logger.warning("auth.refresh_reused", token_id=claims.token_id, user_id=user_id)
            raise UnauthorizedError("Invalid refresh token")

        logger.info(
            "auth.refresh_succeeded",
            user_id=user_id,
            consumed_token_id=claims.token_id,
            access_token_id=pair.access_claims.token_id,
            refresh_token_id=pair.refresh_claims.token_id,
        )
        return pair

    async def verify_access(self, access_token: str) -> AccessContext:
        """
        Verify an access token at the codec and confirm its session is live.

        Raises:
            UnauthorizedError: On any failure, including store unavailability
        """
        claims = self._verify(TokenClass.ACCESS, access_token)
        user_id = await self.store.get(claims.token_id)
        if user_id is None:
            raise UnauthorizedError("Invalid token", detail="session entry not live")
        return AccessContext(user_id=user_id, claims=claims)

    async def logout(self, access_token: str) -> None:
        """
        Revoke an access token's session and its paired refresh session.

        The signature must verify, but an expired access token is accepted so
        its still-live refresh token can be revoked. Idempotent.

        Raises:
            UnauthorizedError: If the token is not authentic
        """
        claims = self._verify(TokenClass.ACCESS, access_token, verify_expiry=False)
        refresh_token_id = await self.store.revoke_access(claims.token_id)
        logger.info(
            "auth.logout",
            access_token_id=claims.token_id,
            refresh_token_id=refresh_token_id,
        )
