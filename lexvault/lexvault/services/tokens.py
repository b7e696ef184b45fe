"""Access/refresh token lifecycle: issue, verify, rotate, revoke."""

import asyncio
import enum
import logging
import time
from dataclasses import dataclass
from functools import partial
from typing import Any
from uuid import UUID, uuid4

import jwt
from redis.exceptions import RedisError

from lexvault.config import Settings, settings
from lexvault.context import CallerContext
from lexvault.errors import ErrorKind, ServiceError, storage_unavailable
from lexvault.models import AuditAction, AuditOutcome
from lexvault.schemas import AuditEntry, TokenPair
from lexvault.services.audit import AuditService
from lexvault.stores.revocation import RevocationStore

logger = logging.getLogger(__name__)


class TokenType(str, enum.Enum):
    ACCESS = "access"
    REFRESH = "refresh"


@dataclass(frozen=True)
class TokenClaims:
    user_id: UUID
    jti: str
    type: TokenType
    expires_at: int

    @property
    def remaining_seconds(self) -> int:
        return max(0, self.expires_at - int(time.time()))


class TokenAuthority:
    def __init__(
        self,
        revocations: RevocationStore,
        config: Settings = settings,
        audit: AuditService | None = None,
    ):
        self.revocations = revocations
        self.secret = config.jwt_secret
        self.algorithm = config.jwt_algorithm
        self.issuer = config.jwt_issuer
        self.audience = config.jwt_audience
        self.access_ttl = config.access_token_ttl_seconds
        self.refresh_ttl = config.refresh_token_ttl_seconds
        self.audit = audit
        # In-flight rotations keyed by refresh jti.
        self._pending_refreshes: dict[str, asyncio.Future[TokenPair]] = {}

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def _sign(self, user_id: UUID, token_type: TokenType, ttl_seconds: int) -> str:
        now = int(time.time())
        payload = {
            "sub": str(user_id),
            "jti": uuid4().hex,
            "type": token_type.value,
            "iat": now,
            "exp": now + ttl_seconds,
            "iss": self.issuer,
            "aud": self.audience,
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def issue(self, user_id: UUID) -> TokenPair:
        """Mint a fresh access/refresh pair."""
        return TokenPair(
            access_token=self._sign(user_id, TokenType.ACCESS, self.access_ttl),
            refresh_token=self._sign(user_id, TokenType.REFRESH, self.refresh_ttl),
        )

    # ------------------------------------------------------------------
    # Decode / verify
    # ------------------------------------------------------------------

    def _decode(self, token: str, expected: TokenType) -> TokenClaims:
        try:
            payload: dict[str, Any] = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                options={"require": ["sub", "jti", "type", "exp"]},
            )
        except jwt.ExpiredSignatureError as e:
            logger.info(f"Rejected expired {expected.value} token")
            raise ServiceError(ErrorKind.TOKEN_EXPIRED, "Token has expired") from e
        except jwt.InvalidTokenError as e:
            logger.info(f"Rejected invalid {expected.value} token: {type(e).__name__}")
            raise ServiceError(ErrorKind.TOKEN_INVALID, "Invalid token") from e

        if payload.get("type") != expected.value:
            logger.info(f"Rejected token with type={payload.get('type')!r}, expected {expected.value}")
            raise ServiceError(ErrorKind.TOKEN_INVALID, "Invalid token type")

        try:
            user_id = UUID(payload["sub"])
        except (TypeError, ValueError) as e:
            raise ServiceError(ErrorKind.TOKEN_INVALID, "Invalid token subject") from e

        return TokenClaims(
            user_id=user_id,
            jti=str(payload["jti"]),
            type=expected,
            expires_at=int(payload["exp"]),
        )

    def verify(self, token: str) -> TokenClaims:
        """Validate an access token presented on an authenticated request."""
        return self._decode(token, TokenType.ACCESS)

    # ------------------------------------------------------------------
    # Refresh (rotation)
    # ------------------------------------------------------------------

    async def refresh(self, refresh_token: str, ctx: CallerContext | None = None) -> TokenPair:
        """
        Rotate a refresh token into a new pair.

        Concurrent calls presenting the same refresh token share one rotation,
        so every one of them receives the identical new pair.
        """
        claims = self._decode(refresh_token, TokenType.REFRESH)

        pending = self._pending_refreshes.get(claims.jti)
        if pending is None:
            pending = asyncio.ensure_future(self._rotate(claims, ctx))
            self._pending_refreshes[claims.jti] = pending
            pending.add_done_callback(partial(self._rotation_done, claims.jti))
        else:
            logger.debug(f"Joining in-flight rotation for refresh token {claims.jti}")

        # Shielded so one cancelled caller does not cancel the shared rotation.
        return await asyncio.shield(pending)

    def _rotation_done(self, jti: str, future: asyncio.Future[TokenPair]) -> None:
        self._pending_refreshes.pop(jti, None)
        # Mark the outcome retrieved even when every waiting caller was cancelled.
        if not future.cancelled():
            future.exception()

    async def _rotate(self, claims: TokenClaims, ctx: CallerContext | None) -> TokenPair:
        try:
            revoked_now = await self.revocations.revoke_if_absent(
                claims.jti, claims.remaining_seconds
            )
        except RedisError as e:
            logger.error(f"Revocation store unavailable during refresh: {e}")
            raise storage_unavailable("Token store is temporarily unavailable") from e

        if not revoked_now:
            logger.error(
                f"Refresh token reuse detected: jti={claims.jti} user={claims.user_id}. "
                "Possible token theft or replay."
            )
            await self._audit(
                AuditAction.USER_TOKEN_REUSE,
                claims,
                ctx,
                outcome=AuditOutcome.FAILURE,
                failure_reason="refresh_token_reused",
            )
            raise ServiceError(ErrorKind.TOKEN_REUSED, "Refresh token has already been used")

        pair = self.issue(claims.user_id)
        logger.info(f"Rotated refresh token for user {claims.user_id}")
        await self._audit(AuditAction.USER_TOKEN_REFRESH, claims, ctx)
        return pair

    # ------------------------------------------------------------------
    # Revoke (logout)
    # ------------------------------------------------------------------

    async def revoke(self, refresh_token: str, ctx: CallerContext | None = None) -> None:
        """Revoke a refresh token. Expired or unreadable tokens are a no-op."""
        try:
            claims = self._decode(refresh_token, TokenType.REFRESH)
        except ServiceError as e:
            logger.debug(f"Nothing to revoke: {e.kind.name}")
            return

        try:
            await self.revocations.revoke(claims.jti, claims.remaining_seconds)
        except RedisError as e:
            logger.error(f"Revocation store unavailable during logout: {e}")
            raise storage_unavailable("Token store is temporarily unavailable") from e

        logger.info(f"Revoked refresh token for user {claims.user_id}")
        await self._audit(AuditAction.USER_LOGOUT, claims, ctx)

    async def _audit(
        self,
        action: AuditAction,
        claims: TokenClaims,
        ctx: CallerContext | None,
        outcome: AuditOutcome = AuditOutcome.SUCCESS,
        failure_reason: str | None = None,
    ) -> None:
        if self.audit is None:
            return
        ctx = ctx or CallerContext(user_id=claims.user_id)
        await self.audit.record(
            AuditEntry(
                action=action,
                resource_type="token",
                resource_id=claims.jti,
                request_id=ctx.request_id,
                client_ip=ctx.client_ip,
                actor_user_id=ctx.user_id or claims.user_id,
                outcome=outcome,
                failure_reason=failure_reason,
            )
        )
