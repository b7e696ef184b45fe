import asyncio
import base64
import hashlib
import logging
from uuid import uuid4

import bcrypt
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lexvault.config import settings
from lexvault.context import CallerContext
from lexvault.errors import ErrorKind, ServiceError
from lexvault.models import AuditAction, AuditOutcome, User
from lexvault.schemas import (
    AuditEntry,
    AuthResponse,
    LoginRequest,
    RegisterRequest,
    UserResponse,
)
from lexvault.services.audit import AuditService
from lexvault.services.guard import guarded
from lexvault.services.tokens import TokenAuthority

logger = logging.getLogger(__name__)


def _prehash(password: str) -> bytes:
    # bcrypt only reads 72 bytes; a SHA-256 digest keeps long passwords significant.
    return base64.b64encode(hashlib.sha256(password.encode("utf-8")).digest())


def hash_password(password: str, rounds: int = settings.bcrypt_rounds) -> str:
    return bcrypt.hashpw(_prehash(password), bcrypt.gensalt(rounds=rounds)).decode()


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(_prehash(password), password_hash.encode())
    except ValueError:
        return False


def _user_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        display_name=user.display_name,
        created_at=user.created_at,
    )


class AccountService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        tokens: TokenAuthority,
        audit: AuditService,
        bcrypt_rounds: int = settings.bcrypt_rounds,
        timeout_seconds: float = settings.storage_timeout_seconds,
    ):
        self.session_factory = session_factory
        self.tokens = tokens
        self.audit = audit
        self.bcrypt_rounds = bcrypt_rounds
        self.timeout_seconds = timeout_seconds

    async def _find_by_email(self, email: str) -> User | None:
        async with self.session_factory() as session:
            result = await session.execute(select(User).where(User.email == email))
            return result.scalar_one_or_none()

    async def _insert(self, user: User) -> None:
        async with self.session_factory() as session:
            session.add(user)
            await session.commit()

    async def register(self, ctx: CallerContext, request: RegisterRequest) -> AuthResponse:
        existing = await guarded(
            "Look up user", self._find_by_email(request.email), self.timeout_seconds
        )
        if existing is not None:
            raise ServiceError(ErrorKind.CONFLICT, "An account with this email already exists")

        password_hash = await asyncio.to_thread(
            hash_password, request.password, self.bcrypt_rounds
        )
        user = User(
            id=uuid4(),
            email=request.email,
            password_hash=password_hash,
            display_name=request.display_name,
        )
        try:
            await guarded("Create user", self._insert(user), self.timeout_seconds)
        except ServiceError as e:
            if isinstance(e.__cause__, IntegrityError):
                raise ServiceError(
                    ErrorKind.CONFLICT, "An account with this email already exists"
                ) from e
            raise

        logger.info(f"User {user.id} registered")
        await self.audit.record(
            AuditEntry(
                action=AuditAction.USER_REGISTER,
                resource_type="user",
                resource_id=str(user.id),
                request_id=ctx.request_id,
                client_ip=ctx.client_ip,
                actor_user_id=user.id,
            )
        )
        return AuthResponse(user=_user_response(user), tokens=self.tokens.issue(user.id))

    async def login(self, ctx: CallerContext, request: LoginRequest) -> AuthResponse:
        user = await guarded(
            "Look up user", self._find_by_email(request.email), self.timeout_seconds
        )
        valid = user is not None and await asyncio.to_thread(
            verify_password, request.password, user.password_hash
        )
        if not valid:
            logger.info("Failed login attempt")
            await self.audit.record(
                AuditEntry(
                    action=AuditAction.USER_LOGIN_FAILED,
                    resource_type="user",
                    resource_id=str(user.id) if user is not None else request.email,
                    request_id=ctx.request_id,
                    client_ip=ctx.client_ip,
                    outcome=AuditOutcome.FAILURE,
                    failure_reason="invalid_credentials",
                )
            )
            raise ServiceError(ErrorKind.AUTHENTICATION_FAILED, "Invalid email or password")

        logger.info(f"User {user.id} logged in")
        await self.audit.record(
            AuditEntry(
                action=AuditAction.USER_LOGIN,
                resource_type="user",
                resource_id=str(user.id),
                request_id=ctx.request_id,
                client_ip=ctx.client_ip,
                actor_user_id=user.id,
            )
        )
        return AuthResponse(user=_user_response(user), tokens=self.tokens.issue(user.id))
