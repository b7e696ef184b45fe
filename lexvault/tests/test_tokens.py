import asyncio
import gc
from uuid import uuid4

import pytest

from lexvault.context import CallerContext
from lexvault.errors import ErrorKind, ServiceError
from lexvault.models import AuditAction, AuditOutcome
from lexvault.services.tokens import TokenAuthority, TokenType
from tests.helpers import audit_records


@pytest.fixture
def authority(services) -> TokenAuthority:
    return services.tokens


# =============================================================================
# issue / verify
# =============================================================================


class TestIssueAndVerify:
    def test_access_token_round_trip(self, authority) -> None:
        user_id = uuid4()
        pair = authority.issue(user_id)

        claims = authority.verify(pair.access_token)

        assert claims.user_id == user_id
        assert claims.type is TokenType.ACCESS
        assert claims.remaining_seconds > 0

    def test_pair_has_distinct_token_ids(self, authority) -> None:
        pair = authority.issue(uuid4())
        access = authority._decode(pair.access_token, TokenType.ACCESS)
        refresh = authority._decode(pair.refresh_token, TokenType.REFRESH)
        assert access.jti != refresh.jti

    def test_refresh_token_is_not_an_access_token(self, authority) -> None:
        pair = authority.issue(uuid4())
        with pytest.raises(ServiceError) as exc_info:
            authority.verify(pair.refresh_token)
        assert exc_info.value.kind is ErrorKind.TOKEN_INVALID

    def test_expired_access_token(self, revocations, config) -> None:
        expired = TokenAuthority(
            revocations, config=config.model_copy(update={"access_token_ttl_seconds": -60})
        )
        pair = expired.issue(uuid4())
        with pytest.raises(ServiceError) as exc_info:
            expired.verify(pair.access_token)
        assert exc_info.value.kind is ErrorKind.TOKEN_EXPIRED
        assert exc_info.value.status_code == 401

    def test_token_signed_with_other_secret(self, authority, revocations, config) -> None:
        forger = TokenAuthority(
            revocations, config=config.model_copy(update={"jwt_secret": "x" * 40})
        )
        pair = forger.issue(uuid4())
        with pytest.raises(ServiceError) as exc_info:
            authority.verify(pair.access_token)
        assert exc_info.value.kind is ErrorKind.TOKEN_INVALID

    def test_garbage_token(self, authority) -> None:
        with pytest.raises(ServiceError) as exc_info:
            authority.verify("not-a-jwt")
        assert exc_info.value.kind is ErrorKind.TOKEN_INVALID


# =============================================================================
# refresh (rotation)
# =============================================================================


@pytest.mark.asyncio
async def test_refresh_rotates_and_consumes_token(authority, revocations, session_factory) -> None:
    user_id = uuid4()
    pair = authority.issue(user_id)

    rotated = await authority.refresh(pair.refresh_token)

    assert rotated.refresh_token != pair.refresh_token
    assert authority.verify(rotated.access_token).user_id == user_id
    consumed = authority._decode(pair.refresh_token, TokenType.REFRESH)
    assert await revocations.is_revoked(consumed.jti)
    assert len(await audit_records(session_factory, AuditAction.USER_TOKEN_REFRESH)) == 1


@pytest.mark.asyncio
async def test_reusing_consumed_refresh_token_is_detected(authority, session_factory) -> None:
    pair = authority.issue(uuid4())
    await authority.refresh(pair.refresh_token)

    with pytest.raises(ServiceError) as exc_info:
        await authority.refresh(pair.refresh_token)

    assert exc_info.value.kind is ErrorKind.TOKEN_REUSED
    reuse = await audit_records(session_factory, AuditAction.USER_TOKEN_REUSE)
    assert len(reuse) == 1
    assert reuse[0].outcome is AuditOutcome.FAILURE


@pytest.mark.asyncio
async def test_concurrent_refresh_shares_one_rotation(authority, session_factory) -> None:
    pair = authority.issue(uuid4())

    results = await asyncio.gather(*(authority.refresh(pair.refresh_token) for _ in range(5)))

    assert len({r.refresh_token for r in results}) == 1
    assert len({r.access_token for r in results}) == 1
    assert authority._pending_refreshes == {}
    assert len(await audit_records(session_factory, AuditAction.USER_TOKEN_REFRESH)) == 1


@pytest.mark.asyncio
async def test_abandoned_rotation_failure_is_not_reported_unhandled(authority, monkeypatch) -> None:
    release = asyncio.Event()

    async def slow_revoke(jti, ttl_seconds):
        await release.wait()
        return False

    monkeypatch.setattr(authority.revocations, "revoke_if_absent", slow_revoke)
    pair = authority.issue(uuid4())
    loop = asyncio.get_running_loop()
    unhandled: list[dict] = []
    loop.set_exception_handler(lambda loop, context: unhandled.append(context))
    try:
        caller = asyncio.ensure_future(authority.refresh(pair.refresh_token))
        await asyncio.sleep(0)
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller

        release.set()
        while authority._pending_refreshes:
            await asyncio.sleep(0)
        gc.collect()
    finally:
        loop.set_exception_handler(None)

    assert unhandled == []


@pytest.mark.asyncio
async def test_refresh_rejects_access_token(authority) -> None:
    pair = authority.issue(uuid4())
    with pytest.raises(ServiceError) as exc_info:
        await authority.refresh(pair.access_token)
    assert exc_info.value.kind is ErrorKind.TOKEN_INVALID


# =============================================================================
# revoke (logout)
# =============================================================================


@pytest.mark.asyncio
async def test_revoked_token_can_not_refresh(authority, session_factory) -> None:
    user_id = uuid4()
    pair = authority.issue(user_id)
    ctx = CallerContext(user_id=None, request_id="req-logout")

    await authority.revoke(pair.refresh_token, ctx)

    with pytest.raises(ServiceError) as exc_info:
        await authority.refresh(pair.refresh_token)
    assert exc_info.value.kind is ErrorKind.TOKEN_REUSED
    logout = await audit_records(session_factory, AuditAction.USER_LOGOUT)
    assert len(logout) == 1
    assert logout[0].actor_user_id == user_id


@pytest.mark.asyncio
async def test_revoking_expired_token_is_noop(revocations, config) -> None:
    expired = TokenAuthority(
        revocations, config=config.model_copy(update={"refresh_token_ttl_seconds": -60})
    )
    pair = expired.issue(uuid4())

    await expired.revoke(pair.refresh_token)

    assert revocations.revoked == {}


@pytest.mark.asyncio
async def test_revoking_garbage_is_noop(authority, revocations) -> None:
    await authority.revoke("definitely-not-a-token")
    assert revocations.revoked == {}
