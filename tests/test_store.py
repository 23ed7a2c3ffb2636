"""Tests for the in-memory and database OTP stores."""

from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from clinic_otp.models.otp import Base, Channel, OtpEntry
from clinic_otp.otp.errors import (
    AlreadyPendingError,
    ExpiredError,
    MismatchError,
    NotFoundError,
    OtpError,
)
from clinic_otp.otp.store import DatabaseOTPStore, InMemoryOTPStore

PHONE = "+639171234567"
EMAIL = "a@b.com"
TTL = 300


@pytest_asyncio.fixture
async def session_factory():
    """Fresh in-memory database per test."""
    engine = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture(params=["memory", "database"])
async def store(request, clock, fixed_code, session_factory):
    if request.param == "memory":
        return InMemoryOTPStore(clock=clock, code_factory=fixed_code)
    return DatabaseOTPStore(session_factory, clock=clock, code_factory=fixed_code)


# ── Issuance ─────────────────────────────────────────────

@pytest.mark.asyncio
async def test_issue_creates_record(store, clock):
    record = await store.issue(PHONE, Channel.PHONE, TTL)

    assert record.target == PHONE
    assert record.code == "123456"
    assert record.channel is Channel.PHONE
    assert record.issued_at == clock.now
    assert record.expires_at == clock.now + timedelta(seconds=TTL)


@pytest.mark.asyncio
async def test_second_issue_while_pending_is_throttled(store):
    await store.issue(PHONE, Channel.PHONE, TTL)
    with pytest.raises(AlreadyPendingError):
        await store.issue(PHONE, Channel.PHONE, TTL)


@pytest.mark.asyncio
async def test_issue_after_expiry_replaces_record(store, clock):
    first = await store.issue(PHONE, Channel.PHONE, TTL)
    clock.advance(TTL + 1)

    second = await store.issue(PHONE, Channel.PHONE, TTL)
    assert second.issued_at > first.issued_at


@pytest.mark.asyncio
async def test_targets_are_independent(store):
    await store.issue(PHONE, Channel.PHONE, TTL)
    await store.issue(EMAIL, Channel.EMAIL, TTL)
    assert (await store.peek(EMAIL)).channel is Channel.EMAIL


# ── Consumption ──────────────────────────────────────────

@pytest.mark.asyncio
async def test_consume_correct_code_once(store):
    await store.issue(PHONE, Channel.PHONE, TTL)

    record = await store.consume(PHONE, "123456")
    assert record.target == PHONE

    with pytest.raises(NotFoundError):
        await store.consume(PHONE, "123456")


@pytest.mark.asyncio
async def test_wrong_guess_consumes_the_code(store):
    await store.issue(PHONE, Channel.PHONE, TTL)

    with pytest.raises(MismatchError):
        await store.consume(PHONE, "123455")
    with pytest.raises(NotFoundError):
        await store.consume(PHONE, "123456")


@pytest.mark.asyncio
async def test_expired_code_rejected_even_if_correct(store, clock):
    await store.issue(EMAIL, Channel.EMAIL, TTL)
    clock.advance(TTL + 1)

    with pytest.raises(ExpiredError):
        await store.consume(EMAIL, "123456")
    with pytest.raises(NotFoundError):
        await store.consume(EMAIL, "123456")


@pytest.mark.asyncio
async def test_code_still_valid_at_exact_expiry(store, clock):
    await store.issue(PHONE, Channel.PHONE, TTL)
    clock.advance(TTL)
    assert (await store.consume(PHONE, "123456")).code == "123456"


@pytest.mark.asyncio
async def test_consume_unknown_target(store):
    with pytest.raises(NotFoundError):
        await store.consume(PHONE, "123456")


@pytest.mark.asyncio
async def test_supplied_code_whitespace_ignored(store):
    await store.issue(PHONE, Channel.PHONE, TTL)
    await store.consume(PHONE, " 123456 ")


@pytest.mark.asyncio
async def test_non_ascii_guess_is_a_mismatch(store):
    await store.issue(PHONE, Channel.PHONE, TTL)
    with pytest.raises(MismatchError):
        await store.consume(PHONE, "１２３４５６")


# ── Peek / discard / purge ───────────────────────────────

@pytest.mark.asyncio
async def test_peek_does_not_consume(store):
    await store.issue(PHONE, Channel.PHONE, TTL)

    assert (await store.peek(PHONE)).code == "123456"
    await store.consume(PHONE, "123456")
    assert await store.peek(PHONE) is None


@pytest.mark.asyncio
async def test_peek_hides_expired_record(store, clock):
    await store.issue(PHONE, Channel.PHONE, TTL)
    clock.advance(TTL + 1)

    assert await store.peek(PHONE) is None
    with pytest.raises(NotFoundError):
        await store.consume(PHONE, "123456")


@pytest.mark.asyncio
async def test_discard_only_matching_code(store):
    await store.issue(PHONE, Channel.PHONE, TTL)

    assert await store.discard(PHONE, "999999") is False
    assert await store.peek(PHONE) is not None

    assert await store.discard(PHONE, "123456") is True
    assert await store.peek(PHONE) is None


@pytest.mark.asyncio
async def test_purge_removes_only_expired(store, clock):
    await store.issue(PHONE, Channel.PHONE, 60)
    await store.issue(EMAIL, Channel.EMAIL, 600)
    clock.advance(120)

    assert await store.purge_expired() == 1
    assert await store.peek(EMAIL) is not None


# ── Concurrency ──────────────────────────────────────────

@pytest.mark.asyncio
async def test_concurrent_consume_single_winner(clock, fixed_code):
    store = InMemoryOTPStore(clock=clock, code_factory=fixed_code)
    await store.issue(PHONE, Channel.PHONE, TTL)

    results = await asyncio.gather(
        *(store.consume(PHONE, "123456") for _ in range(20)), return_exceptions=True
    )

    assert sum(not isinstance(r, Exception) for r in results) == 1
    assert sum(isinstance(r, NotFoundError) for r in results) == 19


def test_threaded_consume_single_winner(clock, fixed_code):
    store = InMemoryOTPStore(clock=clock, code_factory=fixed_code)
    asyncio.run(store.issue(PHONE, Channel.PHONE, TTL))

    def attempt(_):
        try:
            asyncio.run(store.consume(PHONE, "123456"))
        except OtpError:
            return False
        return True

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(attempt, range(16)))

    assert results.count(True) == 1


def test_threaded_issue_single_winner(clock, fixed_code):
    store = InMemoryOTPStore(clock=clock, code_factory=fixed_code)

    def attempt(_):
        try:
            asyncio.run(store.issue(PHONE, Channel.PHONE, TTL))
        except AlreadyPendingError:
            return False
        return True

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(attempt, range(16)))

    assert results.count(True) == 1
    assert len(store) == 1


# ── Database specifics ───────────────────────────────────

@pytest.mark.asyncio
async def test_malformed_row_fails_closed(session_factory, clock, fixed_code):
    store = DatabaseOTPStore(session_factory, clock=clock, code_factory=fixed_code)
    async with session_factory() as session:
        session.add(OtpEntry(target=PHONE, code=None, channel="phone"))
        await session.commit()

    with pytest.raises(NotFoundError):
        await store.consume(PHONE, "123456")
    # Row is gone, so a fresh code can be issued
    await store.issue(PHONE, Channel.PHONE, TTL)


@pytest.mark.asyncio
async def test_malformed_row_does_not_block_issue(session_factory, clock, fixed_code):
    store = DatabaseOTPStore(session_factory, clock=clock, code_factory=fixed_code)
    async with session_factory() as session:
        session.add(OtpEntry(target=EMAIL, code="123456", channel="email"))
        await session.commit()

    record = await store.issue(EMAIL, Channel.EMAIL, TTL)
    assert (await store.peek(EMAIL)) == record


@pytest.mark.asyncio
async def test_database_store_shared_between_instances(session_factory, clock, fixed_code):
    issuer = DatabaseOTPStore(session_factory, clock=clock, code_factory=fixed_code)
    verifier = DatabaseOTPStore(session_factory, clock=clock)

    await issuer.issue(PHONE, Channel.PHONE, TTL)
    with pytest.raises(AlreadyPendingError):
        await verifier.issue(PHONE, Channel.PHONE, TTL)
    assert (await verifier.consume(PHONE, "123456")).target == PHONE


@pytest.mark.asyncio
async def test_database_concurrent_consume_single_winner(tmp_path, clock, fixed_code):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'otp.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, expire_on_commit=False)
    try:
        store = DatabaseOTPStore(factory, clock=clock, code_factory=fixed_code)
        await store.issue(PHONE, Channel.PHONE, TTL)

        results = await asyncio.gather(
            *(store.consume(PHONE, "123456") for _ in range(10)), return_exceptions=True
        )
    finally:
        await engine.dispose()

    assert sum(not isinstance(r, Exception) for r in results) == 1
    assert sum(isinstance(r, NotFoundError) for r in results) == 9
