from __future__ import annotations

import datetime as dt
import logging
from types import SimpleNamespace
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from authcore.core.clock import as_utc
from authcore.core.exceptions import StoreUnavailable, Unauthorized, UnauthorizedReason
from authcore.core.logging import AUDIT_LOGGER_NAME
from authcore.core.security import hash_refresh_token
from authcore.db.unit_of_work import UnitOfWork
from authcore.models.refresh_token import RefreshToken
from authcore.services.logout import SessionTerminator
from authcore.services.tokens import REUSE_REVOCATION_ATTEMPTS, RefreshPolicy, TokenRotationEngine


def _row(db, raw: str) -> RefreshToken:  # noqa: ANN001
    db.expire_all()
    return db.query(RefreshToken).filter(RefreshToken.token_hash == hash_refresh_token(raw)).one()


def _rotate(engine: TokenRotationEngine, raw: str):  # noqa: ANN202
    return engine.rotate(raw, user_agent="pytest-agent", ip_address="203.0.113.10")


def _issue(engine: TokenRotationEngine, user):  # noqa: ANN001, ANN202
    return engine.issue_new_session(user, user_agent="pytest-agent", ip_address="203.0.113.10")


def test_new_session_stores_only_the_hash(db, user, make_engine, clock) -> None:  # noqa: ANN001
    engine = make_engine(db)

    pair = _issue(engine, user)

    row = _row(db, pair.refresh_token)
    assert row.token_hash != pair.refresh_token
    assert row.user_id == user.id
    assert row.user_agent == "pytest-agent"
    assert row.ip_address == "203.0.113.10"
    assert row.is_active_at(clock())
    assert pair.access_token


def test_family_ceiling_binds_the_first_token(db, user, make_engine, clock) -> None:  # noqa: ANN001
    engine = make_engine(db, token_minutes=60, family_minutes=30)

    pair = _issue(engine, user)

    assert pair.refresh_expires_at == clock() + dt.timedelta(minutes=30)
    row = _row(db, pair.refresh_token)
    assert as_utc(row.expires_at) == clock() + dt.timedelta(minutes=30)
    assert as_utc(row.family_expires_at) == clock() + dt.timedelta(minutes=30)


def test_token_lifetime_binds_when_family_is_longer(db, user, make_engine, clock) -> None:  # noqa: ANN001
    engine = make_engine(db, token_minutes=10, family_minutes=60)

    pair = _issue(engine, user)

    assert pair.refresh_expires_at == clock() + dt.timedelta(minutes=10)


def test_refresh_hashes_are_unique_across_sessions_and_rotations(db, user, make_engine) -> None:  # noqa: ANN001
    engine = make_engine(db)
    for _ in range(3):
        raw = _issue(engine, user).refresh_token
        for _ in range(3):
            raw = _rotate(engine, raw).refresh_token

    hashes = [row.token_hash for row in db.query(RefreshToken).all()]
    assert len(hashes) == 12
    assert len(set(hashes)) == len(hashes)


def test_rotation_consumes_old_token_and_links_successor(db, user, make_engine, clock) -> None:  # noqa: ANN001
    engine = make_engine(db)
    first = _issue(engine, user)
    clock.advance(minutes=5)

    second = _rotate(engine, first.refresh_token)

    old = _row(db, first.refresh_token)
    new = _row(db, second.refresh_token)
    assert second.refresh_token != first.refresh_token
    assert old.replaced_by_hash == new.token_hash
    assert old.revoked_at is not None
    assert not old.is_active_at(clock())
    assert new.is_active_at(clock())
    assert new.family_id == old.family_id
    assert as_utc(new.created_at) == clock()


def test_chain_shares_one_family_and_one_ceiling(db, user, make_engine, clock) -> None:  # noqa: ANN001
    engine = make_engine(db, token_minutes=20, family_minutes=120)
    raw = _issue(engine, user).refresh_token
    ceilings = []

    for _ in range(4):
        clock.advance(minutes=15)
        pair = _rotate(engine, raw)
        raw = pair.refresh_token
        ceilings.append(as_utc(_row(db, raw).family_expires_at))

    rows = db.query(RefreshToken).all()
    assert len({row.family_id for row in rows}) == 1
    assert len({as_utc(row.family_expires_at) for row in rows}) == 1
    assert ceilings == sorted(ceilings, reverse=True)


def test_successor_expiry_is_clamped_to_family_ceiling(db, user, make_engine, clock) -> None:  # noqa: ANN001
    engine = make_engine(db, token_minutes=60, family_minutes=90)
    first = _issue(engine, user)
    clock.advance(minutes=50)

    second = _rotate(engine, first.refresh_token)

    family_expires_at = as_utc(_row(db, first.refresh_token).family_expires_at)
    assert second.refresh_expires_at == family_expires_at
    assert second.refresh_expires_at < clock() + dt.timedelta(minutes=60)


def test_successor_copies_the_presented_token_family_ceiling(db, user, make_engine, make_refresh_row, clock) -> None:  # noqa: ANN001
    family_id = uuid4()
    now = clock()
    presented = make_refresh_row(
        user,
        raw="presented",
        family_id=family_id,
        created_at=now - dt.timedelta(minutes=10),
        family_expires_at=now + dt.timedelta(hours=5),
    )
    sibling = make_refresh_row(
        user,
        raw="sibling",
        family_id=family_id,
        created_at=now - dt.timedelta(minutes=1),
        family_expires_at=now + dt.timedelta(hours=2),
    )
    db.add_all([presented, sibling])
    db.commit()

    pair = _rotate(make_engine(db), "presented")

    parent = _row(db, "presented")
    successor = _row(db, pair.refresh_token)
    assert as_utc(successor.family_expires_at) == as_utc(parent.family_expires_at)
    assert as_utc(successor.family_expires_at) == now + dt.timedelta(hours=5)


def test_unknown_secret_is_rejected(db, user, make_engine) -> None:  # noqa: ANN001
    engine = make_engine(db)
    _issue(engine, user)

    with pytest.raises(Unauthorized) as exc_info:
        _rotate(engine, "tampered-secret")

    assert exc_info.value.reason is UnauthorizedReason.invalid_refresh_token
    assert exc_info.value.status_code == 401


def test_reusing_a_replaced_token_revokes_the_whole_family(db, user, make_engine, clock, caplog) -> None:  # noqa: ANN001
    engine = make_engine(db)
    first = _issue(engine, user)
    second = _rotate(engine, first.refresh_token)

    with caplog.at_level(logging.WARNING, logger=AUDIT_LOGGER_NAME):
        with pytest.raises(Unauthorized) as exc_info:
            _rotate(engine, first.refresh_token)

    assert exc_info.value.reason is UnauthorizedReason.refresh_token_reused
    assert not _row(db, second.refresh_token).is_active_at(clock())
    assert any("reuse detected" in record.getMessage() for record in caplog.records)

    with pytest.raises(Unauthorized) as follow_up:
        _rotate(engine, second.refresh_token)
    assert follow_up.value.reason is UnauthorizedReason.refresh_token_inactive


def test_sequential_chain_leaves_only_latest_token_active(db, user, make_engine, clock) -> None:  # noqa: ANN001
    engine = make_engine(db)
    token_a = _issue(engine, user).refresh_token
    token_b = _rotate(engine, token_a).refresh_token
    token_c = _rotate(engine, token_b).refresh_token

    assert not _row(db, token_a).is_active_at(clock())
    assert not _row(db, token_b).is_active_at(clock())
    assert _row(db, token_c).is_active_at(clock())

    for stale in (token_a, token_b):
        with pytest.raises(Unauthorized) as exc_info:
            _rotate(engine, stale)
        assert exc_info.value.reason is UnauthorizedReason.refresh_token_reused

    # Presenting a consumed token is treated as theft, so the live successor goes too.
    assert not _row(db, token_c).is_active_at(clock())


def test_expired_token_is_rejected(db, user, make_engine, clock) -> None:  # noqa: ANN001
    engine = make_engine(db, token_minutes=10, family_minutes=60)
    pair = _issue(engine, user)
    clock.advance(minutes=11)

    with pytest.raises(Unauthorized) as exc_info:
        _rotate(engine, pair.refresh_token)

    assert exc_info.value.reason is UnauthorizedReason.refresh_token_inactive
    assert db.query(RefreshToken).count() == 1


def test_expired_family_is_rejected(db, user, make_engine, clock) -> None:  # noqa: ANN001
    engine = make_engine(db, token_minutes=60, family_minutes=30)
    pair = _issue(engine, user)
    clock.advance(minutes=31)

    with pytest.raises(Unauthorized) as exc_info:
        _rotate(engine, pair.refresh_token)

    assert exc_info.value.reason is UnauthorizedReason.refresh_token_inactive


def test_token_revoked_by_logout_cannot_be_rotated(db, user, make_engine, clock) -> None:  # noqa: ANN001
    engine = make_engine(db)
    pair = _issue(engine, user)
    SessionTerminator(UnitOfWork(db, clock=clock)).logout(pair.refresh_token)

    with pytest.raises(Unauthorized) as exc_info:
        _rotate(engine, pair.refresh_token)

    assert exc_info.value.reason is UnauthorizedReason.refresh_token_inactive


def test_failed_commit_leaves_old_token_active_and_no_successor(db, user, make_engine, clock, monkeypatch) -> None:  # noqa: ANN001
    engine = make_engine(db)
    pair = _issue(engine, user)

    def failing_commit() -> None:
        raise OperationalError("COMMIT", {}, Exception("server closed the connection"))

    monkeypatch.setattr(db, "commit", failing_commit)
    with pytest.raises(StoreUnavailable):
        _rotate(engine, pair.refresh_token)
    monkeypatch.undo()

    rows = db.query(RefreshToken).all()
    assert len(rows) == 1
    assert rows[0].token_hash == hash_refresh_token(pair.refresh_token)
    assert rows[0].is_active_at(clock())
    assert rows[0].replaced_by_hash is None

    retried = _rotate(engine, pair.refresh_token)
    assert _row(db, retried.refresh_token).is_active_at(clock())
    assert db.query(RefreshToken).count() == 2


def test_client_metadata_is_clipped_to_column_size(db, user, make_engine) -> None:  # noqa: ANN001
    engine = make_engine(db)

    pair = engine.issue_new_session(user, user_agent="x" * 700, ip_address="1" * 80)

    row = _row(db, pair.refresh_token)
    assert len(row.user_agent) == 500
    assert len(row.ip_address) == 45


class _FlakyStore:
    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.revoke_calls = 0
        self.row = SimpleNamespace(id=uuid4(), user_id=uuid4(), family_id=uuid4(), is_replaced=True)

    def find_by_hash(self, _token_hash: str):  # noqa: ANN202
        return self.row

    def mark_family_revoked(self, _family_id) -> int:  # noqa: ANN001
        self.revoke_calls += 1
        if self.revoke_calls <= self.failures:
            raise StoreUnavailable(operation="mark_family_revoked")
        return 2


class _FakeUow:
    def __init__(self, store: _FlakyStore) -> None:
        self.refresh_tokens = store
        self.discarded = 0

    def save_changes(self) -> None:
        return None

    def discard(self) -> None:
        self.discarded += 1


def _engine_with(store: _FlakyStore, issuer) -> TokenRotationEngine:  # noqa: ANN001
    policy = RefreshPolicy(token_lifetime=dt.timedelta(hours=1), family_lifetime=dt.timedelta(days=1))
    return TokenRotationEngine(_FakeUow(store), issuer, policy=policy)


def test_reuse_revocation_retries_transient_store_failures(issuer) -> None:  # noqa: ANN001
    store = _FlakyStore(failures=REUSE_REVOCATION_ATTEMPTS - 1)

    with pytest.raises(Unauthorized) as exc_info:
        _rotate(_engine_with(store, issuer), "stolen")

    assert exc_info.value.reason is UnauthorizedReason.refresh_token_reused
    assert store.revoke_calls == REUSE_REVOCATION_ATTEMPTS


def test_reuse_revocation_gives_up_after_bounded_attempts(issuer) -> None:  # noqa: ANN001
    store = _FlakyStore(failures=REUSE_REVOCATION_ATTEMPTS + 5)

    with pytest.raises(StoreUnavailable):
        _rotate(_engine_with(store, issuer), "stolen")

    assert store.revoke_calls == REUSE_REVOCATION_ATTEMPTS
