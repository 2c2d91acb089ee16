from __future__ import annotations

import base64
import datetime as dt
import sys
from pathlib import Path
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker


BASE_DIR = Path(__file__).resolve().parents[1]
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

from authcore.core.config import settings  # noqa: E402
from authcore.core.keys import SigningKeyProvider  # noqa: E402
from authcore.core.security import AccessTokenIssuer, hash_password, hash_refresh_token  # noqa: E402
from authcore.db.base import Base  # noqa: E402
from authcore.db.unit_of_work import UnitOfWork  # noqa: E402
from authcore.models import RefreshToken, User  # noqa: E402
from authcore.services.tokens import RefreshPolicy, TokenRotationEngine  # noqa: E402

TEST_SIGNING_KEY = base64.b64encode(b"authcore-test-signing-key-32byte").decode("ascii")
TEST_PASSWORD = "correct horse battery staple"


class FrozenClock:
    """Starts at the real current time so signed tokens still pass exp/nbf checks."""

    def __init__(self, start: dt.datetime | None = None) -> None:
        self.now = start or dt.datetime.now(dt.timezone.utc).replace(microsecond=0)

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, **kwargs) -> dt.datetime:  # noqa: ANN003
        self.now = self.now + dt.timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def sqlite_engine(tmp_path):  # noqa: ANN001
    engine = create_engine(f"sqlite:///{tmp_path / 'authcore.db'}")
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def session_factory(sqlite_engine):  # noqa: ANN001
    return sessionmaker(bind=sqlite_engine, autoflush=False)


@pytest.fixture
def db(session_factory):  # noqa: ANN001
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def key_provider() -> SigningKeyProvider:
    return SigningKeyProvider(configured_key=TEST_SIGNING_KEY, environ={})


@pytest.fixture
def issuer(key_provider, clock) -> AccessTokenIssuer:  # noqa: ANN001
    return AccessTokenIssuer.from_settings(key_provider, settings, clock=clock)


@pytest.fixture
def user(db) -> User:  # noqa: ANN001
    account = User(
        email="ada@example.com",
        user_name="ada",
        org_id=uuid4(),
        roles=["admin", "agent"],
        claims={"full_name": "Ada Lovelace", "tenant": "acme"},
        password_hash=hash_password(TEST_PASSWORD),
        email_confirmed=True,
    )
    db.add(account)
    db.commit()
    return account


@pytest.fixture
def make_engine(issuer, clock):  # noqa: ANN001
    def _make(session, *, token_minutes: int = 60, family_minutes: int = 24 * 60) -> TokenRotationEngine:  # noqa: ANN001
        policy = RefreshPolicy(
            token_lifetime=dt.timedelta(minutes=token_minutes),
            family_lifetime=dt.timedelta(minutes=family_minutes),
        )
        return TokenRotationEngine(UnitOfWork(session, clock=clock), issuer, policy=policy, clock=clock)

    return _make


@pytest.fixture
def make_refresh_row(clock):  # noqa: ANN001
    def _make(
        owner: User,
        *,
        raw: str | None = None,
        family_id=None,  # noqa: ANN001
        created_at: dt.datetime | None = None,
        expires_at: dt.datetime | None = None,
        family_expires_at: dt.datetime | None = None,
        revoked_at: dt.datetime | None = None,
    ) -> RefreshToken:
        now = clock()
        return RefreshToken(
            id=uuid4(),
            user_id=owner.id,
            token_hash=hash_refresh_token(raw or uuid4().hex),
            family_id=family_id or uuid4(),
            created_at=created_at or now,
            expires_at=expires_at or now + dt.timedelta(hours=1),
            family_expires_at=family_expires_at or now + dt.timedelta(days=1),
            revoked_at=revoked_at,
            user_agent="pytest",
            ip_address="203.0.113.10",
        )

    return _make
