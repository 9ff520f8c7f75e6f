from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from auth import AuthenticatedUser, SessionStore
from database import Base
from services import UserService


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_session_lifecycle_create_resolve_revoke() -> None:
    store = SessionStore("test-secret")
    user = AuthenticatedUser(id=1, username="admin")

    cookie = store.create(user)

    assert store.resolve(cookie) == user
    assert store.revoke(cookie) is True
    assert store.resolve(cookie) is None
    assert store.revoke(cookie) is False


def test_session_expires_after_max_age() -> None:
    clock = FakeClock()
    store = SessionStore("test-secret", max_age_hours=1, clock=clock)
    cookie = store.create(AuthenticatedUser(id=1, username="admin"))

    clock.now += 3599
    assert store.resolve(cookie) is not None

    clock.now += 1
    assert store.resolve(cookie) is None
    assert len(store) == 0


def test_expired_sessions_are_purged_on_login() -> None:
    clock = FakeClock()
    store = SessionStore("test-secret", max_age_hours=1, clock=clock)
    store.create(AuthenticatedUser(id=1, username="admin"))

    clock.now += 7200
    store.create(AuthenticatedUser(id=1, username="admin"))

    assert len(store) == 1


def test_forged_or_foreign_cookies_are_rejected() -> None:
    store = SessionStore("test-secret")
    other = SessionStore("other-secret")
    foreign_cookie = other.create(AuthenticatedUser(id=1, username="admin"))

    assert store.resolve(None) is None
    assert store.resolve("") is None
    assert store.resolve("not-a-signed-token") is None
    assert store.resolve(foreign_cookie) is None
    assert store.revoke(foreign_cookie) is False


def test_ensure_user_seeds_once_and_authenticates() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        users = UserService(session)
        first = users.ensure_user("admin", "admin123")
        again = users.ensure_user("admin", "something-else")

        assert again.id == first.id
        assert first.password_hash != "admin123"
        assert users.authenticate("admin", "admin123").id == first.id
        assert users.authenticate("admin", "something-else") is None
        assert users.authenticate("nobody", "admin123") is None
