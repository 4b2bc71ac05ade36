import os
import uuid
from typing import Callable, Dict, Optional

os.environ.setdefault("HOMESTASH_ENV", "test")
os.environ.setdefault("AUTO_CREATE_SCHEMA", "0")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

import backend.models  # noqa: E402,F401
from backend.db.base import Base  # noqa: E402
from backend.db.session import build_engine, build_sessionmaker, get_session  # noqa: E402
from backend.main import app  # noqa: E402
from backend.models.entities import Membership, User  # noqa: E402
from backend.permissions import ROLE_OWNER, HouseholdContext  # noqa: E402
from backend.security.jwt import create_access_token  # noqa: E402
from backend.services.households import create_household  # noqa: E402


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{(tmp_path / 'homestash.db').as_posix()}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_sessionmaker(engine)


@pytest.fixture
def session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory):
    def _override_session():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_session] = _override_session
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(session_factory) -> Callable[..., User]:
    def _make(email: Optional[str] = None, display_name: Optional[str] = None) -> User:
        address = (email or f"user-{uuid.uuid4().hex[:10]}@example.com").lower()
        with session_factory() as s:
            user = User(email=address, display_name=display_name)
            s.add(user)
            s.commit()
            return user

    return _make


@pytest.fixture
def make_household(session_factory) -> Callable[..., uuid.UUID]:
    """Create a household owned by ``owner``; ``members`` maps extra users to roles."""

    def _make(owner: User, name: str = "Home", members: Optional[Dict[User, str]] = None) -> uuid.UUID:
        with session_factory() as s:
            household, _ = create_household(s, owner, name)
            for member, role in (members or {}).items():
                s.add(Membership(household_id=household.id, user_id=member.id, role=role))
            s.commit()
            return household.id

    return _make


@pytest.fixture
def owner_ctx(make_user, make_household) -> HouseholdContext:
    owner = make_user("owner@example.com")
    household_id = make_household(owner)
    return HouseholdContext(user_id=owner.id, household_id=household_id, role=ROLE_OWNER)


def auth_header(user: User) -> dict[str, str]:
    token, _ = create_access_token(str(user.id))
    return {"Authorization": f"Bearer {token}"}
