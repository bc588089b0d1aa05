import os

# settings are cached on first import; test values must be in place before that
os.environ.setdefault("ENVIRONMENT", "development")
os.environ["ENABLE_RATE_LIMITING"] = "false"
os.environ["LOG_FILE"] = ""
os.environ["EMAIL_BACKEND"] = "console"
os.environ["JWT_SECRET"] = "test-secret-with-enough-length-for-hs256"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["DB_AUTO_CREATE"] = "false"

from datetime import datetime, timedelta, timezone
from typing import List, Tuple

import httpx
import pytest

from tourbook import main
from tourbook.core.email import get_mailer
from tourbook.core.security import get_password_hash, sign_token
from tourbook.core.settings import Settings
from tourbook.db.models import Difficulty, Review, Tour, User, UserRole
from tourbook.db.session import DatabaseManager, get_session

PASSWORD = "pass1234"


class FakeMailer:
    """Collects messages instead of sending them"""

    def __init__(self):
        self.outbox: List[Tuple[str, str, str]] = []
        self.fail = False

    async def send(self, to, subject, text):
        if self.fail:
            raise OSError("smtp relay unavailable")
        self.outbox.append((to, subject, text))

    async def send_welcome(self, user, url):
        await self.send(user.email, "welcome", url)

    async def send_password_reset(self, user, url):
        await self.send(user.email, "reset", url)


@pytest.fixture
async def db_manager():
    manager = DatabaseManager(Settings(DB_URL="sqlite://"))
    await manager.initialize()
    await manager.init_db()
    yield manager
    await manager.close()


@pytest.fixture
async def session(db_manager):
    async with db_manager.get_session() as session:
        yield session


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
async def client(db_manager, mailer, monkeypatch):
    async def _get_session():
        async with db_manager.get_session() as session:
            yield session

    app = main.app
    app.dependency_overrides[get_session] = _get_session
    app.dependency_overrides[get_mailer] = lambda: mailer
    monkeypatch.setattr(main, "db_manager", db_manager)

    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db_manager):
    async def _make_user(email="jonas@example.com", role=UserRole.USER, name="Jonas Test", active=True):
        async with db_manager.get_session() as session:
            user = User(
                name=name,
                email=email,
                role=role,
                active=active,
                password_hash=get_password_hash(PASSWORD),
            )
            session.add(user)
            await session.commit()
            await session.refresh(user)
            return user
    return _make_user


@pytest.fixture
def make_tour(db_manager):
    async def _make_tour(name="The Forest Hiker", **overrides):
        values = dict(
            name=name,
            slug=name.lower().replace(" ", "-"),
            duration=5,
            max_group_size=25,
            difficulty=Difficulty.EASY,
            price=397,
            summary="Breathtaking hike through the Canadian Banff National Park",
            image_cover="tour-1-cover.jpg",
        )
        values.update(overrides)
        async with db_manager.get_session() as session:
            tour = Tour(**values)
            session.add(tour)
            await session.commit()
            await session.refresh(tour)
            return tour
    return _make_tour


@pytest.fixture
def make_review(db_manager):
    async def _make_review(tour, user, rating=4.0, text="Great tour"):
        async with db_manager.get_session() as session:
            review = Review(review=text, rating=rating, tour_id=tour.id, user_id=user.id)
            session.add(review)
            await session.commit()
            await session.refresh(review)
            return review
    return _make_review


def auth_headers(user, issued_at=None):
    return {"Authorization": f"Bearer {sign_token(user.id, issued_at=issued_at)}"}


def minutes_ago(minutes):
    return datetime.now(timezone.utc) - timedelta(minutes=minutes)
