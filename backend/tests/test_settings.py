import pytest

from tourbook.core.settings import Settings, get_settings
from tourbook.db.session import DatabaseManager


def test_allowed_origins_from_comma_list():
    settings = Settings(ALLOWED_ORIGINS="http://a.example, http://b.example,")
    assert settings.ALLOWED_ORIGINS == ["http://a.example", "http://b.example"]


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("MAX_PAGE_LIMIT", "50")
    monkeypatch.setenv("ENVIRONMENT", "Production")

    settings = Settings()

    assert settings.MAX_PAGE_LIMIT == 50
    assert settings.is_production


def test_settings_are_cached():
    assert get_settings() is get_settings()


@pytest.mark.parametrize("url, expected", [
    ("postgres://u:p@db:5432/tours", "postgresql+asyncpg://u:p@db:5432/tours"),
    ("postgresql://u:p@db/tours", "postgresql+asyncpg://u:p@db/tours"),
    ("sqlite:///./tours.db", "sqlite+aiosqlite:///./tours.db"),
    ("sqlite://", "sqlite+aiosqlite://"),
])
def test_database_url_drivers(url, expected):
    assert DatabaseManager(Settings(DB_URL=url))._prepare_database_url() == expected


@pytest.mark.parametrize("url", ["", "not a url"])
def test_database_url_rejected(url):
    with pytest.raises(ValueError):
        DatabaseManager(Settings(DB_URL=url))._prepare_database_url()


async def test_health_check(db_manager):
    health = await db_manager.health_check()

    assert health["status"] == "healthy"
    assert health["checks"]["connectivity"]["status"] == "pass"
