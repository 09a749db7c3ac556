import pytest
from pydantic import ValidationError

from checkin_service.core.config import Settings


def test_cache_ttl_tiers_must_be_ordered():
    with pytest.raises(ValidationError):
        Settings(CAPACITY_CACHE_TTL_SECONDS=60, STATS_CACHE_TTL_SECONDS=30)

    with pytest.raises(ValidationError):
        Settings(STATS_CACHE_TTL_SECONDS=120, SESSION_CACHE_TTL_SECONDS=60)


def test_default_ttl_tiers_are_valid():
    settings = Settings()

    assert (
        settings.CAPACITY_CACHE_TTL_SECONDS
        < settings.STATS_CACHE_TTL_SECONDS
        < settings.SESSION_CACHE_TTL_SECONDS
        <= settings.PARTICIPANT_CACHE_TTL_SECONDS
    )


def test_event_sink_backend_is_validated():
    with pytest.raises(ValidationError):
        Settings(EVENT_SINK_BACKEND="kafka")


def test_database_url_follows_env():
    assert Settings(ENV="prod").DATABASE_URL == Settings(ENV="prod").DATABASE_URL_PROD
    local = Settings(ENV="local", DATABASE_URL_LOCAL="sqlite:///./dev.db")
    assert local.DATABASE_URL == "sqlite:///./dev.db"
