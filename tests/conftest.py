"""
Shared fixtures: registry data, settings pointing at fake URLs, and the
scripted transport.
"""
import pytest

from config.settings import Settings
from plugin_browser.models import CommunityPlugin
from fakes import API_URL, RAW_URL, REGISTRY_URL, STATS_URL, FakeClock, FakeTransport, RecordingSleep


@pytest.fixture
def registry_payload():
    """Registry with one valid entry and one with an empty id."""
    return [
        {
            "id": "p1",
            "name": "Plugin One",
            "author": "Alice",
            "description": "Does the first thing",
            "repo": "alice/plugin-one",
        },
        {
            "id": "",
            "name": "Broken",
            "author": "Nobody",
            "description": "Missing id",
            "repo": "nobody/broken",
        },
    ]


@pytest.fixture
def p1():
    return CommunityPlugin(
        id="p1",
        name="Plugin One",
        author="Alice",
        description="Does the first thing",
        repo="alice/plugin-one",
    )


@pytest.fixture
def p2():
    return CommunityPlugin(
        id="p2",
        name="Plugin Two",
        author="Bob",
        description="Does another thing",
        repo="bob/plugin-two",
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeper():
    return RecordingSleep()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def throwing_transport():
    return FakeTransport(raise_for_status=True)


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        registry_url=REGISTRY_URL,
        stats_url=STATS_URL,
        github_api_url=API_URL,
        github_raw_url=RAW_URL,
        github_token=None,
        cache_ttl_seconds=3600,
        error_cache_ttl_seconds=300,
        retry_max_attempts=3,
        retry_initial_delay_seconds=0.1,
        retry_max_delay_seconds=0.15,
        retry_backoff_multiplier=2.0,
        filter_batch_size=2,
        filter_batch_delay_seconds=0.1,
    )
