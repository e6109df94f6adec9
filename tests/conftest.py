"""Shared fakes for the resolver tests: an HTTP session, a clock and fixture loading."""

import json
import sys
from pathlib import Path

import pytest

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

from podcast_index import PodcastIndexClient, RateLimitGuard  # noqa: E402
from resolver import TrackResolver  # noqa: E402

FIXTURES = Path(__file__).parent / "fixtures"

NEON_HAWK_FEED_GUID = "3ae285ab-434c-59d8-aa2f-59c6129afb92"
NEON_HAWK_ITEM_GUID = "d8145cb6-97d9-4358-895b-2bf055d169aa"


def load_fixture(name):
    return json.loads((FIXTURES / name).read_text(encoding="utf-8"))


class FakeResponse:
    def __init__(self, status_code=200, payload=None, content=b""):
        self.status_code = status_code
        self._payload = payload
        self.content = content

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


class FakeSession:
    """Answers GETs from per-endpoint queues; the last queued answer repeats."""

    def __init__(self, routes=None):
        self.routes = {key: list(value) for key, value in (routes or {}).items()}
        self.calls = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append({"url": url, "params": dict(params or {}), "headers": dict(headers or {})})
        for key, answers in self.routes.items():
            if url.endswith(key):
                answer = answers.pop(0) if len(answers) > 1 else answers[0]
                if isinstance(answer, Exception):
                    raise answer
                return answer
        return FakeResponse(404, {"status": "false"})

    def calls_to(self, endpoint):
        return [call for call in self.calls if call["url"].endswith(endpoint)]


class FakeClock:
    def __init__(self, start=1_700_000_000.0):
        self.now = start
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def neon_hawk_routes():
    return {
        "podcasts/byguid": [FakeResponse(200, load_fixture("neon_hawk_feed.json"))],
        "episodes/byguid": [FakeResponse(200, load_fixture("neon_hawk_episode.json"))],
    }


@pytest.fixture
def make_resolver(clock):
    def factory(routes, *, fallback=True, min_interval=1.0, cooldown=30.0):
        session = FakeSession(routes)
        guard = RateLimitGuard(min_interval, cooldown, sleep=clock.sleep, clock=clock)
        client = PodcastIndexClient(
            "TESTKEY1234",
            "test-secret",
            base_url="https://api.podcastindex.test/api/1.0",
            user_agent="remote-item-resolver-tests/1.0",
            timeout=5,
            guard=guard,
            session=session,
            clock=clock,
        )
        return TrackResolver(client, episode_list_fallback=fallback, episode_list_max=50), session

    return factory
