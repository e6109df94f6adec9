import hashlib

import pytest

from conftest import FakeResponse
from podcast_index import (
    RateLimitGuard,
    RateLimitedError,
    auth_headers,
    mask_secret,
    sanitize_headers,
    status_ok,
)


def test_auth_headers_sign_key_secret_and_timestamp():
    headers = auth_headers("KEY", "SECRET", now=1700000000.9)
    assert headers["X-Auth-Date"] == "1700000000"
    assert headers["X-Auth-Key"] == "KEY"
    assert headers["Authorization"] == hashlib.sha1(b"KEYSECRET1700000000").hexdigest()
    assert set(headers) == {"X-Auth-Date", "X-Auth-Key", "Authorization"}


def test_auth_headers_are_a_pure_function_of_inputs():
    assert auth_headers("k", "s", now=42) == auth_headers("k", "s", now=42)
    assert auth_headers("k", "s", now=42) != auth_headers("k", "s", now=43)


def test_sanitize_headers_masks_credentials():
    sanitized = sanitize_headers(auth_headers("ABCDEFGH", "secret", now=1))
    assert sanitized["Authorization"] == "***"
    assert sanitized["X-Auth-Key"] == "AB***GH"
    assert mask_secret("abc") == "***"


def test_status_ok_accepts_string_and_boolean():
    assert status_ok({"status": "true"})
    assert status_ok({"status": True})
    assert not status_ok({"status": "false"})
    assert not status_ok({})
    assert not status_ok(None)


def test_guard_spaces_consecutive_calls(clock):
    guard = RateLimitGuard(1.0, 30.0, sleep=clock.sleep, clock=clock)
    guard.call(lambda: FakeResponse(200, {}))
    clock.now += 0.25
    guard.call(lambda: FakeResponse(200, {}))
    assert clock.sleeps == [pytest.approx(0.75)]
    assert guard.calls == 2


def test_guard_does_not_sleep_when_interval_already_elapsed(clock):
    guard = RateLimitGuard(1.0, 30.0, sleep=clock.sleep, clock=clock)
    guard.call(lambda: FakeResponse(200, {}))
    clock.now += 5
    guard.call(lambda: FakeResponse(200, {}))
    assert clock.sleeps == []


def test_guard_retries_once_after_cooldown(clock):
    answers = [FakeResponse(429), FakeResponse(200, {"status": "true"})]
    guard = RateLimitGuard(1.0, 30.0, sleep=clock.sleep, clock=clock)
    response = guard.call(lambda: answers.pop(0))
    assert response.status_code == 200
    assert clock.sleeps == [30.0]
    assert guard.cooldowns == 1
    assert guard.calls == 2


def test_guard_surfaces_second_429(clock):
    guard = RateLimitGuard(1.0, 30.0, sleep=clock.sleep, clock=clock)
    with pytest.raises(RateLimitedError):
        guard.call(lambda: FakeResponse(429), label="podcasts/byguid")
    assert guard.calls == 2
    assert clock.sleeps == [30.0]


def test_guard_passes_other_errors_through(clock):
    guard = RateLimitGuard(1.0, 30.0, sleep=clock.sleep, clock=clock)
    assert guard.call(lambda: FakeResponse(503)).status_code == 503
    assert guard.cooldowns == 0


def test_client_signs_every_attempt(make_resolver, neon_hawk_routes, clock):
    neon_hawk_routes["podcasts/byguid"].insert(0, FakeResponse(429))
    resolver, session = make_resolver(neon_hawk_routes)
    resolver.client.podcast_by_guid("3ae285ab-434c-59d8-aa2f-59c6129afb92")

    first, second = session.calls_to("podcasts/byguid")
    assert first["headers"]["X-Auth-Date"] != second["headers"]["X-Auth-Date"]
    assert second["headers"]["Authorization"] == hashlib.sha1(
        f"TESTKEY1234test-secret{second['headers']['X-Auth-Date']}".encode()
    ).hexdigest()
    assert second["headers"]["User-Agent"] == "remote-item-resolver-tests/1.0"
