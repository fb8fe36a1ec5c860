"""Okta backend tests against a fake requests session."""

import pytest
import requests

from radius_gateway.auth.okta_auth import OktaAuthBackend
from radius_gateway.exceptions import (
    BackendError,
    BackendUnavailable,
    ConfigurationError,
)


class FakeResponse:
    def __init__(self, status_code, payload=None, invalid_json=False):
        self.status_code = status_code
        self._payload = payload
        self._invalid_json = invalid_json

    def json(self):
        if self._invalid_json:
            raise ValueError("no json")
        return self._payload


class FakeSession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.posts = []
        self.closed = False

    def post(self, url, **kwargs):
        self.posts.append((url, kwargs))
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        return item

    def close(self):
        self.closed = True


def _success(login):
    return FakeResponse(
        200,
        {"status": "SUCCESS", "_embedded": {"user": {"profile": {"login": login}}}},
    )


def _backend(session, **cfg):
    base = {"org_url": "https://example.okta.com/", "cache_ttl": 60, "fail_ttl": 5}
    base.update(cfg)
    return OktaAuthBackend(base, session=session)


def test_missing_org_url_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        OktaAuthBackend({}, session=FakeSession(_success("x")))


def test_success_posts_to_authn_endpoint():
    session = FakeSession(_success("Alice@Example.com"))
    backend = _backend(session, connect_timeout=2, read_timeout=4)
    result = backend.authenticate("alice@example.com", "pw")

    assert result.accepted
    url, kwargs = session.posts[0]
    assert url == "https://example.okta.com/api/v1/authn"
    assert kwargs["json"] == {"username": "alice@example.com", "password": "pw"}
    assert kwargs["timeout"] == (2.0, 4.0)
    assert kwargs["verify"] is True


def test_principal_mismatch_rejects():
    backend = _backend(FakeSession(_success("mallory@example.com")))
    result = backend.authenticate("alice@example.com", "pw")
    assert not result.accepted
    assert result.reason == "principal mismatch"


def test_success_without_embedded_user_rejects():
    backend = _backend(FakeSession(FakeResponse(200, {"status": "SUCCESS"})))
    assert backend.authenticate("alice", "pw").reason == "principal mismatch"


@pytest.mark.parametrize(
    "response,reason",
    [
        (FakeResponse(401, {"errorCode": "E0000004"}), "invalid credentials"),
        (FakeResponse(403), "account disabled"),
        (FakeResponse(200, {"status": "LOCKED_OUT"}), "locked out"),
        (FakeResponse(200, {"status": "PASSWORD_EXPIRED"}), "password expired"),
        (FakeResponse(200, {"status": "MFA_REQUIRED"}), "mfa required"),
        (FakeResponse(200, {"status": "RECOVERY"}), "recovery"),
    ],
)
def test_rejections(response, reason):
    result = _backend(FakeSession(response)).authenticate("alice", "pw")
    assert not result.accepted
    assert result.reason == reason


@pytest.mark.parametrize(
    "response",
    [
        requests.ConnectionError("refused"),
        requests.Timeout("slow"),
        FakeResponse(429),
        FakeResponse(503),
    ],
)
def test_transport_failures_raise_unavailable(response):
    backend = _backend(FakeSession(response))
    with pytest.raises(BackendUnavailable):
        backend.authenticate("alice", "pw")


@pytest.mark.parametrize(
    "response", [FakeResponse(400), FakeResponse(200, invalid_json=True), FakeResponse(200, [])]
)
def test_unexpected_replies_raise_backend_error(response):
    backend = _backend(FakeSession(response))
    with pytest.raises(BackendError):
        backend.authenticate("alice", "pw")


def test_results_are_cached_per_credential_pair():
    session = FakeSession(_success("alice"))
    backend = _backend(session)

    assert backend.authenticate("alice", "pw").accepted
    assert backend.authenticate("alice", "pw").accepted
    assert len(session.posts) == 1

    session.responses = [FakeResponse(401)]
    assert not backend.authenticate("alice", "other").accepted
    assert len(session.posts) == 2
    assert backend.get_stats()["cache_entries"] == 2


def test_cache_disabled_with_zero_ttl():
    session = FakeSession(_success("alice"))
    backend = _backend(session, cache_ttl=0, fail_ttl=0)
    backend.authenticate("alice", "pw")
    backend.authenticate("alice", "pw")
    assert len(session.posts) == 2


def test_circuit_opens_after_consecutive_transport_failures():
    session = FakeSession(requests.ConnectionError("down"))
    backend = _backend(session, circuit_failures=2, circuit_cooldown=300)

    for _ in range(2):
        with pytest.raises(BackendUnavailable):
            backend.authenticate("alice", "pw")
    assert not backend.is_available()
    assert backend.get_stats()["circuit_open"] is True

    with pytest.raises(BackendUnavailable, match="circuit"):
        backend.authenticate("alice", "pw")
    assert len(session.posts) == 2


def test_circuit_closes_after_cooldown():
    session = FakeSession(requests.ConnectionError("down"), _success("alice"))
    backend = _backend(session, circuit_failures=1, circuit_cooldown=0)

    with pytest.raises(BackendUnavailable):
        backend.authenticate("alice", "pw")
    assert backend.authenticate("alice", "pw").accepted
    assert backend.get_stats()["consecutive_failures"] == 0


def test_rejections_do_not_trip_the_circuit():
    backend = _backend(FakeSession(FakeResponse(401)), circuit_failures=1, fail_ttl=0)
    for _ in range(3):
        assert not backend.authenticate("alice", "pw").accepted
    assert backend.is_available()


def test_close_releases_session():
    session = FakeSession(_success("alice"))
    _backend(session).close()
    assert session.closed


def test_default_session_is_built_with_retries():
    backend = OktaAuthBackend({"org_url": "https://example.okta.com", "max_retries": 3})
    try:
        adapter = backend._session.get_adapter("https://example.okta.com/api/v1/authn")
        assert adapter.max_retries.total == 3
        assert 503 in adapter.max_retries.status_forcelist
    finally:
        backend.close()
