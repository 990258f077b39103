"""Unit tests for BaseApiClient."""

import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent.parent.absolute()
sys.path.append(str(PROJECT_ROOT))

from unittest.mock import patch

import pytest
import requests

from api_cache.clients.base import BaseApiClient
from api_cache.core.exceptions import RateLimitExceeded
from api_cache.core.manager import ApiCacheManager

CONFIG = {
    "clients": {
        "demo": {
            "base_url": "https://api.example.com/v1",
            "cache_ttl": 3600,
            "rate_limit_max_attempts": 2,
            "rate_limit_decay_seconds": 60,
        },
        "versioned": {"base_url": "https://api.example.com", "version": "v2"},
    }
}


class FakeHttp:
    """Stands in for ``Session.request`` and answers with prepared responses."""

    def __init__(self, status_code=200, body=b'{"result": "ok"}'):
        self.status_code = status_code
        self.body = body
        self.calls = []

    def __call__(self, method, url, params=None, json=None, headers=None, timeout=None):
        self.calls.append({"method": method, "url": url, "params": params, "json": json, "headers": headers})
        response = requests.Response()
        response.status_code = self.status_code
        response._content = self.body
        response.headers.update({"Content-Type": "application/json"})
        response.request = requests.Request(method, url, params=params, json=json, headers=headers).prepare()
        response.url = response.request.url
        return response


class TokenClient(BaseApiClient):
    def get_auth_headers(self):
        return {"Authorization": "Bearer token"}


@pytest.fixture
def manager():
    return ApiCacheManager.from_config(CONFIG)


@pytest.fixture
def client(manager):
    return BaseApiClient("demo", manager)


def test_settings_come_from_client_config(client, manager):
    assert client.base_url == "https://api.example.com/v1"
    assert client.version is None
    assert BaseApiClient("versioned", manager).version == "v2"
    assert BaseApiClient("demo", manager, base_url="http://localhost:8000").base_url == "http://localhost:8000"


@pytest.mark.parametrize(
    "base_url,endpoint,expected",
    [
        ("https://api.example.com/v1", "users", "https://api.example.com/v1/users"),
        ("https://api.example.com/v1/", "/users", "https://api.example.com/v1/users"),
        ("https://api.example.com", "a/b", "https://api.example.com/a/b"),
    ],
)
def test_build_url(manager, base_url, endpoint, expected):
    assert BaseApiClient("demo", manager, base_url=base_url).build_url(endpoint) == expected


def test_send_request_get(client):
    http = FakeHttp()
    with patch.object(client.session, "request", side_effect=http):
        result = client.send_request("users", {"name": "John"})

    assert http.calls[0]["params"] == {"name": "John"}
    assert http.calls[0]["json"] is None
    assert result["is_cached"] is False
    assert result["request"]["method"] == "GET"
    assert result["request"]["full_url"] == "https://api.example.com/v1/users?name=John"
    assert result["response"].status_code == 200
    assert result["response_time"] >= 0


def test_send_request_post_sends_json(manager):
    client = TokenClient("demo", manager)
    http = FakeHttp()
    with patch.object(client.session, "request", side_effect=http):
        result = client.send_request("predictions", {"query": "test"}, method="post")

    assert http.calls[0]["method"] == "POST"
    assert http.calls[0]["json"] == {"query": "test"}
    assert http.calls[0]["headers"] == {"Authorization": "Bearer token"}
    assert result["request"]["body"] == '{"query": "test"}'
    assert result["request"]["headers"]["Authorization"] == "Bearer token"


def test_cached_request_hits_api_once(client):
    http = FakeHttp()
    with patch.object(client.session, "request", side_effect=http):
        first = client.send_cached_request("users", {"name": "John"})
        second = client.send_cached_request("users", {"name": "John"})

    assert len(http.calls) == 1
    assert first["is_cached"] is False
    assert second["is_cached"] is True
    assert second["response"].json() == {"result": "ok"}
    assert client.manager.get_remaining_attempts("demo") == 1


def test_cache_hits_do_not_consume_attempts(client):
    http = FakeHttp()
    with patch.object(client.session, "request", side_effect=http):
        for _ in range(5):
            client.send_cached_request("users", {"name": "John"})

    assert client.manager.get_remaining_attempts("demo") == 1


def test_rate_limited_live_request_raises(client):
    http = FakeHttp()
    with patch.object(client.session, "request", side_effect=http):
        client.send_cached_request("users", {"page": 1})
        client.send_cached_request("users", {"page": 2})
        with pytest.raises(RateLimitExceeded) as excinfo:
            client.send_cached_request("users", {"page": 3})
        # Cached requests are still served while limited
        assert client.send_cached_request("users", {"page": 1})["is_cached"] is True

    assert len(http.calls) == 2
    assert excinfo.value.client_name == "demo"
    assert 0 < excinfo.value.available_in <= 60
    assert "Rate limit exceeded for client 'demo'" in str(excinfo.value)


def test_error_responses_are_not_cached(client):
    http = FakeHttp(status_code=500, body=b'{"error": "boom"}')
    with patch.object(client.session, "request", side_effect=http):
        result = client.send_cached_request("users", {})
        client.send_cached_request("users", {})

    assert result["response"].status_code == 500
    assert len(http.calls) == 2
    assert client.manager.get_remaining_attempts("demo") == 0


def test_empty_body_is_not_cached(client):
    http = FakeHttp(body=b"")
    with patch.object(client.session, "request", side_effect=http):
        client.send_cached_request("users", {})
        client.send_cached_request("users", {})

    assert len(http.calls) == 2


def test_use_cache_false_always_calls_api(manager):
    client = BaseApiClient("demo", manager, use_cache=False)
    http = FakeHttp()
    with patch.object(client.session, "request", side_effect=http):
        client.send_cached_request("users", {})
        client.send_cached_request("users", {})

    assert len(http.calls) == 2
    assert manager.get_cached_response("demo", manager.generate_cache_key("demo", "users", {})) is None


def test_network_errors_propagate(client):
    with patch.object(client.session, "request", side_effect=requests.ConnectionError("down")):
        with pytest.raises(requests.ConnectionError):
            client.send_cached_request("users", {})
    # The failed call is not counted
    assert client.manager.get_remaining_attempts("demo") == 2


class PricedClient(BaseApiClient):
    def calculate_cost(self, response_body):
        return len(response_body) * 0.001

    def should_cache(self, response_body):
        return '"error"' not in response_body


def test_amount_is_charged_and_stored_as_credits(manager):
    manager.config.update("clients.demo.rate_limit_max_attempts", 10)
    client = BaseApiClient("demo", manager)
    http = FakeHttp()
    with patch.object(client.session, "request", side_effect=http):
        result = client.send_cached_request("tasks", {"q": 1}, amount=5)

    assert result["request"]["credits"] == 5
    assert manager.get_remaining_attempts("demo") == 5
    key = manager.generate_cache_key("demo", "tasks", {"q": 1})
    assert manager.repository.get_entry("demo", key).credits == 5


def test_cost_is_calculated_from_response_body(manager):
    client = PricedClient("demo", manager)
    http = FakeHttp(body=b'{"result": "ok"}')
    with patch.object(client.session, "request", side_effect=http):
        result = client.send_cached_request("tasks", {"q": 1})

    assert result["request"]["cost"] == pytest.approx(0.016)
    key = manager.generate_cache_key("demo", "tasks", {"q": 1})
    assert manager.repository.get_entry("demo", key).cost == pytest.approx(0.016)
    assert client.manager.get_cached_response("demo", key)["request"]["cost"] == pytest.approx(0.016)


def test_cost_defaults_to_none(client):
    with patch.object(client.session, "request", side_effect=FakeHttp()):
        assert client.send_request("users")["request"]["cost"] is None


def test_should_cache_rejects_response(manager):
    client = PricedClient("demo", manager)
    http = FakeHttp(body=b'{"error": "quota"}')
    with patch.object(client.session, "request", side_effect=http):
        client.send_cached_request("tasks", {})
        client.send_cached_request("tasks", {})

    assert len(http.calls) == 2
    assert manager.repository.count_total_responses("demo") == 0


def test_attributes_are_trimmed(client, manager):
    with patch.object(client.session, "request", side_effect=FakeHttp()):
        result = client.send_cached_request("users", {}, attributes="a" * 300)

    assert result["request"]["attributes"] == "a" * 255
    key = manager.generate_cache_key("demo", "users", {})
    assert manager.repository.get_entry("demo", key).attributes == "a" * 255
