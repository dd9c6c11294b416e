"""
Tests for third-party account linking.

The external authorization service is replaced by a scripted FakeHttpSession and
pending link requests are stored in fakeredis.
"""

import base64
from urllib.parse import parse_qs, urlparse

import pytest

from net.tessera.accounts.app.handlers.linking import safe_destination
from net.tessera.accounts.linking.provider import (
    LinkingException,
    build_authorize_url,
    exchange_code,
    fetch_linked_handle,
)
from net.tessera.accounts.linking.state import (
    LinkRequest,
    link_request_key,
    pop_link_request,
    save_link_request,
)
from tests.test_helpers import (
    FakeHttpSession,
    generate_test_datetime,
    register_and_login,
)


def script_provider(http_session: FakeHttpSession, settings, login="octocat"):
    http_session.respond(
        "POST", settings.link_token_url, body={"access_token": "upstream-token"}
    )
    http_session.respond("GET", settings.link_profile_url, body={"login": login})


async def start_link(client, token, destination=None) -> str:
    params = {"auth_token": token}
    if destination is not None:
        params["destination"] = destination
    resp = await client.get("/auth/login", params=params, allow_redirects=False)
    assert resp.status == 302
    location = resp.headers["Location"]
    return parse_qs(urlparse(location).query)["state"][0]


class TestLinkRequestState:
    async def test_single_use(self, fake_redis_client):
        link_request = LinkRequest(
            account_id=1, destination="/", created_at=generate_test_datetime()
        )
        await save_link_request(fake_redis_client, "state-1", link_request, 600)

        popped = await pop_link_request(fake_redis_client, "state-1")
        assert popped is not None
        assert popped.account_id == 1

        assert await pop_link_request(fake_redis_client, "state-1") is None

    async def test_expiry_is_set(self, fake_redis_client):
        link_request = LinkRequest(
            account_id=1, destination="/", created_at=generate_test_datetime()
        )
        await save_link_request(fake_redis_client, "state-2", link_request, 600)

        ttl = await fake_redis_client.ttl(link_request_key("state-2"))
        assert 0 < ttl <= 600

    async def test_unknown_state(self, fake_redis_client):
        assert await pop_link_request(fake_redis_client, "missing") is None


class TestProvider:
    def test_authorize_url(self, settings):
        url = build_authorize_url(settings, "abc")
        parsed = urlparse(url)
        query = parse_qs(parsed.query)

        assert url.startswith(settings.link_authorize_url)
        assert query["client_id"] == ["accounts-test"]
        assert query["state"] == ["abc"]
        callback = base64.urlsafe_b64decode(query["callback"][0]).decode("utf-8")
        assert callback == "https://accounts.example.com/auth/callback"

    async def test_exchange_code(self, settings, http_session):
        script_provider(http_session, settings)

        access_token = await exchange_code(http_session, settings, "one-time")
        assert access_token == "upstream-token"

        call = http_session.calls[0]
        assert call["method"] == "POST"
        assert call["headers"]["Accept"] == "application/json"

    @pytest.mark.parametrize(
        "status, body",
        [
            (500, {}),
            (200, {"error": "bad_verification_code"}),
            (200, {}),
            (200, ["access_token"]),
        ],
    )
    async def test_exchange_code_failures(self, settings, http_session, status, body):
        http_session.respond("POST", settings.link_token_url, status=status, body=body)

        with pytest.raises(LinkingException) as exc_info:
            await exchange_code(http_session, settings, "one-time")
        assert exc_info.value.upstream is True

    async def test_fetch_linked_handle(self, settings, http_session):
        script_provider(http_session, settings)

        handle = await fetch_linked_handle(http_session, settings, "upstream-token")
        assert handle == "octocat"
        assert http_session.calls[0]["headers"]["Authorization"] == (
            "Bearer upstream-token"
        )

    async def test_fetch_linked_handle_missing_field(self, settings, http_session):
        http_session.respond("GET", settings.link_profile_url, body={"name": "Octo"})

        with pytest.raises(LinkingException):
            await fetch_linked_handle(http_session, settings, "upstream-token")


class TestSafeDestination:
    @pytest.mark.parametrize(
        "destination, expected",
        [
            (None, "/"),
            ("", "/"),
            ("/projects", "/projects"),
            ("//evil.example.com/", "/"),
            ("https://evil.example.com/", "/"),
            ("https://accounts.example.com/home", "https://accounts.example.com/home"),
            ("javascript:alert(1)", "/"),
        ],
    )
    def test_safe_destination(self, settings, destination, expected):
        assert safe_destination(settings, destination) == expected


class TestLinkingFlow:
    async def test_link_account(self, client, settings, http_session):
        token = await register_and_login(client, "alice", "pa55word")
        script_provider(http_session, settings)

        state = await start_link(client, token, destination="/projects")

        resp = await client.get(
            "/auth/callback",
            params={"state": state, "code": "one-time"},
            allow_redirects=False,
        )
        assert resp.status == 302
        assert resp.headers["Location"] == "/projects?linked=octocat"

        resp = await client.get("/user/alice")
        assert (await resp.json())["linkedHandle"] == "octocat"

    async def test_state_is_single_use(self, client, settings, http_session):
        token = await register_and_login(client, "alice", "pa55word")
        script_provider(http_session, settings)
        state = await start_link(client, token)

        first = await client.get(
            "/auth/callback",
            params={"state": state, "code": "one-time"},
            allow_redirects=False,
        )
        assert first.status == 302

        second = await client.get(
            "/auth/callback",
            params={"state": state, "code": "one-time"},
            allow_redirects=False,
        )
        assert second.status == 400
        assert second.content_type == "text/html"

    async def test_missing_parameters(self, client):
        resp = await client.get("/auth/callback", allow_redirects=False)
        assert resp.status == 400
        assert "error-link-1000" in await resp.text()

    async def test_upstream_failure(self, client, settings, http_session):
        token = await register_and_login(client, "alice", "pa55word")
        http_session.respond("POST", settings.link_token_url, status=503, body={})
        state = await start_link(client, token)

        resp = await client.get(
            "/auth/callback",
            params={"state": state, "code": "one-time"},
            allow_redirects=False,
        )
        assert resp.status == 502

        resp = await client.get("/user/alice")
        assert (await resp.json())["linkedHandle"] is None

    async def test_link_login_requires_token(self, client):
        resp = await client.get("/auth/login", allow_redirects=False)
        assert resp.status == 401

    async def test_link_login_accepts_header_token(self, client):
        token = await register_and_login(client, "alice", "pa55word")
        resp = await client.get(
            "/auth/login",
            headers={"Authorization": f"Bearer {token}"},
            allow_redirects=False,
        )
        assert resp.status == 302
