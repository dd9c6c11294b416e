"""HTTP calls to the external linking service."""

import base64
import logging
from typing import Any, Dict
from urllib.parse import urlparse, urlencode, parse_qsl, urlunparse

from aiohttp import ClientSession, FormData

from net.tessera.accounts.app.config import Settings

logger = logging.getLogger(__name__)


class LinkingException(Exception):
    """
    Exception raised when the linking flow cannot complete.

    `upstream` is True when the external service misbehaved rather than the request.
    """

    def __init__(self, message: str, upstream: bool = False) -> None:
        super().__init__(message)
        self.upstream = upstream

    @staticmethod
    def invalid_request() -> "LinkingException":
        return LinkingException("error-link-1000 Invalid request")

    @staticmethod
    def unknown_state() -> "LinkingException":
        return LinkingException("error-link-1001 Unknown or expired link request")

    @staticmethod
    def exchange_failed(msg: str) -> "LinkingException":
        return LinkingException(
            f"error-link-1002 Code exchange failed: {msg}", upstream=True
        )

    @staticmethod
    def profile_failed(msg: str) -> "LinkingException":
        return LinkingException(
            f"error-link-1003 Profile lookup failed: {msg}", upstream=True
        )

    @staticmethod
    def account_not_found() -> "LinkingException":
        return LinkingException("error-link-1004 Account not found")


def callback_url(settings: Settings) -> str:
    return f"https://{settings.external_hostname}/auth/callback"


def encode_callback(url: str) -> str:
    return base64.urlsafe_b64encode(url.encode("utf-8")).decode("ascii")


def build_authorize_url(settings: Settings, state: str) -> str:
    """
    Build the external authorization URL, keeping any query the endpoint already has.
    """
    parsed = urlparse(settings.link_authorize_url)
    query = dict(parse_qsl(parsed.query))
    query.update(
        {
            "client_id": settings.link_client_id,
            "state": state,
            "callback": encode_callback(callback_url(settings)),
        }
    )
    return urlunparse(parsed._replace(query=urlencode(query)))


async def exchange_code(
    http_session: ClientSession, settings: Settings, code: str
) -> str:
    """
    Exchange a one-time code for an access token.

    Raises:
        LinkingException: If the token endpoint rejects the code or answers garbage
    """
    data = FormData(
        {
            "client_id": settings.link_client_id,
            "client_secret": settings.link_client_secret.get_secret_value(),
            "code": code,
        }
    )
    headers = {"Accept": "application/json"}

    async with http_session.post(
        settings.link_token_url, data=data, headers=headers
    ) as resp:
        if resp.status != 200:
            raise LinkingException.exchange_failed(f"status {resp.status}")
        body: Any = await resp.json(content_type=None)

    if not isinstance(body, dict):
        raise LinkingException.exchange_failed("unexpected response")
    if "error" in body:
        raise LinkingException.exchange_failed(str(body["error"]))

    access_token = body.get("access_token", None)
    if not isinstance(access_token, str) or not access_token:
        raise LinkingException.exchange_failed("no access token")
    return access_token


async def fetch_linked_handle(
    http_session: ClientSession, settings: Settings, access_token: str
) -> str:
    """
    Read the third-party handle from the external profile endpoint.

    Raises:
        LinkingException: If the profile cannot be read or has no handle field
    """
    headers = {
        "Accept": "application/json",
        "Authorization": f"Bearer {access_token}",
    }
    async with http_session.get(settings.link_profile_url, headers=headers) as resp:
        if resp.status != 200:
            raise LinkingException.profile_failed(f"status {resp.status}")
        profile: Dict[str, Any] = await resp.json(content_type=None)

    if not isinstance(profile, dict):
        raise LinkingException.profile_failed("unexpected response")

    handle = profile.get(settings.link_handle_field, None)
    if not isinstance(handle, str) or not handle:
        raise LinkingException.profile_failed(
            f"missing field {settings.link_handle_field}"
        )
    return handle
