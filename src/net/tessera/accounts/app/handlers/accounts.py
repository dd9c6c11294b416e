"""
Account Handlers

This module implements registration, password login, token checking and public profile
lookup.

The handlers in this module provide the following endpoints:
- POST /register - Create an account from a handle and a secret
- POST /login - Verify a handle/secret pair and issue a session token
- GET /auth/check - Report the identity carried by the presented session token
- GET /user/{handle} - Public profile of an account

Login failures never say whether the handle exists: an unknown handle and a wrong secret
produce the same response and cost the same bcrypt work.
"""

from datetime import datetime, timezone
import logging
from typing import Any, Dict, List, Optional
from aiohttp import web
from pydantic import BaseModel, ValidationError, field_validator
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
import sentry_sdk

from net.tessera.accounts.app.config import (
    DatabaseSessionMakerAppKey,
    HealthGaugeAppKey,
    MetricsClientAppKey,
    SettingsAppKey,
    TokenAuthorityAppKey,
)
from net.tessera.accounts.app.handlers.helpers import (
    get_auth_token,
    requires_auth,
    validation_error_message,
)
from net.tessera.accounts.model.accounts import HANDLE_MAX_LENGTH, Account
from net.tessera.accounts.model.projects import Project
from net.tessera.accounts.security.passwords import (
    SECRET_MAX_BYTES,
    burn_verification,
    hash_secret,
    verify_secret,
)

logger = logging.getLogger(__name__)

SECRET_MIN_LENGTH = 8

INVALID_CREDENTIALS = "Invalid credentials"


class LoginRequest(BaseModel):
    handle: str
    secret: str

    @field_validator("handle")
    def handle_present(cls, v: str) -> str:
        v = v.strip()
        if len(v) == 0:
            raise ValueError("must not be empty")
        return v

    @field_validator("secret")
    def secret_present(cls, v: str) -> str:
        if len(v) == 0:
            raise ValueError("must not be empty")
        return v


class RegistrationRequest(LoginRequest):
    @field_validator("handle")
    def handle_check(cls, v: str) -> str:
        v = v.strip()
        if len(v) > HANDLE_MAX_LENGTH:
            raise ValueError(f"must be at most {HANDLE_MAX_LENGTH} characters")
        return v

    @field_validator("secret")
    def secret_check(cls, v: str) -> str:
        if len(v) < SECRET_MIN_LENGTH:
            raise ValueError(f"must be at least {SECRET_MIN_LENGTH} characters")

        if len(v.encode("utf-8")) > SECRET_MAX_BYTES:
            raise ValueError(f"must be at most {SECRET_MAX_BYTES} bytes")

        if not any(c.isalpha() for c in v) or not any(c.isdigit() for c in v):
            raise ValueError("must contain at least one letter and one digit")

        return v


async def handle_register(request: web.Request) -> web.Response:
    settings = request.app[SettingsAppKey]
    database_session_maker = request.app[DatabaseSessionMakerAppKey]
    metrics_client = request.app[MetricsClientAppKey]
    health_gauge = request.app[HealthGaugeAppKey]

    try:
        data = await request.read()
        registration = RegistrationRequest.model_validate_json(data)
    except ValidationError as e:
        return web.json_response(status=400, data={"error": validation_error_message(e)})
    except OSError:
        return web.json_response(status=400, data={"error": "Invalid request body"})

    try:
        secret_hash = await hash_secret(
            registration.secret, settings.password_hash_rounds
        )
        now = datetime.now(timezone.utc)

        async with database_session_maker() as database_session:
            async with database_session.begin():
                database_session.add(
                    Account(
                        handle=registration.handle,
                        secret_hash=secret_hash,
                        created_at=now,
                    )
                )
    except IntegrityError:
        # The unique index on handle is the only uniqueness check.
        metrics_client.increment("accounts.register.conflict", 1)
        return web.json_response(status=400, data={"error": "Handle already exists"})
    except Exception as e:
        sentry_sdk.capture_exception(e)
        await health_gauge.womp()
        logger.exception("handle_register: Exception")
        return web.json_response(status=500, data={"error": "Internal Server Error"})

    logger.info("registered account %s", registration.handle)
    metrics_client.increment("accounts.register.created", 1)
    return web.json_response(status=201, data={"message": "Account created"})


async def handle_login(request: web.Request) -> web.Response:
    settings = request.app[SettingsAppKey]
    database_session_maker = request.app[DatabaseSessionMakerAppKey]
    metrics_client = request.app[MetricsClientAppKey]
    health_gauge = request.app[HealthGaugeAppKey]
    token_authority = request.app[TokenAuthorityAppKey]

    try:
        data = await request.read()
        login = LoginRequest.model_validate_json(data)
    except ValidationError as e:
        return web.json_response(status=400, data={"error": validation_error_message(e)})
    except OSError:
        return web.json_response(status=400, data={"error": "Invalid request body"})

    try:
        async with database_session_maker() as database_session:
            async with database_session.begin():
                account_stmt = select(Account).where(Account.handle == login.handle)
                account: Optional[Account] = (
                    await database_session.scalars(account_stmt)
                ).first()

        if account is None:
            verified = await burn_verification(
                login.secret, settings.password_hash_rounds
            )
        else:
            verified = await verify_secret(login.secret, account.secret_hash)
    except Exception as e:
        sentry_sdk.capture_exception(e)
        await health_gauge.womp()
        logger.exception("handle_login: Exception")
        return web.json_response(status=500, data={"error": "Internal Server Error"})

    if account is None or not verified:
        metrics_client.increment("accounts.login.failed", 1)
        return web.json_response(status=400, data={"error": INVALID_CREDENTIALS})

    serialized_auth_token = token_authority.issue(account.id, account.handle)

    metrics_client.increment("accounts.login.succeeded", 1)
    return web.json_response(
        {"message": "Login successful", "token": serialized_auth_token}
    )


@requires_auth
async def handle_auth_check(request: web.Request) -> web.Response:
    auth_token = get_auth_token(request)
    return web.json_response(
        {
            "isAuthenticated": True,
            "user": {
                "accountId": auth_token.account_id,
                "handle": auth_token.handle,
            },
        }
    )


async def handle_user_profile(request: web.Request) -> web.Response:
    database_session_maker = request.app[DatabaseSessionMakerAppKey]
    health_gauge = request.app[HealthGaugeAppKey]
    handle = request.match_info["handle"]

    try:
        async with database_session_maker() as database_session:
            async with database_session.begin():
                account_stmt = select(Account).where(Account.handle == handle)
                account: Optional[Account] = (
                    await database_session.scalars(account_stmt)
                ).first()
                if account is None:
                    return web.json_response(
                        status=404, data={"error": "User not found"}
                    )

                projects_stmt = (
                    select(Project)
                    .where(Project.account_id == account.id)
                    .order_by(Project.id)
                )
                projects = (await database_session.scalars(projects_stmt)).all()
    except Exception as e:
        sentry_sdk.capture_exception(e)
        await health_gauge.womp()
        logger.exception("handle_user_profile: Exception")
        return web.json_response(status=500, data={"error": "Internal Server Error"})

    project_summaries: List[Dict[str, Any]] = [
        {
            "projectId": project.id,
            "title": project.title,
            "createdAt": project.created_at.isoformat(),
        }
        for project in projects
    ]

    return web.json_response(
        {
            "accountId": account.id,
            "handle": account.handle,
            "linkedHandle": account.linked_handle,
            "createdAt": account.created_at.isoformat(),
            "projects": project_summaries,
        }
    )
