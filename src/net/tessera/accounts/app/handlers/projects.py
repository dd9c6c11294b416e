import logging
from datetime import datetime, timezone
from typing import Optional
from aiohttp import web
from pydantic import BaseModel, ValidationError, field_validator
import sentry_sdk

from net.tessera.accounts.app.config import (
    DatabaseSessionMakerAppKey,
    HealthGaugeAppKey,
    MetricsClientAppKey,
)
from net.tessera.accounts.app.handlers.helpers import (
    authentication_error_response,
    get_auth_token,
    requires_auth,
    validation_error_message,
)
from net.tessera.accounts.model.accounts import Account
from net.tessera.accounts.model.projects import TITLE_MAX_LENGTH, Project
from net.tessera.accounts.security.tokens import AuthenticationException

logger = logging.getLogger(__name__)


class ProjectCreation(BaseModel):
    title: str
    content: str

    @field_validator("title")
    def title_check(cls, v: str) -> str:
        v = v.strip()
        if len(v) == 0:
            raise ValueError("must not be empty")
        if len(v) > TITLE_MAX_LENGTH:
            raise ValueError(f"must be at most {TITLE_MAX_LENGTH} characters")
        return v


@requires_auth
async def handle_create_project(request: web.Request) -> web.Response:
    """
    Create a project owned by the authenticated account.

    The owner always comes from the session token, never from the request body. A token
    naming an account that no longer exists is refused like any other bad token.
    """
    database_session_maker = request.app[DatabaseSessionMakerAppKey]
    metrics_client = request.app[MetricsClientAppKey]
    health_gauge = request.app[HealthGaugeAppKey]
    auth_token = get_auth_token(request)

    try:
        data = await request.read()
        project_creation = ProjectCreation.model_validate_json(data)
    except ValidationError as e:
        return web.json_response(status=400, data={"error": validation_error_message(e)})
    except OSError:
        return web.json_response(status=400, data={"error": "Invalid request body"})

    project_id: Optional[int] = None
    try:
        async with database_session_maker() as database_session:
            async with database_session.begin():
                account = await database_session.get(Account, auth_token.account_id)
                if account is None:
                    raise AuthenticationException.account_not_found()

                project = Project(
                    account_id=account.id,
                    title=project_creation.title,
                    content=project_creation.content,
                    created_at=datetime.now(timezone.utc),
                )
                database_session.add(project)
                await database_session.flush()
                project_id = project.id
    except AuthenticationException as e:
        logger.info("refused project creation: %s", e)
        return authentication_error_response(e)
    except Exception as e:
        sentry_sdk.capture_exception(e)
        await health_gauge.womp()
        logger.exception("handle_create_project: Exception")
        return web.json_response(status=500, data={"error": "Internal Server Error"})

    metrics_client.increment("accounts.project.created", 1)
    return web.json_response(
        status=201, data={"message": "Project created", "projectId": project_id}
    )
