"""Service wiring for the API layer."""
import logging

from fastapi import HTTPException, status

from groupsettle.core.config import settings
from groupsettle.core.exceptions import (
    InvariantViolation,
    NotFound,
    NotGroupAdmin,
    SettlementEngineError,
    StateError,
    ValidationFailed,
)
from groupsettle.db.mongo import get_db
from groupsettle.integrations.identity import HttpIdentityResolver
from groupsettle.integrations.notifications import (
    EventDispatcher,
    LoggingNotificationSink,
    WebhookNotificationSink,
)
from groupsettle.integrations.payment_rail import HttpPaymentRail
from groupsettle.services.executor import ExecutionPolicy
from groupsettle.services.group_service import GroupService

logger = logging.getLogger(__name__)


class ServiceContainer:
    """Process-wide services, built at startup."""

    group_service: GroupService = None
    clients: list = []

container = ServiceContainer()


async def init_services():
    """Build the group service against the connected database."""
    rail = HttpPaymentRail()
    identity = HttpIdentityResolver()
    sinks = [LoggingNotificationSink()]
    container.clients = [rail, identity]

    if settings.NOTIFICATION_WEBHOOK_URL:
        webhook = WebhookNotificationSink()
        sinks.append(webhook)
        container.clients.append(webhook)

    container.group_service = GroupService(
        get_db(),
        rail=rail,
        identity=identity,
        events=EventDispatcher(sinks),
        policy=ExecutionPolicy.from_settings(),
    )
    await container.group_service.recover()


async def close_services():
    for client in container.clients:
        await client.close()
    container.clients = []
    container.group_service = None


def get_group_service() -> GroupService:
    """Get the group service instance."""
    return container.group_service


def to_http_exception(exc: SettlementEngineError) -> HTTPException:
    """Map an engine error to the HTTP status the API reports."""
    if isinstance(exc, ValidationFailed):
        code = 422
    elif isinstance(exc, NotFound):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, NotGroupAdmin):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(exc, StateError):
        code = status.HTTP_409_CONFLICT
    else:
        if isinstance(exc, InvariantViolation):
            logger.error("Invariant violation: %s", exc)
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail=str(exc))
