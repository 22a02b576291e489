"""
Job kinds handled by the background workers.

Each kind is a frozen pydantic model; the model is both the payload shape
and the value producers hand to the queue.
"""

from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field


class JobPayload(BaseModel):
    """Base class for job payloads."""

    model_config = ConfigDict(frozen=True)

    job_name: ClassVar[str]


class WelcomeEmailJob(JobPayload):
    """Send the welcome message to a newly registered user."""

    job_name: ClassVar[str] = "welcome_email"

    user_id: int
    username: str = Field(..., min_length=1)
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+$")


class ProcessTopicJob(JobPayload):
    """Run a post-write maintenance action on a topic."""

    job_name: ClassVar[str] = "process_topic"

    topic_id: int
    action: str


class PropagateUsernameJob(JobPayload):
    """Rewrite denormalized author names after a username change."""

    job_name: ClassVar[str] = "propagate_username"

    user_id: int
    old_username: str = Field(..., min_length=1)
    new_username: str = Field(..., min_length=1)


TOPIC_ACTIONS = ("index", "notify_watchers", "recount")
