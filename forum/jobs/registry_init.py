"""
Job registry initialization.

Builds the registry of job kinds once at startup and freezes it.
"""

import logging

from forum.config.settings import Settings
from forum.core.registries import JobKind, JobRegistry
from forum.jobs.definitions import ProcessTopicJob, PropagateUsernameJob, WelcomeEmailJob
from forum.jobs.handlers import (
    ProcessTopicHandler,
    PropagateUsernameHandler,
    WelcomeEmailHandler,
)

logger = logging.getLogger(__name__)


def register_job_kinds(registry: JobRegistry, settings: Settings) -> None:
    """Register all job kinds with the given registry."""

    logger.info("Registering job kinds")

    registry.register_kind(
        JobKind(
            name=WelcomeEmailJob.job_name,
            payload_model=WelcomeEmailJob,
            handler=WelcomeEmailHandler(settings),
        )
    )

    registry.register_kind(
        JobKind(
            name=ProcessTopicJob.job_name,
            payload_model=ProcessTopicJob,
            handler=ProcessTopicHandler(settings),
        )
    )

    registry.register_kind(
        JobKind(
            name=PropagateUsernameJob.job_name,
            payload_model=PropagateUsernameJob,
            handler=PropagateUsernameHandler(settings),
        )
    )

    logger.info("Job kinds registered", extra={"registered_kinds": registry.list()})


def build_job_registry(settings: Settings) -> JobRegistry:
    """Create a populated, frozen job registry."""
    registry = JobRegistry()
    register_job_kinds(registry, settings)
    registry.freeze()
    return registry
