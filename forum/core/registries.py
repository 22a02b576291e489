import json
from dataclasses import dataclass
from typing import Any, Generic, Protocol, TypeVar

from pydantic import BaseModel, ValidationError
from pydantic_core import PydanticSerializationError

from forum.core.exceptions import (
    ExecutionError,
    JobSystemError,
    SerializationError,
    UnknownJobKind,
)
from forum.jobs.schemas import JobOutcome

# Base registry implementation
T = TypeVar("T")


class Registry(Generic[T]):
    """Generic registry for pluggable implementations."""

    def __init__(self, name: str):
        self.name = name
        self._implementations: dict[str, T] = {}
        self._frozen = False

    def register(self, name: str, implementation: T) -> None:
        """Register an implementation with a given name."""
        if self._frozen:
            raise RuntimeError(
                f"Cannot register '{name}' in {self.name.lower()} registry: "
                "registry is frozen"
            )
        self._implementations[name] = implementation

    def get(self, name: str) -> T:
        """Get an implementation by name."""
        if name not in self._implementations:
            raise KeyError(
                f"No {self.name.lower()} implementation registered with name: {name}"
            )
        return self._implementations[name]

    def list(self) -> list[str]:
        """List all registered implementation names."""
        return list(self._implementations.keys())

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        """Check if the registry is frozen."""
        return self._frozen


class JobHandler(Protocol):
    """Protocol for job execution routines."""

    async def handle(self, job: Any) -> dict[str, Any] | None:
        """
        Execute a deserialized job.

        Raise ExecutionError (or any exception) to report failure; the
        dispatcher turns it into a failed outcome instead of letting it
        escape to the worker loop.
        """
        ...


@dataclass(frozen=True)
class JobKind:
    """A registered category of work: name, payload shape, execution routine."""

    name: str
    payload_model: type[BaseModel]
    handler: JobHandler


class JobRegistry(Registry[JobKind]):
    """Registry mapping job names to their payload model and handler."""

    def __init__(self):
        super().__init__("Job")
        self._names_by_model: dict[type[BaseModel], str] = {}

    def register_kind(self, kind: JobKind) -> None:
        if kind.name in self._implementations:
            raise ValueError(f"Job kind '{kind.name}' is already registered")
        self.register(kind.name, kind)
        self._names_by_model[kind.payload_model] = kind.name

    def get(self, name: str) -> JobKind:
        try:
            return super().get(name)
        except KeyError:
            raise UnknownJobKind(name) from None

    def serialize(self, job: BaseModel) -> tuple[str, dict[str, Any]]:
        """Turn a job instance into its task name and JSON payload."""
        name = self._names_by_model.get(type(job))
        if name is None:
            raise SerializationError(
                f"No job kind registered for {type(job).__name__}",
                details={"job_class": type(job).__name__},
            )

        try:
            payload = job.model_dump(mode="json")
            # Payloads must survive a trip through the JSON column unchanged
            json.dumps(payload)
        except (PydanticSerializationError, TypeError, ValueError) as e:
            raise SerializationError(
                f"Failed to serialize job: {e}", details={"task_name": name}
            ) from e

        return name, payload

    def deserialize(self, name: str, payload: Any) -> BaseModel:
        kind = self.get(name)
        try:
            return kind.payload_model.model_validate(payload)
        except ValidationError as e:
            raise SerializationError(
                f"Failed to deserialize job: {e}", details={"task_name": name}
            ) from e

    async def dispatch(self, name: str, payload: Any) -> JobOutcome:
        """Deserialize and execute a job, reporting the result as an outcome."""
        try:
            job = self.deserialize(name, payload)
            result = await self.get(name).handler.handle(job)
        except JobSystemError as e:
            return JobOutcome.failure(e.message, e.error_code)
        except Exception as e:
            return JobOutcome.failure(str(e) or type(e).__name__, ExecutionError.error_code)

        return JobOutcome.success(result)
