from collections.abc import Awaitable, Mapping
from typing import Any, Protocol

from plugin_jobs.jobs.schemas import HandlerStats, JobResult

HandlerOutcome = JobResult | Mapping[str, Any]


class JobHandler(Protocol):
    """
    Protocol for plugin job handlers.

    A handler receives the job payload and returns a ``JobResult`` (or a
    mapping with the same keys), either directly or as an awaitable. Raising
    marks the attempt as failed with the exception message.
    """

    def __call__(
        self, payload: dict[str, Any]
    ) -> HandlerOutcome | Awaitable[HandlerOutcome]: ...


class JobHandlerRegistry:
    """Process-local registry of job handlers keyed by plugin and job type."""

    def __init__(self):
        self._handlers: dict[str, dict[str, JobHandler]] = {}

    def register(self, plugin_id: str, job_type: str, handler: JobHandler) -> None:
        """Register a handler; a later registration replaces an earlier one."""
        self._handlers.setdefault(plugin_id, {})[job_type] = handler

    def unregister_plugin(self, plugin_id: str) -> None:
        """Drop every handler of a plugin."""
        self._handlers.pop(plugin_id, None)

    def has(self, plugin_id: str, job_type: str) -> bool:
        return job_type in self._handlers.get(plugin_id, {})

    def get(self, plugin_id: str, job_type: str) -> JobHandler | None:
        return self._handlers.get(plugin_id, {}).get(job_type)

    def list(self, plugin_id: str) -> list[str]:
        """List the job types registered for a plugin."""
        return list(self._handlers.get(plugin_id, {}).keys())

    def stats(self) -> HandlerStats:
        return HandlerStats(
            plugins=len(self._handlers),
            total_handlers=sum(len(types) for types in self._handlers.values()),
        )

    def clear(self) -> None:
        self._handlers.clear()
