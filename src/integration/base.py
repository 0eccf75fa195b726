from __future__ import annotations

import re
from abc import ABC, abstractmethod

from talk2task.models import Platform, Task, TaskStatus

STATUS_MARKERS = {
    TaskStatus.COMPLETED: "[Completed]",
    TaskStatus.CANCELLED: "[Cancelled]",
}
_MARKER_RE = re.compile(r"\[(?:Completed|Cancelled)\]\s*")


def relabel_title(title: str, status: TaskStatus) -> str:
    """Prefix a remote title with the marker for `status`.

    Existing markers are stripped first, so relabeling is idempotent and a
    non-terminal status simply removes the marker.
    """
    base = _MARKER_RE.sub("", title or "").strip()
    marker = STATUS_MARKERS.get(TaskStatus(status))
    if marker:
        return f"{marker} {base}" if base else marker
    return base


class IntegrationClient(ABC):
    """One external productivity tool, bound to one user's credential.

    Implementations raise IntegrationError for every failure they can classify.
    """

    platform: Platform

    @abstractmethod
    async def create(self, task: Task, user_timezone: str = "UTC") -> str:
        """Create the remote object for `task` and return its identifier."""
        raise NotImplementedError

    @abstractmethod
    async def update_status(self, external_id: str, status: TaskStatus) -> None:
        raise NotImplementedError

    @abstractmethod
    async def delete(self, external_id: str) -> None:
        """Remove the remote object. An object that is already gone counts as deleted."""
        raise NotImplementedError
