from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True, slots=True)
class RemoteProject:
    id: str
    name: str
    description: str | None = None
    status: str | None = None


@dataclass(frozen=True, slots=True)
class RemoteTask:
    """A task as the remote tracker reports it."""

    id: str
    project_id: str
    name: str
    description: str | None = None
    status: str | None = None
    priority: int | None = None
    assignees: tuple[str, ...] = field(default_factory=tuple)
    tags: tuple[str, ...] = field(default_factory=tuple)
    due_date: str | None = None
    updated_at: datetime | None = None

    def content_hash(self) -> str:
        """Hash of the user-visible fields.

        The remote modification time is left out so a task we pushed ourselves
        hashes the same when it comes back on the next pull.
        """

        payload = {
            "name": self.name,
            "description": self.description or "",
            "status": self.status or "",
            "priority": self.priority,
            "assignees": sorted(self.assignees),
            "tags": sorted(self.tags),
            "due_date": self.due_date,
        }
        encoded = json.dumps(payload, sort_keys=True, ensure_ascii=False).encode("utf-8")
        return hashlib.sha256(encoded).hexdigest()


@dataclass(frozen=True, slots=True)
class TaskWrite:
    """Fields sent to the remote tracker when creating or updating a task."""

    name: str
    description: str | None = None
    status: str | None = None
    priority: int | None = None
    tags: tuple[str, ...] = field(default_factory=tuple)
    due_date: str | None = None

    def to_json(self) -> dict[str, object]:
        out: dict[str, object] = {"name": self.name}
        if self.description is not None:
            out["description"] = self.description
        if self.status:
            out["status"] = self.status
        if self.priority is not None:
            out["priority"] = self.priority
        if self.tags:
            out["tags"] = list(self.tags)
        if self.due_date:
            out["due_date"] = self.due_date
        return out
