"""
Client-side state reconciler.

Holds one client's projection of the store:
- projects in display order, with their channel lists
- message histories keyed by (project_id, channel_id)
- the active (project, channel) selection

Histories are replaced wholesale from REST on load, on every channel switch
and on every resync, and patched incrementally from hub events in between.
Compound ``"{project}-{channel}"`` keys are ambiguous once project ids contain
hyphens (``qa`` + ``test-general`` vs ``qa-test`` + ``general``), so they are
only used for display.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

import structlog

from teamchat_shared.schemas.common import GENERAL_CHANNEL_ID, MAIN_PROJECT_ID, channel_key
from teamchat_shared.schemas.events import EventType
from teamchat_shared.schemas.messages import MessageDeleted, MessageRead
from teamchat_shared.schemas.projects import ChannelChange, ProjectDeleted, ProjectRead

log = structlog.get_logger()

Scope = tuple[str, str]


@dataclass(frozen=True)
class Selection:
    project_id: str = MAIN_PROJECT_ID
    channel_id: str = GENERAL_CHANNEL_ID

    @property
    def key(self) -> str:
        return channel_key(self.project_id, self.channel_id)

    @property
    def scope(self) -> Scope:
        return (self.project_id, self.channel_id)


class StateReconciler:
    """In-memory projection of projects, channels and messages."""

    def __init__(self) -> None:
        self.projects: dict[str, ProjectRead] = {}
        self.channels: dict[str, list[str]] = {}
        self.histories: dict[Scope, list[MessageRead]] = {}
        self.active = Selection()
        self._handlers: dict[str, Callable[[Any], None]] = {
            EventType.RECEIVE_MESSAGE.value: self._on_receive_message,
            EventType.MESSAGE_SENT.value: self._on_receive_message,
            EventType.MESSAGE_DELETED.value: self._on_message_deleted,
            EventType.PROJECT_CREATED.value: self._on_project_created,
            EventType.PROJECT_DELETED.value: self._on_project_deleted,
            EventType.CHANNEL_CREATED.value: self._on_channel_created,
            EventType.CHANNEL_DELETED.value: self._on_channel_deleted,
        }

    def messages_for(self, project_id: str, channel_id: str) -> list[MessageRead]:
        return list(self.histories.get((project_id, channel_id), []))

    def held_scopes(self) -> list[Scope]:
        """Every (project_id, channel_id) whose history is held locally."""
        return list(self.histories)

    # --- Resynchronization points ---

    def load_projects(self, projects: list[ProjectRead]) -> None:
        """Replace the project list with a fresh REST snapshot.

        Histories of projects or channels missing from the snapshot are
        dropped; the selection falls back to ``main``/``general`` or to the
        project's ``general``.
        """
        self.projects = {p.id: p for p in projects}
        self.channels = {p.id: list(p.channels) for p in projects}

        stale = [
            (project_id, channel_id)
            for project_id, channel_id in self.histories
            if channel_id not in self.channels.get(project_id, ())
        ]
        for scope in stale:
            del self.histories[scope]
        if stale:
            log.debug("reconciler.stale_histories_dropped", count=len(stale))

        if self.active.project_id not in self.projects:
            self.active = Selection()
        elif self.active.channel_id not in self.channels[self.active.project_id]:
            self.active = Selection(self.active.project_id, GENERAL_CHANNEL_ID)

    def replace_history(self, project_id: str, channel_id: str, messages: list[MessageRead]) -> None:
        """Replace a channel's history with a fresh REST snapshot."""
        self.histories[(project_id, channel_id)] = list(messages)

    def select(self, project_id: str, channel_id: str) -> Selection:
        """Make a (project, channel) pair active; the caller refetches its history."""
        self.active = Selection(project_id, channel_id)
        return self.active

    # --- Incremental patches ---

    def apply(self, event_type: str, data: Any) -> bool:
        """Apply one hub event. Returns False for events that carry no state."""
        handler = self._handlers.get(event_type)
        if handler is None:
            return False
        handler(data)
        return True

    def upsert_message(self, message: MessageRead) -> bool:
        """Insert by id; a duplicate id replaces the held copy. Returns True if new."""
        history = self.histories.setdefault((message.project_id, message.channel_id), [])
        for index, held in enumerate(history):
            if held.id == message.id:
                history[index] = message
                return False
        history.append(message)
        return True

    def remove_message(self, project_id: str, channel_id: str, message_id: str) -> bool:
        history = self.histories.get((project_id, channel_id))
        if not history:
            return False
        remaining = [m for m in history if m.id != message_id]
        if len(remaining) == len(history):
            return False
        self.histories[(project_id, channel_id)] = remaining
        return True

    def add_project(self, project: ProjectRead) -> None:
        self.projects[project.id] = project
        self.channels[project.id] = list(project.channels)

    def remove_project(self, project_id: str) -> None:
        self.projects.pop(project_id, None)
        self.channels.pop(project_id, None)
        for scope in [s for s in self.histories if s[0] == project_id]:
            del self.histories[scope]
        if self.active.project_id == project_id:
            self.active = Selection()

    def add_channel(self, project_id: str, channel_id: str) -> None:
        channels = self.channels.setdefault(project_id, [])
        if channel_id not in channels:
            channels.append(channel_id)

    def remove_channel(self, project_id: str, channel_id: str) -> None:
        channels = self.channels.get(project_id)
        if channels is not None and channel_id in channels:
            channels.remove(channel_id)
        self.histories.pop((project_id, channel_id), None)
        if self.active == Selection(project_id, channel_id):
            self.active = Selection(project_id, GENERAL_CHANNEL_ID)

    # --- Event handlers ---

    def _on_receive_message(self, data: Any) -> None:
        self.upsert_message(MessageRead.model_validate(data))

    def _on_message_deleted(self, data: Any) -> None:
        event = MessageDeleted.model_validate(data)
        self.remove_message(event.project_id, event.channel_id, event.message_id)

    def _on_project_created(self, data: Any) -> None:
        self.add_project(ProjectRead.model_validate(data))

    def _on_project_deleted(self, data: Any) -> None:
        if isinstance(data, str):
            data = {"projectId": data}
        self.remove_project(ProjectDeleted.model_validate(data).project_id)

    def _on_channel_created(self, data: Any) -> None:
        event = ChannelChange.model_validate(data)
        self.add_channel(event.project_id, event.channel_id)

    def _on_channel_deleted(self, data: Any) -> None:
        event = ChannelChange.model_validate(data)
        self.remove_channel(event.project_id, event.channel_id)
