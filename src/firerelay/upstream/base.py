"""Upstream base — pluggable interface for document-store change streams.

Learn: The relay doesn't care how changes are observed. An Upstream knows
how to open one stream (a collection or collection group) and yield its
changes as batches of RawChange, in the order the store reported them.

A watch() generator raises StreamError when the subscription breaks; the
ChangeSource owns reconnecting. Closing the generator must release the
underlying subscription.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator

from firerelay.events import EntityType, RawChange


@dataclass(frozen=True)
class StreamSpec:
    """One upstream stream and the entity type its documents represent."""

    name: str  # collection id, also used in logs
    entity_type: EntityType
    collection_group: bool = False  # match the collection at any depth


# The five streams the relay listens to. "tasks" is a collection group so
# tasks nested under any project are observed.
DEFAULT_STREAMS: tuple[StreamSpec, ...] = (
    StreamSpec("projects", EntityType.PROJECT),
    StreamSpec("tasks", EntityType.TASK, collection_group=True),
    StreamSpec("users", EntityType.USER),
    StreamSpec("comments", EntityType.COMMENT),
    StreamSpec("notifications", EntityType.NOTIFICATION),
)


class Upstream(ABC):
    """Abstract base for change-stream backends."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend identifier, e.g. 'firestore'."""

    @abstractmethod
    def watch(self, stream: StreamSpec) -> AsyncIterator[list[RawChange]]:
        """Subscribe to a stream and yield change batches until closed.

        Must raise StreamError when the subscription fails or dies.
        """

    def close(self) -> None:
        """Release backend resources. Called once at shutdown."""
