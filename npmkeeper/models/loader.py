"""
Asynchronous loader state for npmkeeper caches.

A :class:`LoaderEntry` records where a background load stands. Entries are
frozen: a state transition always installs a brand-new entry, so a reader
sees either the old or the new entry in full, never a mixture.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field, replace
from typing import Generic, Optional, TypeVar

from npmkeeper.models.registry import RegistryMetadata

T = TypeVar("T")


class LoaderState(enum.Enum):
    """Lifecycle of an asynchronous load."""

    NOT_STARTED = "not-started"
    IN_PROGRESS = "in-progress"
    FULFILLED = "fulfilled"
    REJECTED = "rejected"


@dataclass(frozen=True)
class LoaderEntry(Generic[T]):
    """State of one (cache namespace, key) load.

    Attributes:
        state: Current :class:`LoaderState`.
        start_time: Epoch seconds when the load began.
        in_flight: The pending task while ``state`` is IN_PROGRESS.
        value: The loaded value; present exactly when FULFILLED.
    """

    state: LoaderState
    start_time: float
    in_flight: Optional["asyncio.Future[None]"] = field(
        default=None, compare=False, repr=False
    )
    value: Optional[T] = None

    def __post_init__(self) -> None:
        if (self.state is LoaderState.FULFILLED) != (self.value is not None):
            raise ValueError(
                f"LoaderEntry value must be present iff state is FULFILLED "
                f"(state={self.state.value})"
            )

    @classmethod
    def not_started(cls, start_time: float) -> "LoaderEntry[T]":
        return cls(LoaderState.NOT_STARTED, start_time)

    @classmethod
    def in_progress(
        cls, start_time: float, handle: Optional["asyncio.Future[None]"] = None
    ) -> "LoaderEntry[T]":
        return cls(LoaderState.IN_PROGRESS, start_time, in_flight=handle)

    @classmethod
    def fulfilled(cls, start_time: float, value: T) -> "LoaderEntry[T]":
        return cls(LoaderState.FULFILLED, start_time, value=value)

    @classmethod
    def rejected(cls, start_time: float) -> "LoaderEntry[T]":
        return cls(LoaderState.REJECTED, start_time)

    @property
    def is_in_progress(self) -> bool:
        return self.state is LoaderState.IN_PROGRESS

    @property
    def is_fulfilled(self) -> bool:
        return self.state is LoaderState.FULFILLED

    def without_handle(self) -> "LoaderEntry[T]":
        """Copy with the in-flight handle dropped (for persistence)."""
        if self.in_flight is None:
            return self
        return replace(self, in_flight=None)


@dataclass(frozen=True)
class CacheItem:
    """A successful registry fetch and when it happened.

    Attributes:
        fetched_at: Epoch seconds of the fetch.
        metadata: The parsed registry document.
    """

    fetched_at: float
    metadata: RegistryMetadata
