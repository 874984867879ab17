"""Contracts for the collaborators an edit session is built from."""

from collections.abc import AsyncIterator, Hashable, Sequence
from typing import Protocol, TypeVar

from .request import CompletionRequest
from .types import Diff, ParsedUnit

HandleT = TypeVar("HandleT", bound=Hashable)


class DocumentStore(Protocol[HandleT]):
    async def resolve(self, file_path: str) -> HandleT:
        """Map a path to a live document; raise `PathNotFoundError` when it cannot."""

    async def snapshot(self, handle: HandleT) -> str: ...

    async def diff(self, handle: HandleT, target_text: str) -> Diff: ...

    def apply(self, handle: HandleT, diff: Diff) -> None: ...

    async def save(self, handle: HandleT) -> None: ...


class InferenceClient(Protocol):
    def stream_completion_text(self, request: CompletionRequest) -> AsyncIterator[str]: ...


class ChangeTracker(Protocol[HandleT]):
    def notify_edited(self, handles: set[HandleT]) -> None: ...


class AuditLog(Protocol):
    def record_chunk(self, session_id: int, raw_chunk: str, parsed_units: Sequence[ParsedUnit]) -> None: ...
