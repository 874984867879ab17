"""Document stores: an in-memory one and one backed by files under a root directory."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

import anyio.to_thread as to_thread

from .errors import PathEscapeError, PathNotFoundError
from .match import whole_file_diff
from .types import Diff

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DocumentHandle:
    path: str


class InMemoryDocumentStore:
    """Documents kept as strings; `saved` holds the content written by each save."""

    def __init__(self, documents: Mapping[str, str] | None = None, *, allow_create: bool = False) -> None:
        self.documents: dict[str, str] = dict(documents or {})
        self.saved: dict[str, str] = {}
        self.save_calls: list[DocumentHandle] = []
        self.allow_create = allow_create

    async def resolve(self, file_path: str) -> DocumentHandle:
        if file_path not in self.documents:
            if not self.allow_create:
                raise PathNotFoundError(file_path)
            self.documents[file_path] = ""
        return DocumentHandle(file_path)

    async def snapshot(self, handle: DocumentHandle) -> str:
        return self.documents[handle.path]

    async def diff(self, handle: DocumentHandle, target_text: str) -> Diff:
        return whole_file_diff(target_text, self.documents[handle.path])

    def apply(self, handle: DocumentHandle, diff: Diff) -> None:
        self.documents[handle.path] = diff.apply(self.documents[handle.path])

    async def save(self, handle: DocumentHandle) -> None:
        self.save_calls.append(handle)
        self.saved[handle.path] = self.documents[handle.path]


class FileSystemDocumentStore:
    """Buffers files under ``root`` in memory until they are saved."""

    def __init__(self, root: str | Path, encoding: str = "utf-8") -> None:
        self.root = Path(root).resolve()
        self.encoding = encoding
        self._buffers: dict[DocumentHandle, str] = {}

    def resolve_path(self, file_path: str | Path) -> Path:
        path = Path(file_path)
        if not path.is_absolute():
            path = self.root / path
        path = path.resolve()
        if not path.is_relative_to(self.root):
            raise PathEscapeError(str(file_path))
        return path

    async def resolve(self, file_path: str) -> DocumentHandle:
        path = self.resolve_path(file_path)
        if path.is_dir():
            raise PathNotFoundError(file_path, detail="Path is a directory")
        return DocumentHandle(path.relative_to(self.root).as_posix())

    async def snapshot(self, handle: DocumentHandle) -> str:
        if handle not in self._buffers:
            path = self.root / handle.path
            if path.exists():
                self._buffers[handle] = await to_thread.run_sync(self._read, path)
            else:
                self._buffers[handle] = ""
        return self._buffers[handle]

    async def diff(self, handle: DocumentHandle, target_text: str) -> Diff:
        return whole_file_diff(target_text, await self.snapshot(handle))

    def apply(self, handle: DocumentHandle, diff: Diff) -> None:
        if handle not in self._buffers:
            raise KeyError(f"{handle.path} was never opened")
        self._buffers[handle] = diff.apply(self._buffers[handle])

    async def save(self, handle: DocumentHandle) -> None:
        path = self.root / handle.path
        await to_thread.run_sync(self._write, path, self._buffers[handle])
        logger.debug("saved %s", path)

    def _read(self, path: Path) -> str:
        return path.read_text(encoding=self.encoding)

    def _write(self, path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding=self.encoding)
