from collections.abc import Hashable, Sequence
from dataclasses import dataclass, field

from .types import ParsedUnit


class ActionLog:
    """Change tracker that remembers every set of documents reported as edited."""

    def __init__(self) -> None:
        self.edited: list[frozenset[Hashable]] = []

    def notify_edited(self, handles: set[Hashable]) -> None:
        self.edited.append(frozenset(handles))


@dataclass(slots=True)
class EditRequestRecord:
    id: int
    instructions: str
    chunks: list[str] = field(default_factory=list)
    units: list[ParsedUnit] = field(default_factory=list)
    output: str | None = None
    error: str | None = None

    @property
    def response(self) -> str:
        return "".join(self.chunks)

    @property
    def done(self) -> bool:
        return self.output is not None or self.error is not None


class RequestLog:
    """Audit trail of edit requests: what was asked, what streamed back, how it ended."""

    def __init__(self) -> None:
        self._requests: list[EditRequestRecord] = []

    @property
    def requests(self) -> list[EditRequestRecord]:
        return list(self._requests)

    def get(self, request_id: int) -> EditRequestRecord:
        return self._requests[request_id]

    def new_request(self, instructions: str) -> int:
        request_id = len(self._requests)
        self._requests.append(EditRequestRecord(id=request_id, instructions=instructions))
        return request_id

    def record_chunk(self, session_id: int, raw_chunk: str, parsed_units: Sequence[ParsedUnit]) -> None:
        record = self.get(session_id)
        record.chunks.append(raw_chunk)
        record.units.extend(parsed_units)

    def set_tool_output(self, request_id: int, output: str | None = None, error: str | None = None) -> None:
        record = self.get(request_id)
        record.output = output
        record.error = error
