from .config import EditSettings
from .errors import (
    EditError,
    EditSessionError,
    MissingFilenameError,
    NoChangesError,
    ParseError,
    PathEscapeError,
    PathNotFoundError,
)
from .log import ActionLog, RequestLog
from .match import locate_and_diff, whole_file_diff
from .parser import EditActionParser, parse_edit_actions
from .prompts import EditPrompts, build_edit_request
from .request import CompletionRequest, Message, Role, Text, ToolResult, ToolUse
from .session import EditSession, SessionStatus, run_edit_session
from .stores import DocumentHandle, FileSystemDocumentStore, InMemoryDocumentStore
from .tool import EditFilesTool, EditFilesToolInput
from .types import DEFAULT_FENCE, Diff, EditAction, Fence, MatchFailure, ParsedUnit, Replace, TextEdit, Write

__all__ = [
    "ActionLog",
    "build_edit_request",
    "CompletionRequest",
    "DEFAULT_FENCE",
    "Diff",
    "DocumentHandle",
    "EditAction",
    "EditActionParser",
    "EditError",
    "EditFilesTool",
    "EditFilesToolInput",
    "EditPrompts",
    "EditSession",
    "EditSessionError",
    "EditSettings",
    "Fence",
    "FileSystemDocumentStore",
    "InMemoryDocumentStore",
    "locate_and_diff",
    "MatchFailure",
    "Message",
    "MissingFilenameError",
    "NoChangesError",
    "parse_edit_actions",
    "ParsedUnit",
    "ParseError",
    "PathEscapeError",
    "PathNotFoundError",
    "Replace",
    "RequestLog",
    "Role",
    "run_edit_session",
    "SessionStatus",
    "Text",
    "TextEdit",
    "ToolResult",
    "ToolUse",
    "whole_file_diff",
    "Write",
]
