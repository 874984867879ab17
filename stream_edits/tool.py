from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from .config import EditSettings
from .interfaces import ChangeTracker, DocumentStore, InferenceClient
from .log import RequestLog
from .request import Message
from .session import run_edit_session

DESCRIPTION = """Edit files in the current project.

Describe the changes in plain language. A second model turns the description
into SEARCH/REPLACE blocks that are applied to the files in order. When some
blocks fail, the result lists what was applied and what needs fixing; run the
tool again with corrected instructions.
"""


class EditFilesToolInput(BaseModel):
    edit_instructions: str = Field(
        description=(
            "High-level edit instructions. These will be interpreted by a smaller model, so explain"
            " the changes you want that model to make and which file paths need changing. Start"
            " each path with one of the project's root directories. Never include code blocks or"
            " snippets, only natural language descriptions of the changes."
        )
    )
    display_description: str = Field(
        description=(
            "A terse, user-friendly description of what changes are being made, shown in the UI."
            ' For example: "Fix auth bug in login flow".'
        )
    )


class EditFilesTool:
    name = "edit-files"

    def __init__(self, settings: EditSettings | None = None) -> None:
        self.settings = settings or EditSettings()

    def description(self) -> str:
        return DESCRIPTION

    def input_schema(self) -> dict[str, Any]:
        return EditFilesToolInput.model_json_schema()

    def ui_text(self, input: Mapping[str, Any]) -> str:
        try:
            return EditFilesToolInput.model_validate(input).display_description
        except ValidationError:
            return "Edit files"

    async def run(
        self,
        input: Mapping[str, Any],
        messages: Sequence[Message],
        *,
        client: InferenceClient,
        store: DocumentStore,
        tracker: ChangeTracker,
        log: RequestLog | None = None,
        valid_fnames: Sequence[str] | None = None,
    ) -> str:
        """Run one edit request and return its report.

        Raises `EditSessionError` with the failure report when any block failed,
        and `pydantic.ValidationError` when ``input`` is malformed.
        """
        params = EditFilesToolInput.model_validate(input)

        if log is None:
            return await run_edit_session(
                params.edit_instructions,
                messages,
                client=client,
                store=store,
                tracker=tracker,
                settings=self.settings,
                valid_fnames=valid_fnames,
            )

        request_id = log.new_request(params.edit_instructions)
        try:
            output = await run_edit_session(
                params.edit_instructions,
                messages,
                client=client,
                store=store,
                tracker=tracker,
                settings=self.settings,
                audit=log,
                session_id=request_id,
                valid_fnames=valid_fnames,
            )
        except Exception as exc:
            log.set_tool_output(request_id, error=str(exc))
            raise

        log.set_tool_output(request_id, output=output)
        return output
