import unittest
from collections.abc import AsyncIterator

from stream_edits import (
    ActionLog,
    DocumentHandle,
    EditSession,
    EditSessionError,
    EditSettings,
    InMemoryDocumentStore,
    Message,
    NoChangesError,
    PathNotFoundError,
    RequestLog,
    SessionStatus,
    ToolUse,
    run_edit_session,
)
from stream_edits.session import (
    ERROR_OUTPUT_HEADER_NO_EDITS,
    ERROR_OUTPUT_HEADER_WITH_EDITS,
    NO_CHANGES_MESSAGE,
    SUCCESS_OUTPUT_HEADER,
)

APP = "def greet():\n    return 'hi'\n\n\ndef answer():\n    return 41\n"

GREET_BLOCK = """src/app.py
```python
<<<<<<< SEARCH
def greet():
    return 'hi'
=======
def greet(name):
    return f'hi {name}'
>>>>>>> REPLACE"""

ANSWER_BLOCK = """src/app.py
```python
<<<<<<< SEARCH
return 41
=======
return 42
>>>>>>> REPLACE"""


def chunked(text: str, size: int) -> list[str]:
    return [text[i : i + size] for i in range(0, len(text), size)]


class ScriptedClient:
    def __init__(self, chunks: list[str], error: Exception | None = None) -> None:
        self.chunks = chunks
        self.error = error
        self.requests = []

    async def stream_completion_text(self, request) -> AsyncIterator[str]:
        self.requests.append(request)
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error


class BrokenAudit:
    def record_chunk(self, session_id, raw_chunk, parsed_units) -> None:
        raise OSError("disk full")


class BrokenTracker:
    def notify_edited(self, handles) -> None:
        raise RuntimeError("tracker gone")


class TestEditSession(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.store = InMemoryDocumentStore({"src/app.py": APP})
        self.tracker = ActionLog()

    async def run_session(self, response: str, size: int = 7, **kwargs) -> str:
        client = ScriptedClient(chunked(response, size))
        self.client = client
        return await run_edit_session(
            "Make greet take a name and fix answer",
            [Message.user("Please fix src/app.py")],
            client=client,
            store=self.store,
            tracker=self.tracker,
            **kwargs,
        )

    async def test_applies_blocks_and_reports_them(self) -> None:
        response = f"Here you go.\n\n{GREET_BLOCK}\n```\n\n{ANSWER_BLOCK}\n```\n"
        output = await self.run_session(response)

        self.assertEqual(output, f"{SUCCESS_OUTPUT_HEADER}\n\n{GREET_BLOCK}\n\n{ANSWER_BLOCK}")
        self.assertEqual(
            self.store.saved["src/app.py"],
            "def greet(name):\n    return f'hi {name}'\n\n\ndef answer():\n    return 42\n",
        )
        self.assertEqual(self.tracker.edited, [frozenset({DocumentHandle("src/app.py")})])

    async def test_request_carries_instructions(self) -> None:
        await self.run_session(f"{GREET_BLOCK}\n")
        request = self.client.requests[0]
        self.assertEqual(request.temperature, 0.0)
        self.assertEqual(request.messages[0].content[0].text, "Please fix src/app.py")
        self.assertEqual(request.messages[-1].content[-1].text, "Make greet take a name and fix answer")

    async def test_no_blocks_is_a_failure(self) -> None:
        with self.assertRaises(NoChangesError) as ctx:
            await self.run_session("I don't think anything needs to change.\n")

        self.assertEqual(str(ctx.exception), NO_CHANGES_MESSAGE)
        self.assertEqual(self.store.save_calls, [])
        self.assertEqual(self.tracker.edited, [frozenset()])

    async def test_same_file_is_saved_once_and_sees_earlier_edits(self) -> None:
        first = "src/app.py\n<<<<<<< SEARCH\n    return 41\n=======\n    return 42\n>>>>>>> REPLACE\n"
        second = "src/app.py\n<<<<<<< SEARCH\n    return 42\n=======\n    return 43\n>>>>>>> REPLACE\n"
        await self.run_session(first + "\n" + second)

        self.assertEqual(self.store.save_calls, [DocumentHandle("src/app.py")])
        self.assertTrue(self.store.saved["src/app.py"].endswith("    return 43\n"))

    async def test_errors_are_aggregated(self) -> None:
        unmatched = "src/app.py\n<<<<<<< SEARCH\nnot there\n=======\nwhatever\n>>>>>>> REPLACE"
        malformed = "src/app.py\n<<<<<<< SEARCH\norphan\n>>>>>>> REPLACE"
        response = f"{GREET_BLOCK}\n```\n\n{unmatched}\n\n{malformed}\n"

        with self.assertRaises(EditSessionError) as ctx:
            await self.run_session(response)

        error = ctx.exception
        message = str(error)
        self.assertTrue(message.startswith(f"{ERROR_OUTPUT_HEADER_WITH_EDITS}\n\n{GREET_BLOCK}"))
        self.assertIn("# 1 SEARCH/REPLACE block(s) failed to match:", message)
        self.assertIn("## No exact match in: src/app.py\n```\nnot there\n```", message)
        self.assertIn("The SEARCH section must exactly match", message)
        self.assertIn("# 1 SEARCH/REPLACE block(s) failed to parse:", message)
        self.assertIn("Expected `=======`, found `>>>>>>> REPLACE`", message)
        self.assertIn("Do not re-send them!", message)
        self.assertTrue(message.endswith("you don't need to repeat them.\n"))

        self.assertEqual([f.search for f in error.failed], ["not there\n"])
        self.assertEqual(len(error.parse_errors), 1)
        self.assertEqual([u.source for u in error.applied], [GREET_BLOCK])
        self.assertIn("def greet(name):", self.store.saved["src/app.py"])

    async def test_failure_without_edits(self) -> None:
        unmatched = "src/app.py\n<<<<<<< SEARCH\nnot there\n=======\nwhatever\n>>>>>>> REPLACE\n"
        with self.assertRaises(EditSessionError) as ctx:
            await self.run_session(unmatched)

        message = str(ctx.exception)
        self.assertNotIsInstance(ctx.exception, NoChangesError)
        self.assertTrue(message.startswith(ERROR_OUTPUT_HEADER_NO_EDITS))
        self.assertNotIn("Do not re-send", message)
        self.assertIn("etc.\n\nYou can fix errors by running the tool again.", message)
        self.assertEqual(self.store.save_calls, [])

    async def test_failure_mentions_similar_lines(self) -> None:
        block = (
            "src/app.py\n<<<<<<< SEARCH\ndef answer():\n    return 41\n    # done\n"
            "=======\ndef answer():\n    return 42\n>>>>>>> REPLACE\n"
        )
        with self.assertRaises(EditSessionError) as ctx:
            await self.run_session(block)
        self.assertIn("Did you mean to match some of these actual lines from src/app.py?", str(ctx.exception))

    async def test_write_replaces_whole_file(self) -> None:
        self.store = InMemoryDocumentStore({"src/app.py": APP}, allow_create=True)
        response = (
            "src/app.py\n<<<<<<< WRITE\nprint('rewritten')\n>>>>>>> WRITE\n\n"
            "src/new.py\n<<<<<<< SEARCH\n=======\nVALUE = 1\n>>>>>>> REPLACE\n"
        )
        await self.run_session(response)

        self.assertEqual(self.store.saved["src/app.py"], "print('rewritten')\n")
        self.assertEqual(self.store.saved["src/new.py"], "VALUE = 1\n")
        self.assertEqual(len(self.store.save_calls), 2)

    async def test_unknown_path_aborts_without_saving(self) -> None:
        response = f"{GREET_BLOCK}\n\nmissing.py\n<<<<<<< SEARCH\na\n=======\nb\n>>>>>>> REPLACE\n\n{ANSWER_BLOCK}\n"
        with self.assertRaises(PathNotFoundError):
            await self.run_session(response)

        self.assertIn("def greet(name):", self.store.documents["src/app.py"])
        self.assertIn("return 41", self.store.documents["src/app.py"])
        self.assertEqual(self.store.save_calls, [])
        self.assertEqual(self.tracker.edited, [])

    async def test_stream_error_aborts_without_saving(self) -> None:
        client = ScriptedClient([f"{GREET_BLOCK}\n"], error=ConnectionError("stream reset"))
        session = EditSession(self.store, self.tracker)
        with self.assertRaises(ConnectionError):
            await session.run(client.stream_completion_text(None))

        self.assertEqual(session.status, SessionStatus.STREAMING)
        self.assertIn("def greet(name):", self.store.documents["src/app.py"])
        self.assertEqual(self.store.save_calls, [])

    async def test_same_result_for_any_chunking(self) -> None:
        response = f"{GREET_BLOCK}\n\n{ANSWER_BLOCK}"
        outputs = []
        for size in (1, 3, len(response)):
            self.store = InMemoryDocumentStore({"src/app.py": APP})
            outputs.append((await self.run_session(response, size=size), self.store.saved))
        self.assertEqual(outputs[0], outputs[1])
        self.assertEqual(outputs[0], outputs[2])

    async def test_matching_inline(self) -> None:
        settings = EditSettings(offload_matching=False)
        output = await self.run_session(f"{ANSWER_BLOCK}\n", settings=settings)
        self.assertTrue(output.startswith(SUCCESS_OUTPUT_HEADER))
        self.assertIn("return 42", self.store.saved["src/app.py"])

    async def test_audit_log_records_chunks(self) -> None:
        log = RequestLog()
        request_id = log.new_request("fix it")
        response = f"{GREET_BLOCK}\n"
        await self.run_session(response, size=10, audit=log, session_id=request_id)

        record = log.get(request_id)
        self.assertEqual(record.response, response)
        self.assertEqual([u.source for u in record.units], [GREET_BLOCK])

    async def test_broken_audit_log_does_not_change_outcome(self) -> None:
        with self.assertLogs("stream_edits.session", level="ERROR"):
            output = await self.run_session(f"{GREET_BLOCK}\n", audit=BrokenAudit())
        self.assertTrue(output.startswith(SUCCESS_OUTPUT_HEADER))

    async def test_broken_tracker_does_not_lose_the_report(self) -> None:
        session = EditSession(self.store, BrokenTracker())
        await session.process_chunk(f"{ANSWER_BLOCK}\n")
        with self.assertLogs("stream_edits.session", level="ERROR"):
            output = await session.finalize()

        self.assertTrue(output.startswith(SUCCESS_OUTPUT_HEADER))
        self.assertEqual(session.status, SessionStatus.SUCCEEDED)
        self.assertIn("return 42", self.store.saved["src/app.py"])

    async def test_blank_search_goes_through_matching(self) -> None:
        self.store = InMemoryDocumentStore({"a.py": "import os\n\ndef f():\n    return 1\n"})
        response = "a.py\n```python\n<<<<<<< SEARCH\n\n=======\n# header\n>>>>>>> REPLACE\n```\n"
        await self.run_session(response)

        # The first blank line is replaced; the rest of the file survives.
        self.assertEqual(self.store.saved["a.py"], "import os# header\n\ndef f():\n    return 1\n")

    async def test_failure_report_uses_configured_fence(self) -> None:
        settings = EditSettings(fence="~~~~")
        unmatched = "src/app.py\n<<<<<<< SEARCH\nnot there\n=======\nwhatever\n>>>>>>> REPLACE\n"
        malformed = "src/app.py\n<<<<<<< SEARCH\norphan\n>>>>>>> REPLACE\n"
        with self.assertRaises(EditSessionError) as ctx:
            await self.run_session(unmatched + "\n" + malformed, settings=settings)

        message = str(ctx.exception)
        self.assertIn("## No exact match in: src/app.py\n~~~~\nnot there\n~~~~\n", message)
        self.assertIn("~~~~\nsrc/app.py\n<<<<<<< SEARCH\norphan\n>>>>>>> REPLACE\n~~~~\n", message)
        self.assertNotIn("```", message)

    async def test_status_transitions(self) -> None:
        session = EditSession(self.store, self.tracker)
        self.assertEqual(session.status, SessionStatus.INITIATED)
        await session.process_chunk(f"{ANSWER_BLOCK}\n")
        self.assertEqual(session.status, SessionStatus.STREAMING)
        await session.finalize()
        self.assertEqual(session.status, SessionStatus.SUCCEEDED)

        with self.assertRaises(RuntimeError):
            await session.finalize()
        with self.assertRaises(RuntimeError):
            await session.process_chunk("more")

    async def test_empty_session_fails(self) -> None:
        session = EditSession(self.store, self.tracker)
        with self.assertRaises(NoChangesError):
            await session.finalize()
        self.assertEqual(session.status, SessionStatus.FAILED)

    async def test_pending_tool_use_is_dropped_from_request(self) -> None:
        messages = [
            Message.user("Please fix src/app.py"),
            Message.assistant("Sure."),
        ]
        messages[-1].content.append(ToolUse(id="1", name="edit-files", input={}))
        client = ScriptedClient([f"{ANSWER_BLOCK}\n"])
        await run_edit_session("fix", messages, client=client, store=self.store, tracker=self.tracker)

        sent = client.requests[0].messages
        self.assertEqual(len(sent), 3)
        self.assertFalse(any(isinstance(part, ToolUse) for m in sent for part in m.content))
        self.assertIsInstance(messages[-1].content[-1], ToolUse)


if __name__ == "__main__":
    unittest.main()
