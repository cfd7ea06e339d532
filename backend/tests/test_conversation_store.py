"""Unit tests for conversation persistence."""
from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path

from src.tool_orchestrator.conversation_store import ConversationStore
from src.tool_orchestrator.models import Message, Role, ToolCall, ToolCallStatus


def _transcript() -> list[Message]:
    call = ToolCall(id="c1", name="STAR_REPO", arguments={"repo": "X"}, status=ToolCallStatus.COMPLETED, output=True)
    return [
        Message(role=Role.USER, content="star X"),
        Message(role=Role.ASSISTANT, tool_calls=[call]),
        Message(role=Role.TOOL, content="true", tool_call_id="c1", name="STAR_REPO"),
        Message(role=Role.ASSISTANT, content="Done."),
    ]


class TestConversationStore(unittest.TestCase):
    def test_save_and_load(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            store = ConversationStore(tmp)
            store.save("conv1", _transcript(), {"github": ["Org is acme"]}, {"user_id": "u1"})
            messages, memory = store.load("conv1")
            self.assertEqual([m.role for m in messages], [Role.USER, Role.ASSISTANT, Role.TOOL, Role.ASSISTANT])
            self.assertEqual(messages[1].tool_calls[0].arguments, {"repo": "X"})
            self.assertEqual(messages[1].tool_calls[0].status, ToolCallStatus.COMPLETED)
            self.assertEqual(memory, {"github": ["Org is acme"]})
            raw = json.loads((Path(tmp) / "conv1.json").read_text())
            self.assertEqual(raw["metadata"]["message_count"], 4)
            self.assertEqual(raw["metadata"]["user_id"], "u1")

    def test_missing_and_corrupt_files_load_empty(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            store = ConversationStore(tmp)
            self.assertEqual(store.load("nope"), ([], {}))
            (Path(tmp) / "bad.json").write_text("{oops")
            self.assertEqual(store.load("bad"), ([], {}))

    def test_delete(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            store = ConversationStore(tmp)
            store.save("conv1", _transcript())
            self.assertTrue(store.delete("conv1"))
            self.assertFalse(store.delete("conv1"))


class TestBackgroundSave(unittest.IsolatedAsyncioTestCase):
    async def test_save_in_background(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            store = ConversationStore(tmp)
            store.save_in_background("conv1", _transcript(), {})
            await store.flush()
            messages, _ = store.load("conv1")
            self.assertEqual(len(messages), 4)

    async def test_background_failure_is_logged_not_raised(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            blocker = Path(tmp) / "file"
            blocker.write_text("x")
            store = ConversationStore(blocker / "sub")
            with self.assertLogs("src.tool_orchestrator.conversation_store", level="ERROR"):
                store.save_in_background("conv1", _transcript())
                await store.flush()


if __name__ == "__main__":
    unittest.main()
