"""Unit tests for the per-conversation memory accumulator."""
from __future__ import annotations

import unittest

from src.tool_orchestrator.memory import MEMORY_ARGUMENT_KEY, MemoryAccumulator


class TestMemoryAccumulator(unittest.TestCase):
    def test_merge_deduplicates_per_domain(self) -> None:
        memory = MemoryAccumulator()
        added = memory.merge({"slack": ["Channel general is C123", "Channel general is C123"]})
        self.assertEqual(added, 1)
        added = memory.merge({"Slack": ["Channel general is C123", "User prefers threads"]})
        self.assertEqual(added, 1)
        self.assertEqual(memory.get("slack"), ["Channel general is C123", "User prefers threads"])
        self.assertEqual(len(memory), 2)

    def test_merge_ignores_malformed_entries(self) -> None:
        memory = MemoryAccumulator()
        self.assertEqual(memory.merge({"gmail": "not a list", "": ["x"], "github": [1, "  ", "Repo is acme/app"]}), 1)
        self.assertEqual(memory.snapshot(), {"github": ["Repo is acme/app"]})
        self.assertEqual(memory.merge(None), 0)

    def test_clear(self) -> None:
        memory = MemoryAccumulator({"notion": ["Roadmap page id is p1"]})
        self.assertTrue(memory)
        memory.clear()
        self.assertFalse(memory)
        self.assertEqual(memory.snapshot(), {})

    def test_inject_merges_without_mutating(self) -> None:
        memory = MemoryAccumulator({"github": ["Default org is acme"]})
        arguments = {"tools": [], MEMORY_ARGUMENT_KEY: {"github": ["Repo is acme/app"], "slack": ["Team is T1"]}}
        injected = memory.inject(arguments)
        self.assertEqual(
            injected[MEMORY_ARGUMENT_KEY],
            {"github": ["Default org is acme", "Repo is acme/app"], "slack": ["Team is T1"]},
        )
        self.assertEqual(arguments[MEMORY_ARGUMENT_KEY]["github"], ["Repo is acme/app"])
        self.assertEqual(memory.snapshot(), {"github": ["Default org is acme"]})

    def test_inject_adds_memory_key_when_absent(self) -> None:
        memory = MemoryAccumulator({"gmail": ["Signature is Best, Sam"]})
        self.assertEqual(memory.inject({"tools": []})[MEMORY_ARGUMENT_KEY], {"gmail": ["Signature is Best, Sam"]})

    def test_json_snapshot(self) -> None:
        memory = MemoryAccumulator({"jira": ["Project key is OPS"]})
        restored = MemoryAccumulator.from_json(memory.to_json())
        self.assertEqual(restored.snapshot(), {"jira": ["Project key is OPS"]})
        self.assertEqual(MemoryAccumulator.from_json("{not json").snapshot(), {})
        self.assertEqual(MemoryAccumulator.from_json(None).snapshot(), {})


if __name__ == "__main__":
    unittest.main()
