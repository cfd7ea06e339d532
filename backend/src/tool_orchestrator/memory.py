"""Per-conversation memory: short facts grouped by app name."""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable, Mapping

logger = logging.getLogger(__name__)

# Reserved argument key used when handing memory to a batched tool call.
MEMORY_ARGUMENT_KEY = "memory"


class MemoryAccumulator:
    """Append-only map of app name to a deduplicated set of facts.

    Insertion order is kept so serialized snapshots are stable. Owned by a single
    conversation; not safe to share across concurrent turns.
    """

    def __init__(self, initial: Mapping[str, Iterable[str]] | None = None) -> None:
        self._facts: dict[str, dict[str, None]] = {}
        if initial:
            self.merge(initial)

    def __len__(self) -> int:
        return sum(len(v) for v in self._facts.values())

    def __bool__(self) -> bool:
        return bool(self._facts)

    def merge(self, update: Mapping[str, Iterable[str]] | None) -> int:
        """Merge new facts; returns how many were actually new."""
        if not update:
            return 0
        added = 0
        for key, facts in update.items():
            domain = str(key).strip().lower()
            if not domain or isinstance(facts, (str, bytes)):
                continue
            bucket = self._facts.setdefault(domain, {})
            for fact in facts:
                if not isinstance(fact, str):
                    continue
                text = fact.strip()
                if text and text not in bucket:
                    bucket[text] = None
                    added += 1
            if not bucket:
                del self._facts[domain]
        if added:
            logger.debug("Memory gained %d fact(s)", added)
        return added

    def snapshot(self) -> dict[str, list[str]]:
        return {k: list(v) for k, v in self._facts.items()}

    def get(self, domain: str) -> list[str]:
        return list(self._facts.get(domain.strip().lower(), {}))

    def clear(self) -> None:
        self._facts.clear()

    def inject(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Return a copy of `arguments` whose memory key also holds the accumulated facts."""
        combined = MemoryAccumulator(self.snapshot())
        supplied = arguments.get(MEMORY_ARGUMENT_KEY)
        if isinstance(supplied, dict):
            combined.merge(supplied)
        out = dict(arguments)
        out[MEMORY_ARGUMENT_KEY] = combined.snapshot()
        return out

    def to_json(self) -> str:
        return json.dumps(self.snapshot(), ensure_ascii=False)

    @classmethod
    def from_json(cls, raw: str | None) -> MemoryAccumulator:
        """Load a serialized snapshot; malformed data yields an empty accumulator."""
        if not raw:
            return cls()
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("Discarding malformed memory snapshot")
            return cls()
        return cls(data if isinstance(data, dict) else None)
