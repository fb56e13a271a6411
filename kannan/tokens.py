"""Per-session token accounting."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict


def estimate_tokens(text: str) -> int:
    # ~4 chars per token
    return len(text or "") // 4


@dataclass
class TokenLedger:
    usage: Dict[str, Dict[str, int]] = field(default_factory=dict)

    def record(self, agent: str, input_tokens: int, output_tokens: int) -> None:
        entry = self.usage.setdefault(str(agent), {"in": 0, "out": 0, "calls": 0})
        entry["in"] += max(0, int(input_tokens or 0))
        entry["out"] += max(0, int(output_tokens or 0))
        entry["calls"] += 1

    def total(self) -> int:
        return sum(entry["in"] + entry["out"] for entry in self.usage.values())

    def snapshot(self) -> Dict[str, Dict[str, int]]:
        return {agent: dict(entry) for agent, entry in self.usage.items() if entry["calls"]}

    def reset(self) -> None:
        self.usage.clear()
