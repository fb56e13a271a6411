"""Project memory: session log, learned patterns and agent track record."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
import json
import logging

from kannan.config import PROJECT_DIR_NAME
from kannan.store import atomic_write_json

logger = logging.getLogger(__name__)

VERDICTS = ("accept", "revise", "reject")
SUGGEST_MIN_RUNS = 3


def now_ts() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _read_jsonl(path: Path) -> List[Dict[str, Any]]:
    if not path.exists():
        return []
    entries = []
    for line in path.read_text(encoding="utf-8").splitlines():
        if not line.strip():
            continue
        try:
            entry = json.loads(line)
        except ValueError:
            continue
        if isinstance(entry, dict):
            entries.append(entry)
    return entries


def _append_jsonl(path: Path, payload: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(payload) + "\n")


def aggregate_usage(sessions: List[Dict[str, Any]]) -> Dict[str, Dict[str, int]]:
    totals: Dict[str, Dict[str, int]] = {}
    for session in sessions:
        for agent, usage in (session.get("token_usage") or {}).items():
            if not isinstance(usage, dict):
                continue
            entry = totals.setdefault(agent, {"calls": 0, "in": 0, "out": 0})
            for key in ("calls", "in", "out"):
                entry[key] += int(usage.get(key) or 0)
    return totals


@dataclass
class ProjectMemory:
    project_dir: Path
    global_dir: Path
    max_sessions: int = 5

    @property
    def memory_dir(self) -> Path:
        return Path(self.project_dir) / PROJECT_DIR_NAME / "memory"

    @property
    def sessions_path(self) -> Path:
        return self.memory_dir / "sessions.jsonl"

    @property
    def patterns_path(self) -> Path:
        return self.memory_dir / "patterns.md"

    @property
    def stats_path(self) -> Path:
        return self.memory_dir / "agent_stats.json"

    @property
    def global_usage_path(self) -> Path:
        return Path(self.global_dir) / "usage.jsonl"

    def init(self) -> None:
        self.memory_dir.mkdir(parents=True, exist_ok=True)
        Path(self.global_dir).mkdir(parents=True, exist_ok=True)

    # --- Recording ---

    def record_session(
        self,
        intent: str,
        roles: Optional[Dict[str, str]] = None,
        verdict: str = "accept",
        iterations: int = 1,
        issues: Optional[List[Dict[str, Any]]] = None,
        tokens: int = 0,
        token_usage: Optional[Dict[str, Dict[str, int]]] = None,
    ) -> None:
        if not intent:
            return
        entry = {
            "ts": now_ts(),
            "intent": intent,
            "roles": {k: v for k, v in (roles or {}).items() if v},
            "verdict": verdict or "accept",
            "iterations": int(iterations or 1),
            "issues": list(issues or []),
            "tokens": int(tokens or 0),
            "token_usage": token_usage or {},
        }
        _append_jsonl(self.sessions_path, entry)
        try:
            _append_jsonl(self.global_usage_path, {**entry, "project": str(self.project_dir)})
        except OSError:
            logger.warning("Could not write global usage log %s", self.global_usage_path, exc_info=True)

    def record_pattern(self, pattern: str) -> None:
        pattern = (pattern or "").strip()
        if not pattern:
            return
        self.patterns_path.parent.mkdir(parents=True, exist_ok=True)
        with self.patterns_path.open("a", encoding="utf-8") as handle:
            handle.write(f"- {pattern}\n")

    def update_stats(self, agent: str, role: str, verdict: str) -> None:
        if not agent or not role or verdict not in VERDICTS:
            return
        stats = self.load_stats()
        entry = stats.setdefault(str(agent), {}).setdefault(
            str(role), {"runs": 0, "accept": 0, "revise": 0, "reject": 0}
        )
        entry["runs"] = int(entry.get("runs", 0)) + 1
        entry[verdict] = int(entry.get(verdict, 0)) + 1
        atomic_write_json(self.stats_path, stats)

    # --- Reading ---

    def sessions(self) -> List[Dict[str, Any]]:
        return _read_jsonl(self.sessions_path)

    def patterns(self) -> List[str]:
        if not self.patterns_path.exists():
            return []
        return [line for line in self.patterns_path.read_text(encoding="utf-8").splitlines() if line.strip()]

    def load_stats(self) -> Dict[str, Dict[str, Dict[str, int]]]:
        if not self.stats_path.exists():
            return {}
        try:
            data = json.loads(self.stats_path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("agent_stats.json is unreadable - starting fresh")
            return {}
        return data if isinstance(data, dict) else {}

    def suggest_agent(self, role: str) -> Optional[str]:
        """Agent with the best accept rate for `role` (advisory, needs 3+ runs)."""
        best: Optional[str] = None
        best_rate = -1.0
        for agent, roles in self.load_stats().items():
            entry = (roles or {}).get(role)
            if not entry or int(entry.get("runs", 0)) < SUGGEST_MIN_RUNS:
                continue
            rate = int(entry.get("accept", 0)) / int(entry["runs"])
            if rate > best_rate:
                best, best_rate = agent, rate
        return best

    def load_context(self) -> str:
        """Markdown block of past sessions, patterns and agent track record."""
        sections: List[str] = []

        recent = self.sessions()[-self.max_sessions:] if self.max_sessions > 0 else []
        if recent:
            lines = ["### Recent Sessions"]
            for session in recent:
                line = f"- **{session.get('intent', '')}** → {session.get('verdict', '')}"
                iterations = int(session.get("iterations") or 0)
                if iterations > 1:
                    line += f" ({iterations} iterations)"
                lines.append(line)
                for issue in session.get("issues") or []:
                    if isinstance(issue, dict):
                        lines.append(f"  - [{issue.get('severity', '')}] {issue.get('description', '')}")
            sections.append("\n".join(lines))

        patterns = self.patterns()
        if patterns:
            sections.append("### Learned Patterns\n" + "\n".join(patterns))

        stats = self.load_stats()
        if stats:
            lines = ["### Agent Track Record"]
            for agent, roles in stats.items():
                for role, entry in (roles or {}).items():
                    lines.append(
                        f"- {agent} as {role}: {entry.get('runs', 0)} runs, "
                        f"{entry.get('accept', 0)} accepted, {entry.get('revise', 0)} revised, "
                        f"{entry.get('reject', 0)} rejected"
                    )
            sections.append("\n".join(lines))

        return "\n\n".join(sections)

    def summary(self) -> Dict[str, Any]:
        sessions = self.sessions()
        counts = {verdict: 0 for verdict in VERDICTS}
        for session in sessions:
            if session.get("verdict") in counts:
                counts[session["verdict"]] += 1
        return {
            "sessions": len(sessions),
            "verdicts": counts,
            "recent": [
                {k: s.get(k) for k in ("ts", "intent", "verdict")} for s in sessions[-3:]
            ],
            "patterns": self.patterns(),
            "agent_stats": self.load_stats(),
        }

    def usage(self) -> Dict[str, Any]:
        sessions = self.sessions()
        agents = aggregate_usage(sessions)
        return {"sessions": len(sessions), "agents": agents, "total": _grand_total(agents)}

    def global_usage(self) -> Dict[str, Any]:
        sessions = _read_jsonl(self.global_usage_path)
        agents = aggregate_usage(sessions)
        projects: Dict[str, Dict[str, int]] = {}
        for session in sessions:
            entry = projects.setdefault(str(session.get("project") or "unknown"), {"sessions": 0, "tokens": 0})
            entry["sessions"] += 1
            entry["tokens"] += int(session.get("tokens") or 0)
        ranked = sorted(projects.items(), key=lambda item: -item[1]["tokens"])
        return {
            "sessions": len(sessions),
            "agents": agents,
            "total": _grand_total(agents),
            "projects": [{"project": name, **entry} for name, entry in ranked],
        }

    def clear(self) -> None:
        for path in (self.sessions_path, self.patterns_path, self.stats_path):
            if path.exists():
                path.unlink()


def _grand_total(agents: Dict[str, Dict[str, int]]) -> Dict[str, int]:
    total = {"calls": 0, "in": 0, "out": 0}
    for entry in agents.values():
        for key in total:
            total[key] += entry.get(key, 0)
    total["tokens"] = total["in"] + total["out"]
    return total
