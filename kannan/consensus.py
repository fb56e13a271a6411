"""Consensus loop: bounded critique and revision between critic and implementer."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol
import json
import logging
import re

from kannan.roles import Role, RoleAssigner, role_prompt

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 3

_FENCED_JSON = re.compile(r"```json[ \t]*\r?\n(.*?)```", re.DOTALL | re.IGNORECASE)
_DECODER = json.JSONDecoder()


class Verdict(str, Enum):
    ACCEPT = "accept"
    REVISE = "revise"
    REJECT = "reject"


class Executor(Protocol):
    def execute(self, agent: str, system_prompt: str, user_prompt: str) -> str: ...


@dataclass
class Critique:
    verdict: Verdict
    issues: List[Dict[str, str]] = field(default_factory=list)
    summary: str = ""
    structured: bool = False

    def minor_issues(self) -> List[str]:
        return [issue["description"] for issue in self.issues if issue.get("severity") == "minor" and issue.get("description")]


@dataclass
class ConsensusResult:
    ok: bool
    verdict: Verdict
    iterations: int
    output: str
    issues: List[Dict[str, str]] = field(default_factory=list)
    critic_agent: Optional[str] = None
    implementer_agent: Optional[str] = None
    forced: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "verdict": self.verdict.value,
            "iterations": self.iterations,
            "issues": self.issues,
            "critic_agent": self.critic_agent,
            "implementer_agent": self.implementer_agent,
            "forced": self.forced,
        }


def extract_payload(text: str) -> Optional[str]:
    """The critique's structured block.

    The last ```json fence wins. Without one, every ``{`` is tried as the
    start of a JSON object and the last object carrying a ``verdict`` key is
    used, so braces in quoted code ahead of the verdict are skipped.
    """
    if not text:
        return None
    fenced = _FENCED_JSON.findall(text)
    if fenced:
        return fenced[-1].strip()
    payload = None
    start = text.find("{")
    while start != -1:
        try:
            obj, end = _DECODER.raw_decode(text, start)
        except ValueError:
            obj = None
        if isinstance(obj, dict) and "verdict" in obj:
            payload = text[start:end]
        start = text.find("{", start + 1)
    return payload


def _normalize_issues(raw: Any) -> List[Dict[str, str]]:
    if not isinstance(raw, list):
        return []
    issues = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        description = str(item.get("description") or "").strip()
        if not description:
            continue
        issues.append({
            "severity": str(item.get("severity") or "").strip().lower(),
            "description": description,
        })
    return issues


def parse_critique(text: str) -> Critique:
    """Decode the critic's verdict block; anything unusable means accept."""
    payload = extract_payload(text)
    if payload is None:
        return Critique(verdict=Verdict.ACCEPT)
    try:
        data = json.loads(payload)
    except ValueError:
        return Critique(verdict=Verdict.ACCEPT)
    if not isinstance(data, dict):
        return Critique(verdict=Verdict.ACCEPT)
    try:
        verdict = Verdict(str(data.get("verdict", "")).strip().lower())
    except ValueError:
        verdict = Verdict.ACCEPT
    return Critique(
        verdict=verdict,
        issues=_normalize_issues(data.get("issues")),
        summary=str(data.get("summary") or ""),
        structured=True,
    )


def critique_request(original_task: str, candidate: str) -> str:
    return (
        f"## Original Task\n{original_task}\n\n"
        f"## Implementation to Review\n{candidate}\n\n"
        "Review this implementation. At the end, output a JSON verdict block."
    )


def revision_request(original_task: str, candidate: str, critique: str) -> str:
    return (
        f"## Original Task\n{original_task}\n\n"
        f"## Your Previous Implementation\n{candidate}\n\n"
        f"## Critique Feedback\n{critique}\n\n"
        "Revise your implementation based on the feedback. Output only the revised implementation."
    )


class ConsensusLoop:
    """Critic reviews, implementer revises, until accept, reject or the cap.

    At most ``max_iterations`` critic calls and ``max_iterations - 1``
    implementer calls are made per run. The consensus state (verdict,
    iterations, issues and agents) is mirrored into ``state`` under
    ``consensus_*`` keys, and critic/implementer outcomes are fed to
    ``memory``. Both collaborators are optional and best-effort.
    """

    def __init__(
        self,
        assigner: RoleAssigner,
        executor: Executor,
        state: Any = None,
        memory: Any = None,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
    ) -> None:
        self.assigner = assigner
        self.executor = executor
        self.state = state
        self.memory = memory
        self.max_iterations = max(1, int(max_iterations))

    def run(self, current_output: str, original_task: str) -> ConsensusResult:
        self._reset_state()

        critic = self.assigner.assign(Role.CRITIC)
        critic_name = critic.value if critic else None
        self._set("critic_agent", critic_name or "")
        if critic is None:
            logger.warning("No agent available for critic role - skipping review")
            self._set("verdict", Verdict.ACCEPT.value)
            return ConsensusResult(ok=True, verdict=Verdict.ACCEPT, iterations=0, output=current_output)

        implementer_name: Optional[str] = None
        iteration = 0
        while iteration < self.max_iterations:
            iteration += 1
            logger.info("Critique iteration %d/%d (%s)", iteration, self.max_iterations, critic_name)

            response = self.executor.execute(
                critic_name,
                role_prompt(Role.CRITIC),
                critique_request(original_task, current_output),
            )
            if not response or not response.strip():
                logger.warning("Critic returned empty response - accepting implementation")
                return self._finish(True, Verdict.ACCEPT, iteration, current_output, [], critic_name, implementer_name)

            critique = parse_critique(response)
            logger.info("Verdict: %s", critique.verdict.value)
            self._update_stats(critic_name, Role.CRITIC, critique.verdict)

            if critique.verdict == Verdict.ACCEPT:
                for pattern in critique.minor_issues():
                    self._record_pattern(pattern)
                return self._finish(True, Verdict.ACCEPT, iteration, current_output, critique.issues, critic_name, implementer_name)

            if critique.verdict == Verdict.REJECT:
                logger.warning("Implementation rejected by critic")
                for issue in critique.issues:
                    logger.warning("  [%s] %s", issue["severity"], issue["description"])
                return self._finish(False, Verdict.REJECT, iteration, current_output, critique.issues, critic_name, implementer_name)

            if iteration >= self.max_iterations:
                logger.warning("Max iterations reached - accepting current implementation")
                result = self._finish(True, Verdict.ACCEPT, iteration, current_output, critique.issues, critic_name, implementer_name)
                result.forced = True
                return result

            implementer = self.assigner.assign(Role.IMPLEMENTER)
            if implementer is None:
                logger.warning("No agent available to revise - keeping current implementation")
                continue
            implementer_name = implementer.value
            self._set("impl_agent", implementer_name)
            self._update_stats(implementer_name, Role.IMPLEMENTER, Verdict.REVISE)

            revised = self.executor.execute(
                implementer_name,
                role_prompt(Role.IMPLEMENTER),
                revision_request(original_task, current_output, response),
            )
            if revised and revised.strip():
                current_output = revised
            else:
                logger.warning("Implementer returned empty revision - keeping previous version")

        return self._finish(True, Verdict.ACCEPT, iteration, current_output, [], critic_name, implementer_name)

    def _finish(
        self,
        ok: bool,
        verdict: Verdict,
        iteration: int,
        output: str,
        issues: List[Dict[str, str]],
        critic_name: Optional[str],
        implementer_name: Optional[str],
    ) -> ConsensusResult:
        self._set("verdict", verdict.value)
        self._set("iterations", str(iteration))
        self._set("issues", json.dumps(issues))
        return ConsensusResult(
            ok=ok,
            verdict=verdict,
            iterations=iteration,
            output=output,
            issues=issues,
            critic_agent=critic_name,
            implementer_agent=implementer_name,
        )

    # --- Best-effort persistence ---

    def _reset_state(self) -> None:
        self._set("verdict", "")
        self._set("iterations", "0")
        self._set("issues", "[]")
        self._set("critic_agent", "")
        self._set("impl_agent", "")

    def _set(self, key: str, value: str) -> None:
        if self.state is None:
            return
        try:
            self.state.set(f"consensus_{key}", value)
        except Exception:
            logger.warning("Failed to persist consensus_%s", key, exc_info=True)

    def _update_stats(self, agent: str, role: Role, verdict: Verdict) -> None:
        if self.memory is None:
            return
        try:
            self.memory.update_stats(agent, role.value, verdict.value)
        except Exception:
            logger.warning("Failed to update stats for %s", agent, exc_info=True)

    def _record_pattern(self, pattern: str) -> None:
        if self.memory is None:
            return
        try:
            self.memory.record_pattern(pattern)
        except Exception:
            logger.warning("Failed to record pattern", exc_info=True)
