"""Orchestration driver: intent -> plan -> implement -> critique -> record."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Optional
import logging

from kannan.agents.adapters import AgentExecutor
from kannan.agents.registry import AgentRegistry
from kannan.config import Config
from kannan.consensus import ConsensusLoop, ConsensusResult
from kannan.memory import ProjectMemory
from kannan.roles import Role, RoleAssigner, infer_role, role_prompt
from kannan.store import StateStore

logger = logging.getLogger(__name__)


class TaskAborted(Exception):
    """The current task cannot continue; the process can."""


@dataclass
class RunResult:
    ok: bool
    intent: str
    plan: str = ""
    output: str = ""
    consensus: Optional[ConsensusResult] = None
    roles: Dict[str, str] = field(default_factory=dict)
    tokens: int = 0
    token_usage: Dict[str, Dict[str, int]] = field(default_factory=dict)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "intent": self.intent,
            "plan": self.plan,
            "output": self.output,
            "consensus": self.consensus.to_dict() if self.consensus else None,
            "roles": self.roles,
            "tokens": self.tokens,
            "token_usage": self.token_usage,
            "error": self.error,
        }


class Runtime:
    def __init__(
        self,
        project_dir: Path | str,
        config: Config,
        registry: AgentRegistry,
        executor: Any = None,
    ) -> None:
        self.project_dir = Path(project_dir).resolve()
        self.config = config
        self.registry = registry
        self.executor = executor or AgentExecutor.from_config(registry, config, cwd=str(self.project_dir))
        self.state = StateStore(self.project_dir)
        self.memory = ProjectMemory(self.project_dir, config.global_dir, max_sessions=config.max_sessions)
        self.assigner = RoleAssigner.from_config(registry, config)

    def _agent_for(self, role: Role) -> Optional[str]:
        agent = self.assigner.assign(role)
        return agent.value if agent else None

    def build_prompt(self, task: str) -> str:
        sections = [f"## Project Context\nProject directory: {self.project_dir}"]
        try:
            memory_context = self.memory.load_context()
        except OSError:
            logger.warning("Could not load project memory", exc_info=True)
            memory_context = ""
        if memory_context:
            sections.append(f"## Memory (past sessions)\n{memory_context}")
        sections.append(f"## Task\n{task}")
        return "\n\n".join(sections)

    def decompose(self, intent: str) -> str:
        planner = self._agent_for(Role.PLANNER)
        fallback = f"1. {intent}"
        if planner is None:
            return fallback
        logger.info("%s is planning", planner)
        plan = self.executor.execute(planner, role_prompt(Role.PLANNER), self.build_prompt(intent))
        if not plan or not plan.strip():
            logger.warning("Planner returned empty response - treating as single task")
            return fallback
        return plan

    def execute_task(self, task: str, context: str = "") -> str:
        role = infer_role(task)
        agent = self._agent_for(role)
        if agent is None:
            raise TaskAborted(f"No agent available for role: {role.value}")
        logger.info("%s working as %s", agent, role.value)
        full_task = f"{task}\n\n{context}" if context else task
        output = self.executor.execute(agent, role_prompt(role), self.build_prompt(full_task))
        if not output or not output.strip():
            raise TaskAborted(f"{agent} returned an empty response")
        return output

    def run_once(
        self,
        intent: str,
        confirm: Optional[Callable[[str], bool]] = None,
        keep_rejected: Optional[Callable[[ConsensusResult], bool]] = None,
    ) -> RunResult:
        """Run one intent end to end.

        `confirm(plan)` may veto before implementing. When the critic rejects,
        `keep_rejected(consensus)` decides whether the result is kept; a
        discarded result is not recorded in project memory.
        """
        self.assigner.reset()
        tokens = getattr(self.executor, "tokens", None)
        if tokens is not None:
            tokens.reset()
        try:
            self.state.init()
            self.memory.init()
        except OSError:
            logger.warning("Could not create state directories under %s", self.project_dir, exc_info=True)

        result = RunResult(ok=False, intent=intent)
        try:
            result.plan = self.decompose(intent)
            if confirm is not None and not confirm(result.plan):
                result.error = "skipped"
                return result
            implementation = self.execute_task(intent, f"Plan:\n{result.plan}")
            consensus = ConsensusLoop(
                self.assigner,
                self.executor,
                state=self.state,
                memory=self.memory,
                max_iterations=self.config.max_iterations,
            ).run(implementation, intent)
        except TaskAborted as exc:
            logger.error("Task aborted: %s", exc)
            result.error = str(exc)
            self._collect_tokens(result)
            return result

        result.consensus = consensus
        result.output = consensus.output
        result.ok = consensus.ok
        if not consensus.ok:
            result.error = "rejected by critic"
            if keep_rejected is not None and not keep_rejected(consensus):
                result.error = "discarded"
                self._collect_tokens(result)
                return result
        self._collect_tokens(result)
        self._record(result)
        return result

    def _collect_tokens(self, result: RunResult) -> None:
        tokens = getattr(self.executor, "tokens", None)
        if tokens is not None:
            result.tokens = tokens.total()
            result.token_usage = tokens.snapshot()

    def _record(self, result: RunResult) -> None:
        consensus = result.consensus
        planner = self._agent_for(Role.PLANNER)
        implementer = (consensus.implementer_agent if consensus else None) or self._agent_for(Role.IMPLEMENTER)
        critic = consensus.critic_agent if consensus else None
        result.roles = {
            k: v for k, v in {"planner": planner, "implementer": implementer, "critic": critic}.items() if v
        }
        verdict = consensus.verdict.value if consensus else "accept"
        try:
            self.memory.record_session(
                result.intent,
                roles=result.roles,
                verdict=verdict,
                iterations=consensus.iterations if consensus else 1,
                issues=consensus.issues if consensus else [],
                tokens=result.tokens,
                token_usage=result.token_usage,
            )
            if implementer:
                self.memory.update_stats(implementer, Role.IMPLEMENTER.value, verdict)
            if planner:
                self.memory.update_stats(planner, Role.PLANNER.value, verdict)
        except OSError:
            logger.warning("Failed to record session memory", exc_info=True)
