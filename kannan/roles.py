"""Role table and role assigner: which agent plays which part in a run."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple
import logging
import re

from kannan.agents.registry import AgentName, AgentRegistry, Capability

logger = logging.getLogger(__name__)


class Role(str, Enum):
    PLANNER = "planner"
    ARCHITECT = "architect"
    IMPLEMENTER = "implementer"
    CRITIC = "critic"
    DEBUGGER = "debugger"
    TESTER = "tester"
    VERIFIER = "verifier"


class RoleClass(str, Enum):
    DOER = "doer"
    THINKER = "thinker"


@dataclass(frozen=True)
class RoleSpec:
    capability: Capability
    role_class: RoleClass
    prompt: str


PLANNER_PROMPT = """You are a senior software architect acting as a Planner. Break the user's intent into specific, actionable implementation tasks. For each task describe:
1. What needs to be done (files, functions or modules to change)
2. Why it needs to be done
3. Dependencies between tasks (what must happen first)

If the project is empty (greenfield), start with tasks that initialize the project: dependency manifest, directory layout, entry point, build and test tooling. Then plan the requested feature.

Output the plan as a numbered list. Use real file paths and function names from the project context. Keep tasks small and incremental."""

ARCHITECT_PROMPT = """You are a senior software architect acting as an Architect. Review the proposed changes and evaluate:
1. Does this fit the existing architecture?
2. Is there a better pattern to use?
3. What are the risks?
4. Which edge cases must be handled?

Be specific and reference the actual codebase structure."""

IMPLEMENTER_PROMPT = """You are a senior developer acting as an Implementer. Write the code changes needed. Rules:
1. Make minimal, focused changes
2. Follow the existing code conventions
3. Include only the changed files
4. Prefer unified diff output
5. Leave unrelated code alone
6. Add tests when the project has a test suite

For greenfield projects create complete, runnable files: dependency manifest, entry point and a README, following the idioms of the chosen language and framework."""

CRITIC_PROMPT = """You are a senior code reviewer acting as a Critic. Review the implementation for:
1. Correctness: does it do what was asked?
2. Safety: bugs, edge cases, security issues
3. Style: does it match the project's conventions?
4. Completeness: is anything missing?

End your review with a JSON block:
```json
{"verdict": "accept|revise|reject", "issues": [{"severity": "critical|major|minor", "description": "..."}], "summary": "..."}
```"""

DEBUGGER_PROMPT = """You are a senior developer acting as a Debugger. Analyze the error or unexpected behavior and identify:
1. The root cause
2. Why it happened
3. The fix
4. How to prevent it in the future"""

TESTER_PROMPT = """You are a QA engineer acting as a Tester. Based on the changes:
1. Identify what should be tested
2. Write test cases
3. Run the existing tests if possible
4. Report the results"""

VERIFIER_PROMPT = """You are a senior developer acting as a Verifier. Do a final check:
1. Are all changes consistent?
2. Do the changes compile or parse?
3. Do the tests pass?
4. Is anything missing from the implementation?"""

DEFAULT_PROMPT = "You are a helpful AI assistant."

ROLE_TABLE: Dict[Role, RoleSpec] = {
    Role.PLANNER: RoleSpec(Capability.PLAN, RoleClass.THINKER, PLANNER_PROMPT),
    Role.ARCHITECT: RoleSpec(Capability.PLAN, RoleClass.THINKER, ARCHITECT_PROMPT),
    Role.IMPLEMENTER: RoleSpec(Capability.CODE, RoleClass.DOER, IMPLEMENTER_PROMPT),
    Role.CRITIC: RoleSpec(Capability.REVIEW, RoleClass.THINKER, CRITIC_PROMPT),
    Role.DEBUGGER: RoleSpec(Capability.DEBUG, RoleClass.DOER, DEBUGGER_PROMPT),
    Role.TESTER: RoleSpec(Capability.TEST, RoleClass.DOER, TESTER_PROMPT),
    Role.VERIFIER: RoleSpec(Capability.CODE, RoleClass.THINKER, VERIFIER_PROMPT),
}

# Scan orders for the 3+ agent distribution. Critic runs in reverse priority so
# the strongest coders stay free for implementation.
IMPLEMENTER_ORDER = (AgentName.CLAUDE, AgentName.CODEX, AgentName.GEMINI, AgentName.OLLAMA)
CRITIC_ORDER = (AgentName.OLLAMA, AgentName.GEMINI, AgentName.CODEX, AgentName.CLAUDE)
PLANNER_ORDER = (AgentName.GEMINI, AgentName.OLLAMA, AgentName.CODEX, AgentName.CLAUDE)

DISTRIBUTION: Tuple[Tuple[Role, Tuple[AgentName, ...]], ...] = (
    (Role.IMPLEMENTER, IMPLEMENTER_ORDER),
    (Role.CRITIC, CRITIC_ORDER),
    (Role.PLANNER, PLANNER_ORDER),
)

# Regex patterns checked in order; first match wins.
INFER_KEYWORDS: Tuple[Tuple[Role, Tuple[str, ...]], ...] = (
    (Role.PLANNER, ("plan", r"break.*down", "decompose", r"analyze.*what")),
    (Role.ARCHITECT, ("architect", "design", "structure")),
    (Role.IMPLEMENTER, ("implement", "write", "create", "add", "modify", "change", "update", "remove", "delete")),
    (Role.CRITIC, ("review", "critique", "check", "evaluate")),
    (Role.DEBUGGER, ("debug", "fix", "error", "bug", "crash")),
    (Role.TESTER, ("test", "coverage", "spec")),
    (Role.VERIFIER, ("verify", "validate", "confirm")),
)


def role_spec(role: Role | str) -> Optional[RoleSpec]:
    try:
        return ROLE_TABLE[Role(role)]
    except ValueError:
        return None


def role_prompt(role: Role | str) -> str:
    spec = role_spec(role)
    return spec.prompt if spec else DEFAULT_PROMPT


def required_capability(role: Role | str) -> Capability:
    spec = role_spec(role)
    return spec.capability if spec else Capability.GENERAL


def role_class(role: Role | str) -> RoleClass:
    spec = role_spec(role)
    return spec.role_class if spec else RoleClass.DOER


def infer_role(task_description: str) -> Role:
    """Guess the role a task needs from its wording; defaults to implementer."""
    lowered = (task_description or "").lower()
    for role, patterns in INFER_KEYWORDS:
        if any(re.search(pattern, lowered) for pattern in patterns):
            return role
    return Role.IMPLEMENTER


@dataclass
class RoleAssigner:
    """Maps roles to available agents for one run.

    The two-agent split and the three-plus distribution are computed on first
    use and then reused so every lookup in the run sees the same layout.
    """

    registry: AgentRegistry
    pins: Mapping[str, str] = field(default_factory=dict)
    _split: Optional[Tuple[Optional[AgentName], Optional[AgentName]]] = field(default=None, repr=False)
    _distribution: Optional[Dict[Role, Optional[AgentName]]] = field(default=None, repr=False)

    @classmethod
    def from_config(cls, registry: AgentRegistry, config: Any) -> "RoleAssigner":
        pins = {role.value: config.pinned_agent_for_role(role.value) for role in Role}
        return cls(registry=registry, pins={role: agent for role, agent in pins.items() if agent})

    def reset(self) -> None:
        self._split = None
        self._distribution = None

    def assign(self, role: Role | str) -> Optional[AgentName]:
        role = Role(role)
        pinned = self._pinned(role)
        if pinned is not None:
            return pinned

        count = self.registry.available_count()
        if count == 0:
            return None
        if count == 1:
            return self.registry.best_for(Capability.GENERAL)
        if count == 2:
            doer, thinker = self._compute_split()
            return doer if role_class(role) == RoleClass.DOER else thinker

        distribution = self._compute_distribution()
        if distribution.get(role):
            return distribution[role]
        return self.registry.best_for(required_capability(role))

    def table(self) -> Dict[str, Optional[str]]:
        """Assignment for every role, as plain strings."""
        result: Dict[str, Optional[str]] = {}
        for role in Role:
            agent = self.assign(role)
            result[role.value] = agent.value if agent else None
        return result

    def strategy(self) -> str:
        count = self.registry.available_count()
        if count == 0:
            return "none"
        if count == 1:
            return "single"
        if count == 2:
            return "split"
        return "distributed"

    def _pinned(self, role: Role) -> Optional[AgentName]:
        name = (self.pins.get(role.value) or "").strip()
        if not name:
            return None
        agent = AgentName.parse(name)
        if agent is not None and self.registry.is_available(agent):
            return agent
        logger.warning("Config pins %s to '%s' but it's not available - falling back to dynamic", role.value, name)
        return None

    def _compute_split(self) -> Tuple[Optional[AgentName], Optional[AgentName]]:
        if self._split is not None:
            return self._split
        available = self.registry.available_names()
        doer = next((name for name in available if self.registry.has_capability(name, Capability.CODE)), None)
        if doer is None:
            doer = available[0] if available else None
        thinker = next((name for name in available if name != doer), None)
        self._split = (doer, thinker)
        logger.debug(
            "Agent split: doer=%s thinker=%s",
            doer.value if doer else None,
            thinker.value if thinker else None,
        )
        return self._split

    def _compute_distribution(self) -> Dict[Role, Optional[AgentName]]:
        if self._distribution is not None:
            return self._distribution
        used: List[AgentName] = []
        distribution: Dict[Role, Optional[AgentName]] = {}
        for role, order in DISTRIBUTION:
            capability = required_capability(role)
            pick = next(
                (
                    name for name in order
                    if name not in used
                    and self.registry.is_available(name)
                    and self.registry.has_capability(name, capability)
                ),
                None,
            )
            if pick is not None:
                used.append(pick)
            distribution[role] = pick
        for role, _order in DISTRIBUTION:
            if distribution[role] is None:
                distribution[role] = self.registry.best_for(required_capability(role))
        self._distribution = distribution
        logger.debug(
            "Multi-agent roles: %s",
            ", ".join(f"{role.value}={agent.value if agent else None}" for role, agent in distribution.items()),
        )
        return distribution
