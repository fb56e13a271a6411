"""Agent registry: which agent CLIs are installed and what they can do."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
import logging
import shutil
import subprocess

logger = logging.getLogger(__name__)


class AgentName(str, Enum):
    CLAUDE = "claude"
    CODEX = "codex"
    GEMINI = "gemini"
    OLLAMA = "ollama"

    @classmethod
    def parse(cls, value: Any) -> Optional["AgentName"]:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


class Capability(str, Enum):
    CODE = "code"
    REVIEW = "review"
    PLAN = "plan"
    TEST = "test"
    DEBUG = "debug"
    GENERAL = "general"


# Fixed total order used for every "best agent" lookup.
PRIORITY: Tuple[AgentName, ...] = (
    AgentName.CLAUDE,
    AgentName.CODEX,
    AgentName.GEMINI,
    AgentName.OLLAMA,
)

CAPABILITIES: Dict[AgentName, Tuple[Capability, ...]] = {
    AgentName.CLAUDE: (
        Capability.CODE,
        Capability.REVIEW,
        Capability.PLAN,
        Capability.TEST,
        Capability.DEBUG,
        Capability.GENERAL,
    ),
    AgentName.CODEX: (Capability.CODE, Capability.TEST, Capability.DEBUG),
    AgentName.GEMINI: (Capability.CODE, Capability.REVIEW, Capability.PLAN, Capability.GENERAL),
    AgentName.OLLAMA: (Capability.REVIEW, Capability.PLAN, Capability.GENERAL),
}


@dataclass(frozen=True)
class AgentInfo:
    name: AgentName
    available: bool
    version: str = ""
    capabilities: Tuple[Capability, ...] = ()
    model: Optional[str] = None
    prompt_prefix: str = ""


def probe_version(executable: str, timeout_seconds: float = 10.0) -> str:
    """First line of `<agent> --version`, or "available" when it says nothing useful."""
    try:
        result = subprocess.run(
            [executable, "--version"],
            text=True,
            capture_output=True,
            timeout=timeout_seconds,
        )
    except (OSError, subprocess.SubprocessError):
        return "available"
    lines = (result.stdout or "").strip().splitlines()
    if result.returncode != 0 or not lines:
        return "available"
    return lines[0].strip() or "available"


@dataclass
class AgentRegistry:
    agents: Dict[AgentName, AgentInfo] = field(default_factory=dict)

    @classmethod
    def discover(
        cls,
        config: Any = None,
        which: Callable[[str], Optional[str]] = shutil.which,
        probe: Callable[[str], str] = probe_version,
    ) -> "AgentRegistry":
        models = dict(getattr(config, "agent_models", {}) or {})
        agents: Dict[AgentName, AgentInfo] = {}
        for name in PRIORITY:
            path = which(name.value)
            prefix = config.custom_prompt_for_agent(name.value) if config is not None else ""
            agents[name] = AgentInfo(
                name=name,
                available=bool(path),
                version=probe(path) if path else "",
                capabilities=CAPABILITIES[name],
                model=models.get(name.value) or None,
                prompt_prefix=prefix,
            )
        registry = cls(agents)
        logger.debug("Discovered agents: %s", ", ".join(a.value for a in registry.available_names()) or "none")
        return registry

    @classmethod
    def from_names(cls, names: Iterable[str | AgentName], config: Any = None) -> "AgentRegistry":
        """Registry with exactly the given agents marked available (no probing)."""
        wanted = {AgentName.parse(n) for n in names} - {None}
        return cls.discover(
            config=config,
            which=lambda exe: exe if AgentName.parse(exe) in wanted else None,
            probe=lambda _path: "available",
        )

    def get(self, name: str | AgentName) -> Optional[AgentInfo]:
        parsed = AgentName.parse(name)
        if parsed is None:
            return None
        return self.agents.get(parsed)

    def is_available(self, name: str | AgentName | None) -> bool:
        info = self.get(name) if name else None
        return bool(info and info.available)

    def available_names(self) -> List[AgentName]:
        return [name for name in PRIORITY if self.is_available(name)]

    def available_count(self) -> int:
        return len(self.available_names())

    def has_capability(self, name: str | AgentName, capability: str | Capability) -> bool:
        parsed = AgentName.parse(name)
        if parsed is None:
            return False
        try:
            cap = Capability(capability)
        except ValueError:
            return False
        return cap in CAPABILITIES.get(parsed, ())

    def best_for(self, capability: str | Capability) -> Optional[AgentName]:
        for name in PRIORITY:
            if self.is_available(name) and self.has_capability(name, capability):
                return name
        available = self.available_names()
        return available[0] if available else None

    def describe(self) -> List[Dict[str, Any]]:
        rows = []
        for name in PRIORITY:
            info = self.agents.get(name)
            if info is None:
                continue
            rows.append({
                "name": name.value,
                "available": info.available,
                "version": info.version or None,
                "capabilities": [cap.value for cap in info.capabilities],
                "model": info.model,
                "custom_prompt": bool(info.prompt_prefix),
            })
        return rows
