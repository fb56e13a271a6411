"""Configuration loader for Kannan."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict
import json
import logging
import os
import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config" / "default.yaml"
USER_CONFIG_PATH = Path.home() / ".config" / "kannan" / "config.yaml"
PROJECT_DIR_NAME = ".kannan"
DEFAULT_MAX_ITERATIONS = 3

STARTER_CONFIG = {
    "roles": {
        "planner": "",
        "architect": "",
        "implementer": "",
        "critic": "",
        "debugger": "",
        "tester": "",
        "verifier": "",
    },
    "agent_prompts": {
        "claude": "",
        "codex": "",
        "gemini": "",
        "ollama": "",
    },
    "ollama_model": "",
    "max_iterations": DEFAULT_MAX_ITERATIONS,
}


class ConfigError(Exception):
    """Raised when a config file cannot be created."""


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text()) or {}
    except (OSError, yaml.YAMLError):
        logger.warning("%s is not valid YAML - skipping", path)
        return {}
    if not isinstance(data, dict):
        logger.warning("%s does not contain a mapping - skipping", path)
        return {}
    return data


def _read_project_config(project_dir: Path) -> Dict[str, Any]:
    base = project_dir / PROJECT_DIR_NAME
    json_path = base / "config.json"
    if json_path.exists():
        try:
            data = json.loads(json_path.read_text())
        except (OSError, ValueError):
            logger.warning("config.json is invalid JSON - skipping config")
            return {}
        if not isinstance(data, dict):
            logger.warning("config.json is not an object - skipping config")
            return {}
        return data
    yaml_path = base / "config.yaml"
    if yaml_path.exists():
        return _read_yaml(yaml_path)
    return {}


def load_config(project_dir: Path | str | None = None) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    if DEFAULT_CONFIG_PATH.exists():
        data = _read_yaml(DEFAULT_CONFIG_PATH)
    if USER_CONFIG_PATH.exists():
        data = _deep_merge(data, _read_yaml(USER_CONFIG_PATH))
    if project_dir is not None:
        data = _deep_merge(data, _read_project_config(Path(project_dir)))

    # Environment overrides - consensus
    max_iterations = os.getenv("KANNAN_MAX_ITERATIONS")
    if max_iterations:
        try:
            data["max_iterations"] = int(max_iterations)
        except ValueError:
            logger.warning("Ignoring non-integer KANNAN_MAX_ITERATIONS=%r", max_iterations)

    # Environment overrides - agents
    ollama_model = os.getenv("KANNAN_OLLAMA_MODEL")
    if ollama_model and not data.get("ollama_model"):
        data["ollama_model"] = ollama_model

    agent_timeout = os.getenv("KANNAN_AGENT_TIMEOUT")
    if agent_timeout:
        try:
            data.setdefault("agents", {})["timeout_seconds"] = int(agent_timeout)
        except ValueError:
            logger.warning("Ignoring non-integer KANNAN_AGENT_TIMEOUT=%r", agent_timeout)

    ollama_host = os.getenv("OLLAMA_HOST")
    if ollama_host:
        if "://" not in ollama_host:
            ollama_host = f"http://{ollama_host}"
        data.setdefault("ollama", {})["base_url"] = ollama_host

    # Environment overrides - global data directory
    global_dir = os.getenv("KANNAN_GLOBAL_DIR")
    if global_dir:
        data["global_dir"] = global_dir

    return data


@dataclass
class Config:
    raw: Dict[str, Any]

    @property
    def roles(self) -> Dict[str, str]:
        pins = self.raw.get("roles") or {}
        return {str(role): str(agent) for role, agent in pins.items() if role and agent}

    @property
    def agent_prompts(self) -> Dict[str, str]:
        prompts = self.raw.get("agent_prompts") or {}
        return {str(agent): str(text) for agent, text in prompts.items() if agent and text}

    @property
    def agent_models(self) -> Dict[str, str]:
        models = {str(k): str(v) for k, v in (self.raw.get("agent_models") or {}).items() if k and v}
        # The flat ollama_model key predates agent_models and wins when set.
        if self.raw.get("ollama_model"):
            models["ollama"] = str(self.raw["ollama_model"])
        models.setdefault("ollama", "llama3.2")
        return models

    @property
    def max_iterations(self) -> int:
        value = self.raw.get("max_iterations")
        if value in (None, ""):
            return DEFAULT_MAX_ITERATIONS
        try:
            parsed = int(value)
        except (TypeError, ValueError):
            logger.warning("Invalid max_iterations %r, using %d", value, DEFAULT_MAX_ITERATIONS)
            return DEFAULT_MAX_ITERATIONS
        return max(1, parsed)

    @property
    def memory(self) -> Dict[str, Any]:
        return self.raw.get("memory", {})

    @property
    def max_sessions(self) -> int:
        """How many past sessions are injected into agent prompts."""
        return int(self.memory.get("max_sessions", 5))

    @property
    def agents(self) -> Dict[str, Any]:
        return self.raw.get("agents", {})

    @property
    def agent_timeout_seconds(self) -> int:
        """Timeout for a single agent call in seconds. Default 10 minutes."""
        return int(self.agents.get("timeout_seconds", 600))

    @property
    def agent_retries(self) -> int:
        return int(self.agents.get("retries", 0))

    @property
    def ollama_base_url(self) -> str:
        return str((self.raw.get("ollama") or {}).get("base_url", "http://localhost:11434"))

    @property
    def global_dir(self) -> Path:
        default = str(Path.home() / ".kannan")
        return Path(self.raw.get("global_dir", default)).expanduser()

    def pinned_agent_for_role(self, role: str) -> str:
        return self.roles.get(str(role), "")

    def custom_prompt_for_agent(self, agent: str) -> str:
        return self.agent_prompts.get(str(agent), "")


def get_config(project_dir: Path | str | None = None) -> Config:
    return Config(load_config(project_dir))


def init_project_config(project_dir: Path | str) -> Path:
    """Write a starter .kannan/config.json; refuses to overwrite."""
    path = Path(project_dir).resolve() / PROJECT_DIR_NAME / "config.json"
    if path.exists():
        raise ConfigError(f"Config already exists: {path}")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(STARTER_CONFIG, indent=2) + "\n")
    return path
