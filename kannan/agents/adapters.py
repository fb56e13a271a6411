"""Agent adapters: one blocking `execute(agent, system, user) -> text` contract.

Each known agent gets an adapter that turns a system prompt and a user prompt
into a single call of its CLI (or, for Ollama, its local HTTP API). Failures
are never raised to the caller: an empty string is the only failure signal.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple
import json
import logging

from kannan.agents.cli import CliClient
from kannan.agents.ollama import OllamaClient
from kannan.agents.registry import AgentInfo, AgentName, AgentRegistry
from kannan.tokens import TokenLedger, estimate_tokens

logger = logging.getLogger(__name__)

# (text, input_tokens, output_tokens); token counts are None when unknown.
AdapterOutput = Tuple[str, Optional[int], Optional[int]]


def inline_system(system_prompt: str, user_prompt: str) -> str:
    """For CLIs without a system-prompt flag."""
    if not system_prompt:
        return user_prompt
    return f"[System: {system_prompt}]\n\n{user_prompt}"


def parse_claude_stream(raw: str) -> AdapterOutput:
    """Extract text and usage from `claude --output-format stream-json` output."""
    parts: List[str] = []
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    for line in raw.splitlines():
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            event = json.loads(line)
        except ValueError:
            continue
        kind = event.get("type")
        if kind == "assistant":
            for block in (event.get("message") or {}).get("content") or []:
                if block.get("type") == "text" and block.get("text"):
                    parts.append(block["text"])
        elif kind == "content_block_delta":
            text = (event.get("delta") or {}).get("text")
            if text:
                parts.append(text)
        elif kind == "result":
            usage = event.get("usage") or {}
            input_tokens = int(usage.get("input_tokens") or 0)
            output_tokens = int(usage.get("output_tokens") or 0)
    return "\n".join(parts).strip(), input_tokens, output_tokens


@dataclass
class AgentExecutor:
    registry: AgentRegistry
    cli: CliClient = field(default_factory=CliClient)
    ollama: OllamaClient = field(default_factory=OllamaClient)
    tokens: TokenLedger = field(default_factory=TokenLedger)
    cwd: Optional[str] = None

    def __post_init__(self) -> None:
        self._adapters: Dict[AgentName, Callable[[AgentInfo, str, str], AdapterOutput]] = {
            AgentName.CLAUDE: self._claude,
            AgentName.CODEX: self._codex,
            AgentName.GEMINI: self._gemini,
            AgentName.OLLAMA: self._ollama,
        }

    @classmethod
    def from_config(cls, registry: AgentRegistry, config, cwd: Optional[str] = None) -> "AgentExecutor":
        return cls(
            registry=registry,
            cli=CliClient(timeout_seconds=config.agent_timeout_seconds, retries=config.agent_retries),
            ollama=OllamaClient(config.ollama_base_url, timeout_seconds=config.agent_timeout_seconds),
            cwd=cwd,
        )

    def execute(self, agent: str | AgentName, system_prompt: str, user_prompt: str) -> str:
        info = self.registry.get(agent)
        if info is None or not info.available:
            logger.error("No adapter for agent: %s", agent)
            return ""
        if info.prompt_prefix:
            system_prompt = f"{info.prompt_prefix}\n\n{system_prompt}" if system_prompt else info.prompt_prefix
        text, input_tokens, output_tokens = self._adapters[info.name](info, system_prompt, user_prompt)
        if input_tokens is None:
            input_tokens = estimate_tokens(system_prompt) + estimate_tokens(user_prompt)
        if output_tokens is None:
            output_tokens = estimate_tokens(text)
        self.tokens.record(info.name.value, input_tokens, output_tokens)
        return text

    def _claude(self, info: AgentInfo, system_prompt: str, user_prompt: str) -> AdapterOutput:
        command = ["claude", "-p", "--output-format", "stream-json"]
        if info.model:
            command += ["--model", info.model]
        if system_prompt:
            command += ["--system-prompt", system_prompt]
        command.append(user_prompt)
        result = self.cli.run(command, cwd=self.cwd)
        if not result.ok and not result.text:
            return "", None, None
        return parse_claude_stream(result.text)

    def _codex(self, info: AgentInfo, system_prompt: str, user_prompt: str) -> AdapterOutput:
        command = ["codex", "-q"]
        if info.model:
            command += ["--model", info.model]
        command.append(inline_system(system_prompt, user_prompt))
        result = self.cli.run(command, cwd=self.cwd)
        return (result.text if result.ok else ""), None, None

    def _gemini(self, info: AgentInfo, system_prompt: str, user_prompt: str) -> AdapterOutput:
        command = ["gemini"]
        if info.model:
            command += ["--model", info.model]
        result = self.cli.run(command, stdin=inline_system(system_prompt, user_prompt), cwd=self.cwd)
        return (result.text if result.ok else ""), None, None

    def _ollama(self, info: AgentInfo, system_prompt: str, user_prompt: str) -> AdapterOutput:
        result = self.ollama.generate(info.model or "llama3.2", user_prompt, system=system_prompt or None)
        if not result.ok:
            logger.warning("ollama call failed: %s", result.error)
            return "", None, None
        return result.text, result.prompt_tokens or None, result.completion_tokens or None
