"""Command line interface for Kannan."""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from kannan.agents.registry import AgentRegistry
from kannan.config import ConfigError, get_config, init_project_config
from kannan.memory import ProjectMemory
from kannan.roles import RoleAssigner
from kannan.runtime import Runtime

__version__ = "0.4.0"

EXIT_WORDS = {"", "quit", "exit", "q"}


def _print(obj: Any) -> None:
    print(json.dumps(obj, indent=2))


def _project_dir(args: argparse.Namespace) -> Path:
    return Path(args.project or ".").resolve()


def _confirm(question: str) -> bool:
    try:
        answer = input(f"{question} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in {"y", "yes"}


def _memory(args: argparse.Namespace) -> ProjectMemory:
    config = get_config(_project_dir(args))
    return ProjectMemory(_project_dir(args), config.global_dir, max_sessions=config.max_sessions)


def cmd_agents(args: argparse.Namespace) -> None:
    config = get_config(_project_dir(args))
    registry = AgentRegistry.discover(config)
    _print({"agents": registry.describe(), "available": registry.available_count()})


def cmd_roles(args: argparse.Namespace) -> None:
    project_dir = _project_dir(args)
    config = get_config(project_dir)
    registry = AgentRegistry.discover(config)
    assigner = RoleAssigner.from_config(registry, config)
    memory = ProjectMemory(project_dir, config.global_dir)
    payload = {
        "strategy": assigner.strategy(),
        "pins": dict(config.roles),
        "roles": assigner.table(),
    }
    suggestions = {role: memory.suggest_agent(role) for role in payload["roles"]}
    payload["suggested"] = {role: agent for role, agent in suggestions.items() if agent}
    _print(payload)


def _runtime(args: argparse.Namespace) -> Runtime:
    project_dir = _project_dir(args)
    config = get_config(project_dir)
    registry = AgentRegistry.discover(config)
    if registry.available_count() == 0:
        logging.getLogger(__name__).warning("No agent CLIs found on PATH (claude, codex, gemini, ollama)")
    return Runtime(project_dir, config, registry)


def cmd_run(args: argparse.Namespace) -> None:
    runtime = _runtime(args)
    confirm = None if args.yes else (lambda plan: _confirm(f"{plan}\n\nProceed with this plan?"))
    result = runtime.run_once(args.intent, confirm=confirm)
    _print(result.to_dict())
    if not result.ok:
        raise SystemExit(1)


def cmd_shell(args: argparse.Namespace) -> None:
    runtime = _runtime(args)

    def _confirm_plan(plan: str) -> bool:
        return _confirm(f"{plan}\n\nProceed with this plan?")

    def _keep_rejected(consensus) -> bool:
        return _confirm("Implementation was rejected by critic. Keep it anyway?")

    while True:
        try:
            intent = input("What would you like to do? ").strip()
        except EOFError:
            intent = ""
        if intent.lower() in EXIT_WORDS:
            print("Goodbye!", file=sys.stderr)
            return
        result = runtime.run_once(intent, confirm=_confirm_plan, keep_rejected=_keep_rejected)
        if result.error == "skipped":
            print("Skipped", file=sys.stderr)
            continue
        if result.error == "discarded":
            print("Discarded", file=sys.stderr)
            continue
        _print({k: v for k, v in result.to_dict().items() if k != "plan"})


def cmd_memory(args: argparse.Namespace) -> None:
    memory = _memory(args)
    if args.memory_cmd == "clear":
        if not args.yes and not _confirm("Clear all project memory?"):
            return
        memory.clear()
        _print({"ok": True})
    else:
        _print(memory.summary())


def cmd_usage(args: argparse.Namespace) -> None:
    memory = _memory(args)
    _print(memory.global_usage() if args.global_usage else memory.usage())


def cmd_config(args: argparse.Namespace) -> None:
    try:
        path = init_project_config(_project_dir(args))
    except ConfigError as exc:
        raise SystemExit(str(exc))
    registry = AgentRegistry.discover()
    _print({"created": str(path), "available": [name.value for name in registry.available_names()]})


def cmd_version(args: argparse.Namespace) -> None:
    _print({"kannan": __version__})


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="kannan", description="Coordinate AI coding agents on a repository.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--project", default=".", help="Target project directory")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("agents", help="List discovered agents")
    sub.add_parser("roles", help="Show role assignments")

    run = sub.add_parser("run", help="Run one intent non-interactively")
    run.add_argument("--intent", "-p", required=True)
    run.add_argument("--yes", "-y", action="store_true", help="Skip plan confirmation")

    sub.add_parser("shell", help="Interactive intent loop")

    memory = sub.add_parser("memory", help="Project memory")
    memory_sub = memory.add_subparsers(dest="memory_cmd")
    memory_sub.add_parser("show")
    clear = memory_sub.add_parser("clear")
    clear.add_argument("--yes", "-y", action="store_true")

    usage = sub.add_parser("usage", help="Token usage")
    usage.add_argument("--global", dest="global_usage", action="store_true")

    config = sub.add_parser("config", help="Project configuration")
    config_sub = config.add_subparsers(dest="config_cmd")
    config_sub.add_parser("init")

    sub.add_parser("version")
    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[kannan] %(levelname)s %(message)s",
        stream=sys.stderr,
    )
    if args.command == "agents":
        cmd_agents(args)
    elif args.command == "roles":
        cmd_roles(args)
    elif args.command == "run":
        cmd_run(args)
    elif args.command == "shell":
        cmd_shell(args)
    elif args.command == "memory":
        cmd_memory(args)
    elif args.command == "usage":
        cmd_usage(args)
    elif args.command == "config" and args.config_cmd == "init":
        cmd_config(args)
    elif args.command == "version":
        cmd_version(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
