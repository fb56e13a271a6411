import io
import json
import os
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from unittest.mock import patch

from kannan import cli
from kannan.agents.registry import AgentRegistry
from kannan.config import get_config
from kannan.memory import ProjectMemory
from kannan.roles import CRITIC_PROMPT
from kannan.runtime import Runtime


class CliTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        root = Path(self._tmp.name)
        self.project = root / "project"
        self.project.mkdir()
        self.global_dir = root / "global"
        env_patch = patch.dict(os.environ, {"KANNAN_GLOBAL_DIR": str(self.global_dir)})
        env_patch.start()
        self.addCleanup(env_patch.stop)

    def tearDown(self):
        self._tmp.cleanup()

    def _main(self, *argv, agents=()):
        out = io.StringIO()
        with patch.object(cli.AgentRegistry, "discover", return_value=AgentRegistry.from_names(list(agents))):
            with redirect_stdout(out):
                cli.main(["--project", str(self.project), *argv])
        return json.loads(out.getvalue()) if out.getvalue().strip() else None

    def test_parser(self):
        args = cli.build_parser().parse_args(["run", "-p", "add a flag", "--yes"])
        self.assertEqual(args.command, "run")
        self.assertEqual(args.intent, "add a flag")
        self.assertTrue(args.yes)
        with self.assertRaises(SystemExit):
            with redirect_stdout(io.StringIO()), patch("sys.stderr", io.StringIO()):
                cli.build_parser().parse_args(["run"])

    def test_version(self):
        self.assertEqual(self._main("version"), {"kannan": cli.__version__})

    def test_agents(self):
        payload = self._main("agents", agents=["codex"])
        self.assertEqual(payload["available"], 1)
        self.assertEqual(len(payload["agents"]), 4)

    def test_roles(self):
        payload = self._main("roles", agents=["codex", "ollama"])
        self.assertEqual(payload["strategy"], "split")
        self.assertEqual(payload["roles"]["implementer"], "codex")
        self.assertEqual(payload["roles"]["critic"], "ollama")

    def test_run_without_agents_exits_nonzero(self):
        with self.assertRaises(SystemExit) as ctx:
            self._main("run", "-p", "add a flag", "--yes")
        self.assertEqual(ctx.exception.code, 1)

    def test_config_init_twice(self):
        payload = self._main("config", "init", agents=["claude"])
        self.assertTrue(Path(payload["created"]).exists())
        self.assertEqual(payload["available"], ["claude"])
        with self.assertRaises(SystemExit):
            self._main("config", "init")

    def test_memory_show_and_clear(self):
        memory = ProjectMemory(self.project.resolve(), self.global_dir)
        memory.record_session("add a flag", verdict="accept", token_usage={"claude": {"in": 4, "out": 2, "calls": 1}})
        self.assertEqual(self._main("memory", "show")["sessions"], 1)
        self.assertEqual(self._main("usage")["total"]["tokens"], 6)
        self.assertEqual(self._main("usage", "--global")["sessions"], 1)
        self.assertEqual(self._main("memory", "clear", "--yes"), {"ok": True})
        self.assertEqual(memory.sessions(), [])

    def test_shell_discard_skips_memory(self):
        class RejectingExecutor:
            tokens = None

            def execute(self, agent, system_prompt, user_prompt):
                if system_prompt == CRITIC_PROMPT:
                    return '```json\n{"verdict": "reject", "issues": []}\n```'
                return "IMPL"

        runtime = Runtime(
            self.project.resolve(),
            get_config(self.project),
            AgentRegistry.from_names(["claude", "ollama"]),
            executor=RejectingExecutor(),
        )
        answers = ["add a flag", "y", "n", "quit"]
        with patch.object(cli, "_runtime", return_value=runtime), \
                patch("builtins.input", side_effect=answers), \
                patch("sys.stderr", io.StringIO()) as err:
            self._main("shell")
        self.assertIn("Discarded", err.getvalue())
        self.assertEqual(runtime.memory.sessions(), [])

    def test_shell_exits_on_quit(self):
        with patch("builtins.input", side_effect=["quit"]), patch("sys.stderr", io.StringIO()) as err:
            self._main("shell", agents=["claude"])
        self.assertIn("Goodbye!", err.getvalue())


if __name__ == "__main__":
    unittest.main()
