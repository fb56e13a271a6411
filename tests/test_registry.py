import unittest
from unittest.mock import patch, MagicMock

from kannan.agents.registry import (
    AgentName,
    AgentRegistry,
    Capability,
    CAPABILITIES,
    PRIORITY,
    probe_version,
)
from kannan.config import Config


class RegistryTests(unittest.TestCase):
    def test_capability_table(self):
        self.assertEqual(PRIORITY, (AgentName.CLAUDE, AgentName.CODEX, AgentName.GEMINI, AgentName.OLLAMA))
        self.assertEqual(len(CAPABILITIES[AgentName.CLAUDE]), 6)
        self.assertNotIn(Capability.REVIEW, CAPABILITIES[AgentName.CODEX])
        self.assertNotIn(Capability.CODE, CAPABILITIES[AgentName.OLLAMA])
        self.assertIn(Capability.PLAN, CAPABILITIES[AgentName.GEMINI])

    def test_discover_uses_which_and_probe(self):
        seen = []

        def probe(path):
            seen.append(path)
            return "1.2.3"

        registry = AgentRegistry.discover(
            which=lambda exe: f"/usr/bin/{exe}" if exe in {"codex", "ollama"} else None,
            probe=probe,
        )
        self.assertEqual(registry.available_names(), [AgentName.CODEX, AgentName.OLLAMA])
        self.assertEqual(registry.get("codex").version, "1.2.3")
        self.assertEqual(registry.get("claude").version, "")
        self.assertEqual(seen, ["/usr/bin/codex", "/usr/bin/ollama"])

    def test_discover_applies_config(self):
        config = Config({"agent_prompts": {"gemini": "Be terse."}, "ollama_model": "qwen2.5-coder"})
        registry = AgentRegistry.from_names(["gemini", "ollama"], config=config)
        self.assertEqual(registry.get("gemini").prompt_prefix, "Be terse.")
        self.assertEqual(registry.get("ollama").model, "qwen2.5-coder")
        self.assertEqual(registry.get("claude").prompt_prefix, "")

    def test_has_capability(self):
        registry = AgentRegistry.from_names([])
        self.assertTrue(registry.has_capability("claude", "review"))
        self.assertFalse(registry.has_capability("codex", "review"))
        self.assertFalse(registry.has_capability("nobody", "code"))
        self.assertFalse(registry.has_capability("claude", "dance"))

    def test_best_for_priority(self):
        registry = AgentRegistry.from_names(["gemini", "codex", "ollama"])
        self.assertEqual(registry.best_for("code"), AgentName.CODEX)
        self.assertEqual(registry.best_for("review"), AgentName.GEMINI)
        self.assertEqual(registry.best_for("general"), AgentName.GEMINI)

    def test_best_for_falls_back_to_any_available(self):
        registry = AgentRegistry.from_names(["codex"])
        self.assertEqual(registry.best_for("review"), AgentName.CODEX)

    def test_best_for_none_available(self):
        registry = AgentRegistry.from_names([])
        self.assertIsNone(registry.best_for("code"))
        self.assertEqual(registry.available_count(), 0)

    def test_parse_agent_name(self):
        self.assertEqual(AgentName.parse(" Claude "), AgentName.CLAUDE)
        self.assertIsNone(AgentName.parse("copilot"))

    def test_describe_lists_every_agent(self):
        rows = AgentRegistry.from_names(["claude"]).describe()
        self.assertEqual([r["name"] for r in rows], ["claude", "codex", "gemini", "ollama"])
        self.assertTrue(rows[0]["available"])
        self.assertFalse(rows[1]["available"])

    @patch("kannan.agents.registry.subprocess.run")
    def test_probe_version_first_line(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout="codex-cli 0.9.1\nextra\n")
        self.assertEqual(probe_version("/usr/bin/codex"), "codex-cli 0.9.1")

    @patch("kannan.agents.registry.subprocess.run")
    def test_probe_version_failure_is_available(self, mock_run):
        mock_run.side_effect = OSError("boom")
        self.assertEqual(probe_version("/usr/bin/codex"), "available")
        mock_run.side_effect = None
        mock_run.return_value = MagicMock(returncode=1, stdout="")
        self.assertEqual(probe_version("/usr/bin/codex"), "available")


if __name__ == "__main__":
    unittest.main()
