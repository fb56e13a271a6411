import itertools
import unittest

from kannan.agents.registry import AgentName, AgentRegistry
from kannan.roles import (
    Role,
    RoleAssigner,
    RoleClass,
    infer_role,
    role_class,
    role_prompt,
    required_capability,
)

ALL_AGENTS = ["claude", "codex", "gemini", "ollama"]


def _assigner(names, pins=None):
    return RoleAssigner(AgentRegistry.from_names(names), pins=pins or {})


class RoleTableTests(unittest.TestCase):
    def test_role_classes(self):
        self.assertEqual(role_class(Role.IMPLEMENTER), RoleClass.DOER)
        self.assertEqual(role_class(Role.DEBUGGER), RoleClass.DOER)
        self.assertEqual(role_class(Role.TESTER), RoleClass.DOER)
        self.assertEqual(role_class(Role.CRITIC), RoleClass.THINKER)
        self.assertEqual(role_class(Role.VERIFIER), RoleClass.THINKER)

    def test_required_capabilities(self):
        self.assertEqual(required_capability("planner").value, "plan")
        self.assertEqual(required_capability("architect").value, "plan")
        self.assertEqual(required_capability("verifier").value, "code")
        self.assertEqual(required_capability("critic").value, "review")

    def test_critic_prompt_asks_for_json_verdict(self):
        self.assertIn('"verdict"', role_prompt(Role.CRITIC))

    def test_infer_role(self):
        self.assertEqual(infer_role("Plan the migration"), Role.PLANNER)
        self.assertEqual(infer_role("break the work down"), Role.PLANNER)
        self.assertEqual(infer_role("Design the storage layer"), Role.ARCHITECT)
        self.assertEqual(infer_role("Add a --json flag"), Role.IMPLEMENTER)
        self.assertEqual(infer_role("Review the parser"), Role.CRITIC)
        self.assertEqual(infer_role("Fix the crash on startup"), Role.DEBUGGER)
        self.assertEqual(infer_role("Improve coverage"), Role.TESTER)
        self.assertEqual(infer_role("Verify the release"), Role.VERIFIER)
        self.assertEqual(infer_role("something vague"), Role.IMPLEMENTER)


class AssignerTests(unittest.TestCase):
    def test_no_agents_returns_none(self):
        assigner = _assigner([])
        for role in Role:
            self.assertIsNone(assigner.assign(role))

    def test_single_agent_does_everything(self):
        assigner = _assigner(["ollama"])
        for role in Role:
            self.assertEqual(assigner.assign(role), AgentName.OLLAMA)

    def test_two_agents_doer_thinker(self):
        assigner = _assigner(["codex", "ollama"])
        self.assertEqual(assigner.assign(Role.IMPLEMENTER), AgentName.CODEX)
        self.assertEqual(assigner.assign(Role.DEBUGGER), AgentName.CODEX)
        self.assertEqual(assigner.assign(Role.CRITIC), AgentName.OLLAMA)
        self.assertEqual(assigner.assign(Role.PLANNER), AgentName.OLLAMA)

    def test_two_agents_first_coder_in_priority_is_doer(self):
        assigner = _assigner(["gemini", "claude"])
        self.assertEqual(assigner.assign(Role.IMPLEMENTER), AgentName.CLAUDE)
        self.assertEqual(assigner.assign(Role.CRITIC), AgentName.GEMINI)

    def test_three_agents_distribution(self):
        assigner = _assigner(["claude", "codex", "gemini"])
        self.assertEqual(assigner.assign(Role.IMPLEMENTER), AgentName.CLAUDE)
        self.assertEqual(assigner.assign(Role.CRITIC), AgentName.GEMINI)
        # gemini is taken, ollama absent, codex lacks "plan" -> claude via fallback
        self.assertEqual(assigner.assign(Role.PLANNER), AgentName.CLAUDE)

    def test_four_agents_distribution_is_distinct(self):
        assigner = _assigner(ALL_AGENTS)
        self.assertEqual(assigner.assign(Role.IMPLEMENTER), AgentName.CLAUDE)
        self.assertEqual(assigner.assign(Role.CRITIC), AgentName.OLLAMA)
        self.assertEqual(assigner.assign(Role.PLANNER), AgentName.GEMINI)

    def test_other_roles_use_best_for(self):
        assigner = _assigner(ALL_AGENTS)
        self.assertEqual(assigner.assign(Role.TESTER), AgentName.CLAUDE)
        self.assertEqual(assigner.assign(Role.ARCHITECT), AgentName.CLAUDE)
        assigner = _assigner(["codex", "gemini", "ollama"])
        self.assertEqual(assigner.assign(Role.DEBUGGER), AgentName.CODEX)
        self.assertEqual(assigner.assign(Role.ARCHITECT), AgentName.GEMINI)

    def test_pin_wins_when_available(self):
        for names in (["codex"], ["codex", "ollama"], ALL_AGENTS):
            assigner = _assigner(names, pins={"critic": "codex"})
            self.assertEqual(assigner.assign(Role.CRITIC), AgentName.CODEX)

    def test_from_config_reads_pins_per_role(self):
        class PinConfig:
            roles = {"critic": "wrong"}

            def __init__(self):
                self.asked = []

            def pinned_agent_for_role(self, role):
                self.asked.append(role)
                return "codex" if role == "critic" else ""

        config = PinConfig()
        assigner = RoleAssigner.from_config(AgentRegistry.from_names(ALL_AGENTS), config)
        self.assertEqual(config.asked, [role.value for role in Role])
        self.assertEqual(dict(assigner.pins), {"critic": "codex"})
        self.assertEqual(assigner.assign(Role.CRITIC), AgentName.CODEX)

    def test_pin_unavailable_falls_back(self):
        assigner = _assigner(["codex", "ollama"], pins={"critic": "claude", "planner": "copilot"})
        with self.assertLogs("kannan.roles", level="WARNING"):
            self.assertEqual(assigner.assign(Role.CRITIC), AgentName.OLLAMA)
        self.assertEqual(assigner.assign(Role.PLANNER), AgentName.OLLAMA)

    def test_distribution_is_memoized_until_reset(self):
        assigner = _assigner(ALL_AGENTS)
        self.assertEqual(assigner.assign(Role.CRITIC), AgentName.OLLAMA)
        layout = assigner._distribution
        self.assertIsNotNone(layout)
        assigner.assign(Role.PLANNER)
        assigner.assign(Role.IMPLEMENTER)
        self.assertIs(assigner._distribution, layout)
        assigner.reset()
        self.assertIsNone(assigner._distribution)
        self.assertEqual(assigner.assign(Role.CRITIC), AgentName.OLLAMA)

    def test_split_is_memoized(self):
        assigner = _assigner(["claude", "gemini"])
        first = assigner._compute_split()
        self.assertIs(assigner._compute_split(), first)
        self.assertEqual(first, (AgentName.CLAUDE, AgentName.GEMINI))

    def test_assignments_always_available(self):
        for size in range(0, 5):
            for names in itertools.combinations(ALL_AGENTS, size):
                assigner = _assigner(list(names))
                for role in Role:
                    agent = assigner.assign(role)
                    if not names:
                        self.assertIsNone(agent)
                    else:
                        self.assertIn(agent.value, names)

    def test_three_plus_distinct_when_qualified(self):
        for names in (ALL_AGENTS, ["claude", "gemini", "ollama"], ["codex", "gemini", "ollama"]):
            assigner = _assigner(names)
            picks = {assigner.assign(r) for r in (Role.IMPLEMENTER, Role.CRITIC, Role.PLANNER)}
            self.assertEqual(len(picks), 3, names)

    def test_table_and_strategy(self):
        assigner = _assigner(["codex", "ollama"])
        self.assertEqual(assigner.strategy(), "split")
        table = assigner.table()
        self.assertEqual(table["implementer"], "codex")
        self.assertEqual(table["critic"], "ollama")
        self.assertEqual(_assigner([]).strategy(), "none")
        self.assertIsNone(_assigner([]).table()["planner"])


if __name__ == "__main__":
    unittest.main()
