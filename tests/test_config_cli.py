"""
Tests for YAML scenario files and the command line runner.
"""

import pytest
import yaml

from kvfault import cli
from kvfault.harness import ValueMismatch
from kvfault.harness.config import ENV_VAR, load_scenarios, parse_scenarios, resolve_scenario_path


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def write_scenarios(path, scenarios: dict):
    path.write_text(yaml.safe_dump({"scenarios": scenarios}), encoding="utf-8")
    return path


@pytest.fixture
def scenario_file(tmp_path):
    return write_scenarios(
        tmp_path / "scenarios.yaml",
        {
            "tiny": {
                "n_clients": 2,
                "ops_per_client": 3,
                "election_timeout": 0.05,
            },
            "tiny_partitions": {
                "n_clients": 2,
                "partitions": True,
                "election_timeout": 0.05,
                "partition_grace": 0.05,
                "partition_jitter": 0.01,
            },
        },
    )


# =============================================================================
# Scenario File Tests
# =============================================================================


class TestScenarioFiles:
    def test_load_explicit_path(self, scenario_file):
        scenarios = load_scenarios(str(scenario_file))

        assert set(scenarios) == {"tiny", "tiny_partitions"}
        assert scenarios["tiny"].effective_ops_per_client == 3
        assert scenarios["tiny_partitions"].partitions

    def test_env_var_used_without_explicit_path(self, scenario_file, monkeypatch):
        monkeypatch.setenv(ENV_VAR, str(scenario_file))
        assert resolve_scenario_path() == scenario_file
        assert "tiny" in load_scenarios()

    def test_explicit_path_beats_env_var(self, tmp_path, scenario_file, monkeypatch):
        monkeypatch.setenv(ENV_VAR, str(tmp_path / "other.yaml"))
        assert resolve_scenario_path(str(scenario_file)) == scenario_file

    def test_missing_file(self, tmp_path):
        missing = tmp_path / "absent.yaml"
        with pytest.raises(FileNotFoundError, match=ENV_VAR):
            load_scenarios(str(missing))
        assert load_scenarios(str(missing), required=False) == {}

    def test_unknown_field(self):
        with pytest.raises(KeyError, match="colour"):
            parse_scenarios({"scenarios": {"bad": {"n_clients": 1, "colour": "red"}}})

    def test_n_clients_required(self):
        with pytest.raises(ValueError, match="n_clients"):
            parse_scenarios({"scenarios": {"bad": {"crash": True}}})

    def test_invalid_values_rejected(self):
        with pytest.raises(ValueError):
            parse_scenarios({"scenarios": {"bad": {"n_clients": 0}}})

    def test_empty_document(self):
        assert parse_scenarios(None) == {}
        assert parse_scenarios({"scenarios": None}) == {}

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("scenarios:\n  a: [1, 2\n", encoding="utf-8")

        with pytest.raises(ValueError, match="not valid YAML"):
            load_scenarios(str(path))

    def test_wrong_field_type_names_scenario(self):
        with pytest.raises(ValueError, match="'typed'"):
            parse_scenarios({"scenarios": {"typed": {"n_clients": "3"}}})

    @pytest.mark.parametrize(
        "raw",
        [
            ["not", "a", "mapping"],
            {"scenarios": ["tiny"]},
            {"scenarios": {"tiny": [1, 2]}},
        ],
    )
    def test_non_mapping_shapes_rejected(self, raw):
        with pytest.raises(ValueError, match="mapping"):
            parse_scenarios(raw)


# =============================================================================
# CLI Tests
# =============================================================================


class TestCli:
    def test_list(self, scenario_file, capsys):
        assert cli.main(["--scenarios", str(scenario_file), "list"]) == 0

        names = capsys.readouterr().out.split()
        assert "tiny" in names
        assert "concurrent_3a" in names
        assert "one_partition_3a" in names

    def test_run_passing_scenarios(self, scenario_file, capsys):
        code = cli.main(["--scenarios", str(scenario_file), "run", "tiny", "tiny_partitions", "--seed", "3"])

        assert code == 0
        out = capsys.readouterr().out
        assert "ok   tiny " in out
        assert "ok   tiny_partitions " in out

    def test_run_with_election_timeout_override(self, scenario_file):
        code = cli.main(
            ["--scenarios", str(scenario_file), "run", "concurrent_3a", "--election-timeout", "0.05"]
        )
        assert code == 0

    def test_unknown_scenario(self, scenario_file):
        assert cli.main(["--scenarios", str(scenario_file), "run", "nope"]) == 2

    def test_missing_scenario_file(self, tmp_path):
        assert cli.main(["--scenarios", str(tmp_path / "absent.yaml"), "list"]) == 2

    def test_malformed_scenario_file(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("a: [1, 2\n", encoding="utf-8")
        assert cli.main(["--scenarios", str(path), "list"]) == 2

    def test_scenario_field_of_wrong_type(self, tmp_path):
        path = write_scenarios(tmp_path / "typed.yaml", {"typed": {"n_clients": "3"}})
        assert cli.main(["--scenarios", str(path), "list"]) == 2

    def test_failure_exit_status(self, scenario_file, monkeypatch, capsys):
        def failing_run_named(name, factory, overrides, extra=None):
            raise ValueMismatch("0", "x 0 0 y", "")

        monkeypatch.setattr(cli, "run_named", failing_run_named)

        assert cli.main(["--scenarios", str(scenario_file), "run", "tiny"]) == 1
        assert "FAIL tiny" in capsys.readouterr().out
