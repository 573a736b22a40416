"""CLI smoke tests using typer's CliRunner."""

import json

import yaml
from typer.testing import CliRunner

from adaptloop.cli.app import app
from adaptloop.storage import open_store

runner = CliRunner()


PIPELINE_SPEC = {
    "slug": "spec-pipeline-001",
    "outputType": "PIPELINE",
    "config": {
        "parameters": [
            {
                "id": "pipeline_stages",
                "config": {
                    "stages": [
                        {"name": "AGGREGATE", "order": 2, "outputTypes": ["AGGREGATE"]},
                        {"name": "ADAPT", "order": 4, "outputTypes": ["ADAPT"]},
                    ]
                },
            }
        ]
    },
}

ADAPT_SPEC = {
    "slug": "spec-adapt-001",
    "outputType": "ADAPT",
    "dependsOn": ["AGG-001"],
    "config": {
        "parameters": [
            {
                "id": "pace_adaptation",
                "config": {
                    "adaptationRules": [
                        {
                            "condition": {"profileKey": "pacePreference", "value": "fast"},
                            "actions": [
                                {
                                    "targetParameter": "response_length",
                                    "adjustment": "set",
                                    "value": 0.7,
                                }
                            ],
                        }
                    ]
                },
            }
        ]
    },
}


def _write_spec(tmp_path, data, name):
    path = tmp_path / name
    path.write_text(yaml.safe_dump(data))
    return path


def _invoke(db_path, *args):
    return runner.invoke(app, ["--db", str(db_path), *args])


class TestConfigCommand:
    """Tests for the config command."""

    def test_config_show(self):
        result = runner.invoke(app, ["config", "show"])
        assert result.exit_code == 0
        assert "Pipeline" in result.output
        assert "Engine" in result.output

    def test_config_set_invalid_key(self):
        result = runner.invoke(app, ["config", "set", "invalid.key", "value"])
        assert result.exit_code == 1
        assert "Unknown key" in result.output

    def test_config_set_invalid_int_value(self):
        result = runner.invoke(app, ["config", "set", "engine.default_window_size", "abc"])
        assert result.exit_code == 1
        assert "Invalid integer" in result.output

    def test_config_set_missing_args(self):
        result = runner.invoke(app, ["config", "set"])
        assert result.exit_code == 1

    def test_config_unknown_action(self):
        result = runner.invoke(app, ["config", "unknown_action"])
        assert result.exit_code == 1
        assert "Unknown action" in result.output


class TestVersionFlag:
    def test_version_output(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "adaptloop" in result.output


class TestSpecsCommand:
    def test_import_and_list(self, tmp_path):
        db = tmp_path / "cli.db"
        spec_file = _write_spec(tmp_path, PIPELINE_SPEC, "pipeline.yaml")

        result = _invoke(db, "specs", "import", str(spec_file))
        assert result.exit_code == 0

        result = _invoke(db, "--json", "specs", "list")
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert [row["Slug"] for row in data["specs"]] == ["spec-pipeline-001"]

    def test_import_missing_file(self, tmp_path):
        result = _invoke(tmp_path / "cli.db", "specs", "import", str(tmp_path / "nope.yaml"))
        assert result.exit_code == 3

    def test_import_invalid_spec(self, tmp_path):
        bad = _write_spec(tmp_path, {"slug": "x"}, "bad.yaml")
        result = _invoke(tmp_path / "cli.db", "specs", "import", str(bad))
        assert result.exit_code == 1
        assert "Invalid spec file" in result.output

    def test_deactivate_hides_spec(self, tmp_path):
        db = tmp_path / "cli.db"
        _invoke(db, "specs", "import", str(_write_spec(tmp_path, PIPELINE_SPEC, "p.yaml")))

        result = _invoke(db, "specs", "deactivate", "spec-pipeline-001")
        assert result.exit_code == 0
        with open_store(db) as store:
            assert store.get_spec("spec-pipeline-001").is_active is False

        result = _invoke(db, "specs", "activate", "missing-spec")
        assert result.exit_code == 3

    def test_deps_reports_missing_dependency(self, tmp_path):
        db = tmp_path / "cli.db"
        _invoke(db, "specs", "import", str(_write_spec(tmp_path, ADAPT_SPEC, "a.yaml")))

        result = _invoke(db, "specs", "deps")
        assert result.exit_code == 1
        assert "AGG-001" in result.output
        assert "unsatisfied dependencies" in result.output


class TestStagesCommand:
    def test_strict_without_pipeline_spec(self, tmp_path):
        result = _invoke(tmp_path / "cli.db", "stages", "--policy", "strict")
        assert result.exit_code == 8
        assert "Pipeline spec not found" in result.output

    def test_fallback_lists_default_stages(self, tmp_path):
        result = _invoke(tmp_path / "cli.db", "stages", "--policy", "fallback")
        assert result.exit_code == 0
        assert "COMPOSE" in result.output


class TestRunCommand:
    def test_strict_without_pipeline_spec_exits_8(self, tmp_path):
        result = _invoke(tmp_path / "cli.db", "run", "c1", "--policy", "strict")
        assert result.exit_code == 8
        assert "Pipeline spec not found" in result.output

    def test_invalid_mode(self, tmp_path):
        result = _invoke(tmp_path / "cli.db", "run", "c1", "--mode", "later")
        assert result.exit_code == 1

    def test_run_with_pipeline_spec(self, tmp_path):
        db = tmp_path / "cli.db"
        adapt = dict(ADAPT_SPEC, dependsOn=[])
        _invoke(
            db,
            "specs",
            "import",
            str(_write_spec(tmp_path, PIPELINE_SPEC, "p.yaml")),
            str(_write_spec(tmp_path, adapt, "a.yaml")),
        )
        _invoke(db, "params", "add", "response_length")
        with open_store(db) as store:
            store.upsert_attribute("c1", "pacePreference", "fast", 0.8, "LEARNER_PROFILE")

        result = _invoke(db, "run", "c1", "--policy", "strict")
        assert result.exit_code == 0
        assert "Pipeline completed" in result.output
        with open_store(db) as store:
            assert store.get_target("c1", "response_length").target_value == 0.7


class TestScoresCommand:
    def test_add_and_list(self, tmp_path):
        db = tmp_path / "cli.db"
        assert _invoke(db, "scores", "add", "c1", "pace_score", "0.8").exit_code == 0
        assert _invoke(db, "scores", "add", "c1", "pace_score", "0.6").exit_code == 0

        result = _invoke(db, "--json", "scores", "list", "c1", "pace_score", "--window", "1")
        assert result.exit_code == 0
        assert len(json.loads(result.output)["scores"]) == 1

    def test_add_out_of_range_score(self, tmp_path):
        result = _invoke(tmp_path / "cli.db", "scores", "add", "c1", "pace_score", "1.5")
        assert result.exit_code == 1
        assert "Invalid score event" in result.output


class TestCallerCommand:
    def test_show_and_erase(self, tmp_path):
        db = tmp_path / "cli.db"
        with open_store(db) as store:
            store.upsert_attribute("c1", "pacePreference", "fast", 0.8, "LEARNER_PROFILE")
            store.upsert_target("c1", "response_length", 0.6, 0.8, "spec-adapt-001", None)

        result = _invoke(db, "--json", "caller", "show", "c1")
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["attributes"][0]["Value"] == "fast"
        assert data["targets"][0]["Target"] == "0.60"

        result = _invoke(db, "caller", "erase", "c1", "--yes")
        assert result.exit_code == 0
        with open_store(db) as store:
            assert store.get_attributes("c1") == []
            assert store.list_targets("c1") == []

    def test_erase_aborts_without_confirmation(self, tmp_path):
        db = tmp_path / "cli.db"
        with open_store(db) as store:
            store.upsert_attribute("c1", "k", "v", 0.5, "LEARNER_PROFILE")

        result = runner.invoke(app, ["--db", str(db), "caller", "erase", "c1"], input="n\n")
        assert result.exit_code == 1
        with open_store(db) as store:
            assert len(store.get_attributes("c1")) == 1
