"""End-to-end pipeline runs through the Orchestrator."""

import threading
import time
from datetime import datetime, timedelta

import pytest

from adaptloop.config import AdaptloopConfig, PipelineSettings, RegistryConfig
from adaptloop.core.errors import ConfigurationError
from adaptloop.core.models import OutputType, ParameterDefinition, SpecificationRecord
from adaptloop.pipeline import (
    AdaptationEngine,
    AggregationEngine,
    Orchestrator,
    load_pipeline_stages,
    run_adapt_specs,
    run_aggregate_specs,
    validate_spec_dependencies,
)
from adaptloop.storage import open_store


PIPELINE_STAGES = [
    {"name": "AGGREGATE", "order": 2, "outputTypes": ["AGGREGATE"], "batched": True},
    {"name": "ADAPT", "order": 4, "outputTypes": ["ADAPT"]},
    {"name": "SUPERVISE", "order": 5, "outputTypes": ["SUPERVISE"], "requiresMode": "prep"},
]


def _config(policy="strict"):
    return AdaptloopConfig(
        registry=RegistryConfig(ttl_seconds=0),
        pipeline=PipelineSettings(stage_policy=policy),
    )


def _pipeline_spec(stages=PIPELINE_STAGES):
    return SpecificationRecord(
        slug="spec-pipeline-001",
        output_type=OutputType.PIPELINE,
        config={"parameters": [{"id": "pipeline_stages", "config": {"stages": stages}}]},
    )


def _aggregate_spec(**kwargs):
    return SpecificationRecord(
        slug="spec-agg-001",
        output_type=OutputType.AGGREGATE,
        config={
            "parameters": [
                {
                    "id": "pace_aggregation",
                    "config": {
                        "aggregationRules": [
                            {
                                "sourceParameter": "pace_score",
                                "targetProfileKey": "pace_preference",
                                "method": "threshold_mapping",
                                "thresholds": [
                                    {"max": 0.4, "value": "slow"},
                                    {"min": 0.4, "max": 0.7, "value": "moderate"},
                                    {"min": 0.7, "value": "fast"},
                                ],
                            }
                        ],
                        "windowSize": 5,
                        "minimumObservations": 3,
                    },
                }
            ]
        },
        **kwargs,
    )


def _adapt_spec(**kwargs):
    return SpecificationRecord(
        slug="spec-adapt-001",
        output_type=OutputType.ADAPT,
        config={
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
                                        "adjustment": "increase",
                                        "delta": 0.15,
                                    }
                                ],
                            }
                        ]
                    },
                }
            ]
        },
        **kwargs,
    )


def _seed(store, scores=(0.9, 0.85, 0.8)):
    store.save_parameter(ParameterDefinition(parameter_id="response_length"))
    now = datetime(2026, 1, 1, 12, 0)
    for i, score in enumerate(scores):
        store.record_score("c1", "pace_score", score, 0.8, now - timedelta(minutes=i))


class TestOrchestratorRun:
    def test_aggregate_then_adapt(self, tmp_path):
        with open_store(tmp_path / "o.db") as store:
            store.save_spec(_pipeline_spec())
            store.save_spec(_aggregate_spec())
            store.save_spec(_adapt_spec())
            _seed(store)
            summary = Orchestrator(store, _config()).run("c1")
            attrs = store.get_attributes("c1")
            target = store.get_target("c1", "response_length")

        assert summary.ok
        assert summary.stages_run == ["AGGREGATE", "ADAPT", "SUPERVISE"]
        assert summary.specs_run == 2
        assert summary.profile_updates == 1
        assert summary.targets_created == 1
        assert summary.guardrail_source is None
        assert [(a.key, a.value) for a in attrs] == [("pacePreference", "fast")]
        assert target.target_value == pytest.approx(0.65)

    def test_strict_without_pipeline_spec_raises(self, tmp_path):
        with open_store(tmp_path / "o.db") as store:
            store.save_spec(_aggregate_spec())
            _seed(store)
            with pytest.raises(ConfigurationError):
                Orchestrator(store, _config()).run("c1")
            assert store.get_attributes("c1") == []

    def test_fallback_runs_default_stages(self, tmp_path):
        with open_store(tmp_path / "o.db") as store:
            store.save_spec(_aggregate_spec())
            _seed(store)
            summary = Orchestrator(store, _config("fallback")).run("c1")

        assert summary.stages_run == ["AGGREGATE", "ADAPT", "SUPERVISE"]
        assert summary.profile_updates == 1

    def test_spec_with_missing_dependency_is_skipped(self, tmp_path):
        with open_store(tmp_path / "o.db") as store:
            store.save_spec(_pipeline_spec())
            store.save_spec(_aggregate_spec())
            store.save_spec(_adapt_spec(depends_on=["REWARD-001"]))
            _seed(store)
            summary = Orchestrator(store, _config()).run("c1")
            target = store.get_target("c1", "response_length")

        assert summary.profile_updates == 1
        assert [s.spec_slug for s in summary.specs_skipped] == ["spec-adapt-001"]
        assert any("REWARD-001" in w for w in summary.warnings)
        assert summary.errors == []
        assert target is None

    def test_prompt_mode_skips_prep_stage(self, tmp_path):
        with open_store(tmp_path / "o.db") as store:
            store.save_spec(_pipeline_spec())
            _seed(store)
            summary = Orchestrator(store, _config()).run("c1", mode="prompt")

        assert "SUPERVISE" not in summary.stages_run
        assert summary.mode == "prompt"

    def test_output_type_filter(self, tmp_path):
        with open_store(tmp_path / "o.db") as store:
            store.save_spec(_pipeline_spec())
            store.save_spec(_aggregate_spec())
            store.save_spec(_adapt_spec())
            _seed(store)
            summary = Orchestrator(store, _config()).run("c1", output_types=["aggregate"])
            target = store.get_target("c1", "response_length")

        assert summary.stages_run == ["AGGREGATE"]
        assert target is None

    def test_supervise_stage_reclamps_with_spec_guardrails(self, tmp_path):
        supervise = SpecificationRecord(
            slug="spec-guard-001",
            output_type=OutputType.SUPERVISE,
            config={
                "parameters": [{"id": "target_clamp", "config": {"maxValue": 0.6}}]
            },
        )
        with open_store(tmp_path / "o.db") as store:
            store.save_spec(_pipeline_spec())
            store.save_spec(supervise)
            store.upsert_target("c1", "response_length", 0.75, 0.8, None, None)
            summary = Orchestrator(store, _config()).run("c1", mode="prep")
            target = store.get_target("c1", "response_length")

        assert summary.guardrail_source == "spec-guard-001"
        assert summary.targets_adjusted == 1
        assert target.target_value == pytest.approx(0.6)


class TestSpecFailureTolerance:
    """One spec blowing up is recorded and its siblings still run."""

    def test_failing_adapt_spec_does_not_stop_sibling(self, tmp_path, monkeypatch):
        original = AdaptationEngine.run_spec

        def run_spec(self, caller_id, spec):
            if spec.slug == "spec-adapt-001":
                raise RuntimeError("storage hiccup")
            return original(self, caller_id, spec)

        monkeypatch.setattr(AdaptationEngine, "run_spec", run_spec)
        with open_store(tmp_path / "o.db") as store:
            store.save_spec(_pipeline_spec())
            store.save_spec(_adapt_spec())
            store.save_spec(_adapt_spec().model_copy(update={"slug": "spec-adapt-002"}))
            _seed(store)
            store.upsert_attribute("c1", "pacePreference", "fast", 0.8, "LEARNER_PROFILE")
            summary = Orchestrator(store, _config()).run("c1", output_types=["ADAPT"])
            target = store.get_target("c1", "response_length")

        assert summary.errors == ["spec-adapt-001: storage hiccup"]
        assert summary.specs_run == 1
        assert summary.targets_created == 1
        assert summary.stages_run == ["ADAPT"]
        assert target.source_spec == "spec-adapt-002"

    def test_failing_aggregate_spec_does_not_stop_adapt(self, tmp_path, monkeypatch):
        def run_spec(self, caller_id, spec):
            raise RuntimeError("window query failed")

        monkeypatch.setattr(AggregationEngine, "run_spec", run_spec)
        with open_store(tmp_path / "o.db") as store:
            store.save_spec(_pipeline_spec())
            store.save_spec(_aggregate_spec())
            store.save_spec(_adapt_spec())
            _seed(store)
            store.upsert_attribute("c1", "pacePreference", "fast", 0.8, "LEARNER_PROFILE")
            summary = Orchestrator(store, _config()).run("c1")
            target = store.get_target("c1", "response_length")

        assert summary.errors == ["spec-agg-001: window query failed"]
        assert summary.profile_updates == 0
        assert summary.targets_created == 1
        assert target.target_value == pytest.approx(0.65)


class TestEntryPoints:
    def test_run_aggregate_specs(self, tmp_path):
        with open_store(tmp_path / "o.db") as store:
            store.save_spec(_aggregate_spec())
            _seed(store)
            result = run_aggregate_specs(store, "c1", _config())

        assert result.specs_run == 1
        assert result.profile_updates == 1

    def test_run_adapt_specs(self, tmp_path):
        with open_store(tmp_path / "o.db") as store:
            store.save_spec(_adapt_spec())
            _seed(store)
            store.upsert_attribute("c1", "pacePreference", "fast", 0.8, "LEARNER_PROFILE")
            result = run_adapt_specs(store, "c1", _config())

        assert result.targets_created == 1

    def test_validate_spec_dependencies(self, tmp_path):
        with open_store(tmp_path / "o.db") as store:
            store.save_spec(_adapt_spec(depends_on=["AGG-001"]))
            assert validate_spec_dependencies(store, ["spec-adapt-001"], _config()).valid is False
            store.save_spec(_aggregate_spec())
            assert validate_spec_dependencies(store, ["spec-adapt-001"], _config()).valid is True

    def test_load_pipeline_stages(self, tmp_path):
        with open_store(tmp_path / "o.db") as store:
            store.save_spec(_pipeline_spec())
            stages = load_pipeline_stages(store, _config())

        assert [s.order for s in stages] == [2, 4, 5]

    def test_concurrent_adapt_runs_share_store_locks(self, tmp_path):
        with open_store(tmp_path / "o.db") as store:
            store.save_spec(_adapt_spec())
            _seed(store)
            store.upsert_attribute("c1", "pacePreference", "fast", 0.8, "LEARNER_PROFILE")
            store.upsert_target("c1", "response_length", 0.4, 0.8, None, None)

            get_target = store.get_target

            def slow_get_target(caller_id, parameter_id):
                record = get_target(caller_id, parameter_id)
                time.sleep(0.05)
                return record

            store.get_target = slow_get_target
            config = _config()
            threads = [
                threading.Thread(target=run_adapt_specs, args=(store, "c1", config))
                for _ in range(2)
            ]
            for t in threads:
                t.start()
            for t in threads:
                t.join()
            target = get_target("c1", "response_length")

        # 0.4 + 0.15 + 0.15, no lost update
        assert target.target_value == pytest.approx(0.7)
        assert len(store.target_locks) == 0
