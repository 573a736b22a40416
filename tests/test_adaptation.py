"""Tests for conditional target adaptation in adaptloop/pipeline/adaptation.py."""

import pytest

from adaptloop.core.models import (
    AdaptationAction,
    AttributeRecord,
    OutputType,
    ParameterDefinition,
    SpecificationRecord,
)
from adaptloop.pipeline import GuardrailPolicy, KeyedLocks, SpecRegistry
from adaptloop.pipeline.adaptation import (
    AdaptationEngine,
    build_profile,
    compute_target,
    resolve_profile_value,
)
from adaptloop.storage import open_store


def _make_adapt_spec(rules, slug="spec-adapt-001", key_map=None):
    config = {"adaptationRules": rules}
    if key_map is not None:
        config["keyMap"] = key_map
    return SpecificationRecord(
        slug=slug,
        output_type=OutputType.ADAPT,
        config={"parameters": [{"id": "pace_adaptation", "config": config}]},
    )


def _pace_rule(adjustment="increase", profile_key="pacePreference", **action):
    return {
        "condition": {"profileKey": profile_key, "value": "fast"},
        "actions": [
            {"targetParameter": "response_length", "adjustment": adjustment, **action}
        ],
        "rationale": "Fast learners get more detail",
    }


def _make_engine(store):
    registry = SpecRegistry(store, ttl_seconds=0)
    guardrails = GuardrailPolicy(registry)
    guardrails.load()
    return AdaptationEngine(store, registry, guardrails, KeyedLocks())


def _seed(store, pace="fast", key="pacePreference", scope="LEARNER_PROFILE"):
    store.save_parameter(ParameterDefinition(parameter_id="response_length"))
    store.upsert_attribute("c1", key, pace, 0.8, scope)


class TestComputeTarget:
    def test_set_defaults_to_half(self):
        assert compute_target(AdaptationAction(target_parameter="p", adjustment="set"), 0.9) == 0.5

    def test_increase_without_current_starts_at_half(self):
        action = AdaptationAction(target_parameter="p", adjustment="increase")
        assert compute_target(action, None) == pytest.approx(0.6)

    def test_decrease_uses_delta(self):
        action = AdaptationAction(target_parameter="p", adjustment="decrease", delta=0.3)
        assert compute_target(action, 0.4) == pytest.approx(0.1)

    def test_local_clamp_to_unit_interval(self):
        action = AdaptationAction(target_parameter="p", adjustment="increase", delta=0.9)
        assert compute_target(action, 0.8) == 1.0
        action = AdaptationAction(target_parameter="p", adjustment="set", value=-2)
        assert compute_target(action, None) == 0.0


class TestResolveProfileValue:
    """Exact key, then the authored key map, then the built-in vocabulary."""

    def test_exact_match(self):
        assert resolve_profile_value({"pacePreference": "fast"}, "pacePreference") == "fast"

    def test_key_map_both_directions(self):
        key_map = {"pacePreference": "pace_pref"}
        assert resolve_profile_value({"pace_pref": "fast"}, "pacePreference", key_map) == "fast"
        assert resolve_profile_value({"pacePreference": "slow"}, "pace_pref", key_map) == "slow"

    def test_builtin_vocabulary_both_directions(self):
        assert resolve_profile_value({"pacePreference": "fast"}, "pace_preference") == "fast"
        assert resolve_profile_value({"learning_style": "visual"}, "learningStyle") == "visual"

    def test_no_case_guessing(self):
        assert resolve_profile_value({"pacePreference": "fast"}, "PacePreference") is None
        assert resolve_profile_value({"engagementLevel": "high"}, "engagement_level") is None

    def test_primary_scope_wins_on_conflict(self):
        profile = build_profile(
            [
                AttributeRecord(caller_id="c", key="k", value="primary", confidence=1),
                AttributeRecord(
                    caller_id="c", key="k", value="other", confidence=1, scope="X"
                ),
            ]
        )
        assert profile == {"k": "primary"}


class TestAdaptationEngine:
    def test_scenario_increase_from_existing_target(self, tmp_path):
        with open_store(tmp_path / "t.db") as store:
            _seed(store)
            store.upsert_target("c1", "response_length", 0.5, 0.7, None, None)
            result = _make_engine(store).run_spec(
                "c1", _make_adapt_spec([_pace_rule(delta=0.15)])
            )
            target = store.get_target("c1", "response_length")

        assert result.specs_run == 1
        assert result.targets_updated == 1
        assert result.targets_created == 0
        assert result.errors == []
        assert target.target_value == pytest.approx(0.65)
        assert target.confidence == pytest.approx(0.8)
        assert target.source_spec == "spec-adapt-001"
        assert target.rationale == "Fast learners get more detail"

    def test_new_target_is_created(self, tmp_path):
        with open_store(tmp_path / "t.db") as store:
            _seed(store)
            result = _make_engine(store).run_spec(
                "c1", _make_adapt_spec([_pace_rule(rationale="action says so")])
            )
            target = store.get_target("c1", "response_length")

        assert result.targets_created == 1
        assert target.target_value == pytest.approx(0.6)
        assert target.rationale == "action says so"

    def test_guardrail_clamp_applied_before_persistence(self, tmp_path):
        with open_store(tmp_path / "t.db") as store:
            _seed(store)
            engine = _make_engine(store)
            engine.run_spec("c1", _make_adapt_spec([_pace_rule("set", value=0.95)]))
            high = store.get_target("c1", "response_length").target_value
            engine.run_spec(
                "c1", _make_adapt_spec([_pace_rule("decrease", delta=0.7)])
            )
            low = store.get_target("c1", "response_length").target_value

        assert high == pytest.approx(0.8)
        assert low == pytest.approx(0.2)

    def test_condition_mismatch_does_nothing(self, tmp_path):
        with open_store(tmp_path / "t.db") as store:
            _seed(store, pace="slow")
            result = _make_engine(store).run_spec("c1", _make_adapt_spec([_pace_rule()]))
            target = store.get_target("c1", "response_length")

        assert result.specs_run == 1
        assert result.targets_created == result.targets_updated == 0
        assert target is None

    def test_authored_key_map_resolves_condition(self, tmp_path):
        with open_store(tmp_path / "t.db") as store:
            _seed(store, key="pace_pref", scope="CUSTOM")
            result = _make_engine(store).run_spec(
                "c1",
                _make_adapt_spec([_pace_rule()], key_map={"pacePreference": "pace_pref"}),
            )

        assert result.targets_created == 1

    def test_unknown_parameter_reported_and_siblings_continue(self, tmp_path):
        rule = _pace_rule("set", value=0.4)
        rule["actions"].insert(
            0, {"targetParameter": "does_not_exist", "adjustment": "set", "value": 0.4}
        )
        with open_store(tmp_path / "t.db") as store:
            _seed(store)
            result = _make_engine(store).run_spec("c1", _make_adapt_spec([rule]))

        assert result.targets_created == 1
        assert len(result.errors) == 1
        assert "does_not_exist" in result.errors[0]

    def test_malformed_rule_reported(self, tmp_path):
        with open_store(tmp_path / "t.db") as store:
            _seed(store)
            result = _make_engine(store).run_spec(
                "c1",
                _make_adapt_spec(
                    [
                        {"actions": []},
                        _pace_rule("set", value=0.3),
                    ]
                ),
            )

        assert result.targets_created == 1
        assert result.errors[0].startswith("spec-adapt-001[0]:")

    def test_set_is_idempotent(self, tmp_path):
        spec = _make_adapt_spec([_pace_rule("set", value=0.7)])
        with open_store(tmp_path / "t.db") as store:
            _seed(store)
            engine = _make_engine(store)
            engine.run_spec("c1", spec)
            engine.run_spec("c1", spec)
            target = store.get_target("c1", "response_length")

        assert target.target_value == pytest.approx(0.7)

    def test_run_adapt_specs_reads_active_specs(self, tmp_path):
        with open_store(tmp_path / "t.db") as store:
            _seed(store)
            store.save_spec(_make_adapt_spec([_pace_rule("set", value=0.3)]))
            result = _make_engine(store).run_adapt_specs("c1")

        assert result.specs_run == 1
        assert result.targets_created == 1
