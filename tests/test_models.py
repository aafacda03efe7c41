"""Tests for core data models and configuration."""

import pytest
from pydantic import ValidationError

from crab_kernel.classifier.patterns import PatternClassifier
from crab_kernel.models import (
    ActivityEvent,
    Attributes,
    ClassificationRule,
    ClassifierConfig,
    CompanionState,
    DurableState,
    Emotion,
    EngineConfig,
    EscalationSpec,
    EventKind,
    Polarity,
    SessionConfig,
    StateSnapshot,
    WellbeingConfig,
    polarity_of,
)


class TestAttributes:
    def test_defaults(self):
        a = Attributes()
        assert (a.hunger, a.happiness, a.energy, a.hygiene) == (80, 70, 100, 100)

    def test_out_of_range_values_are_clamped(self):
        a = Attributes(hunger=-20, happiness=250, energy=50.6, hygiene=100)
        assert a.hunger == 0
        assert a.happiness == 100
        assert a.energy == 51

    def test_non_numeric_value_is_rejected(self):
        with pytest.raises(ValidationError):
            Attributes(hunger="lots")

    def test_mean(self):
        assert Attributes(hunger=10, happiness=20, energy=30, hygiene=40).mean() == 25.0


class TestDurableState:
    def test_transient_overlay_fields_are_not_part_of_the_record(self):
        state = CompanionState()
        state.overlay.message = "Om nom nom!"
        state.overlay.category = "feed"
        state.overlay.emotion = Emotion.HAPPY
        state.overlay.expiry = 123.0

        dumped = DurableState.from_live(state).model_dump(mode="json")
        assert "message" not in dumped
        assert "category" not in dumped
        assert dumped["emotion"] == "happy"
        assert dumped["emotion_expiry"] == 123.0

    def test_from_live_copies_attributes(self):
        state = CompanionState()
        durable = DurableState.from_live(state)
        state.attributes.hunger = 5
        assert durable.attributes.hunger == 80

    def test_negative_hygiene_event_count_is_clamped(self):
        assert DurableState(hygiene_events=-3).hygiene_events == 0


class TestStateSnapshot:
    def test_snapshot_is_immutable(self):
        snap = StateSnapshot(
            emotion=Emotion.NEUTRAL,
            emotion_expiry=0,
            hunger=1,
            happiness=2,
            energy=3,
            hygiene=4,
            happiness_ceiling=35,
            hygiene_events=0,
            last_fed=0,
            last_interaction=0,
            taken_at=0,
        )
        with pytest.raises(ValidationError):
            snap.hunger = 50
        assert snap.label == "Chillin'"
        assert snap.attributes.hygiene == 4


class TestClassificationRule:
    def test_matches_case_insensitive_by_default(self):
        rule = ClassificationRule(id="r", pattern="done", event=EventKind.SUCCESS)
        assert rule.matches("All DONE here")

    def test_case_sensitive_rule(self):
        rule = ClassificationRule(
            id="r", pattern=r'"is_error"\s*:\s*true', event=EventKind.ERROR, ignore_case=False,
        )
        assert rule.matches('{"is_error": true}')
        assert not rule.matches('{"IS_ERROR": TRUE}')

    def test_invalid_pattern_is_rejected(self):
        with pytest.raises(ValidationError):
            ClassificationRule(id="bad", pattern="(unclosed", event=EventKind.SUCCESS)

    def test_negative_cooldown_is_clamped(self):
        rule = ClassificationRule(id="r", pattern="x", event=EventKind.SUCCESS, cooldown_seconds=-5)
        assert rule.cooldown_seconds == 0.0

    def test_escalation_threshold_at_least_one(self):
        escalation = EscalationSpec(threshold=0, event=EventKind.MULTIPLE_SUCCESSES)
        assert escalation.threshold == 1

    def test_polarity(self):
        assert polarity_of(EventKind.SUCCESS) == Polarity.POSITIVE
        assert polarity_of(EventKind.REPEATED_ERRORS) == Polarity.NEGATIVE
        assert polarity_of(EventKind.THINKING) == Polarity.NONE

    def test_activity_event_defaults(self):
        event = ActivityEvent(kind=EventKind.TOKEN_DRAIN, amount=3)
        assert event.rule_id is None
        assert event.escalated is False


class TestEngineConfig:
    def test_defaults(self):
        cfg = EngineConfig()
        assert cfg.decay_interval_seconds == 60
        assert cfg.idle_threshold_seconds == 300
        assert cfg.stuffed_threshold == 91
        assert cfg.overfeed_threshold == 70

    def test_out_of_range_values_are_clamped_not_rejected(self):
        cfg = EngineConfig(hunger_decay_rate=500, hygiene_event_penalty=-4, decay_interval_seconds=0)
        assert cfg.hunger_decay_rate == 100
        assert cfg.hygiene_event_penalty == 0
        assert cfg.decay_interval_seconds == 0.1

    def test_garbage_falls_back_to_field_default(self):
        cfg = EngineConfig(idle_check_interval_seconds="soon", feed_max="many")
        assert cfg.idle_check_interval_seconds == 5
        assert cfg.feed_max == 30

    def test_inverted_ranges_are_swapped(self):
        cfg = EngineConfig(feed_min=40, feed_max=10)
        assert (cfg.feed_min, cfg.feed_max) == (10, 40)


class TestClassifierConfig:
    def test_invalid_tool_activity_pattern_falls_back(self):
        cfg = ClassifierConfig(tool_activity_pattern="(")
        assert cfg.tool_activity_pattern == ClassifierConfig().tool_activity_pattern

    def test_classifier_builds_with_a_bad_pattern(self):
        classifier = PatternClassifier(rules=[], config=ClassifierConfig(tool_activity_pattern="("))
        events = classifier.classify('{"type": "tool_use"}', now=0.0)
        assert [e.kind for e in events] == [EventKind.TOOL_ACTIVITY]

    def test_custom_pattern_is_kept(self):
        assert ClassifierConfig(tool_activity_pattern="tool").tool_activity_pattern == "tool"


class TestWellbeingConfig:
    def test_invalid_cron_falls_back_to_hourly(self):
        cfg = WellbeingConfig(sample_schedule="every hour please")
        assert cfg.sample_schedule == "0 * * * *"

    def test_windows_are_ordered(self):
        cfg = WellbeingConfig(recent_window_hours=30, baseline_window_hours=6)
        assert cfg.recent_window_hours == 6
        assert cfg.baseline_window_hours == 30

    def test_session_config_nests_defaults(self):
        cfg = SessionConfig()
        assert cfg.tail.suffix == ".jsonl"
        assert cfg.classifier.usage_max_drain == 6
        assert cfg.wellbeing.history_limit == 168
