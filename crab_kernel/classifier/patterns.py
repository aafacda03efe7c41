"""
Pattern Classifier — turns appended log text into discrete activity events.

Rule evaluation:
  Rules are walked in table order. The first rule that matches AND is off
  cooldown fires; every later rule is skipped. At most one rule event per chunk.
  Cooldowns are keyed by rule id and shared across all log files.

Escalation:
  A rule with an EscalationSpec counts its firings. When the count reaches the
  threshold it emits the escalated event instead and the count resets. Any
  event of the opposite polarity resets the count to zero.

Unconditional signals (no rule, no cooldown):
  - A tool-activity marker anywhere in the chunk drains energy.
  - Each line is parsed as JSON on a best-effort basis; a usage field above
    the threshold emits a proportional drain, once per qualifying line.
"""

import json
import logging
import re
import time
from typing import Callable, Dict, List, Optional, Union

from crab_kernel.classifier.rules import DEFAULT_RULES
from crab_kernel.models.classifier import (
    ActivityEvent,
    ClassificationRule,
    EventKind,
    Polarity,
    polarity_of,
)
from crab_kernel.models.config import ClassifierConfig
from crab_kernel.models.tailing import LogChunk

logger = logging.getLogger(__name__)

_OPPOSITE = {
    Polarity.POSITIVE: Polarity.NEGATIVE,
    Polarity.NEGATIVE: Polarity.POSITIVE,
}


def _lookup(record: dict, dotted: str):
    """Follow a dotted path through nested dicts. Missing keys yield None."""
    value = record
    for key in dotted.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


class PatternClassifier:
    """
    Ordered, short-circuiting rule dispatch with per-rule cooldown and
    escalation state.
    """

    def __init__(
        self,
        rules: Optional[List[ClassificationRule]] = None,
        config: Optional[ClassifierConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.rules = list(rules) if rules is not None else list(DEFAULT_RULES)
        ids = [r.id for r in self.rules]
        if len(set(ids)) != len(ids):
            raise ValueError("Classification rule ids must be unique")

        self.config = config or ClassifierConfig()
        self._clock = clock
        self._tool_activity = re.compile(self.config.tool_activity_pattern)
        self._last_fired: Dict[str, float] = {}
        self._escalation_counts: Dict[str, int] = {}

    def classify(
        self,
        chunk: Union[LogChunk, str],
        now: Optional[float] = None,
    ) -> List[ActivityEvent]:
        """Classify one chunk. Returns unconditional signals, then the rule event if any."""
        if now is None:
            now = self._clock()
        if isinstance(chunk, LogChunk):
            text, source = chunk.text, chunk.source
        else:
            text, source = str(chunk), None

        events: List[ActivityEvent] = []

        if self._tool_activity.search(text):
            events.append(ActivityEvent(
                kind=EventKind.TOOL_ACTIVITY,
                source=source,
                detected_at=now,
            ))

        events.extend(self._detect_usage(text, source, now))

        rule_event = self._match_rule(text, source, now)
        if rule_event is not None:
            events.append(rule_event)

        return events

    def _detect_usage(
        self, text: str, source: Optional[str], now: float
    ) -> List[ActivityEvent]:
        """Best-effort per-line parse; malformed lines are skipped."""
        cfg = self.config
        drains = []
        for line in text.splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except (json.JSONDecodeError, ValueError):
                continue
            if not isinstance(record, dict):
                continue

            value = _lookup(record, cfg.usage_field)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                continue
            if value <= cfg.usage_threshold:
                continue

            amount = min(cfg.usage_max_drain, int(value // cfg.usage_divisor))
            if amount > 0:
                drains.append(ActivityEvent(
                    kind=EventKind.TOKEN_DRAIN,
                    amount=amount,
                    source=source,
                    detected_at=now,
                ))
        return drains

    def _match_rule(
        self, text: str, source: Optional[str], now: float
    ) -> Optional[ActivityEvent]:
        for rule in self.rules:
            if not self._off_cooldown(rule, now):
                continue
            if not rule.matches(text):
                continue

            self._last_fired[rule.id] = now
            kind, escalated = self._escalate(rule)
            self._reset_opposing(polarity_of(kind))
            logger.debug("Rule %s fired -> %s", rule.id, kind.value)
            return ActivityEvent(
                kind=kind,
                rule_id=rule.id,
                source=source,
                detected_at=now,
                escalated=escalated,
            )
        return None

    def _off_cooldown(self, rule: ClassificationRule, now: float) -> bool:
        last = self._last_fired.get(rule.id)
        if last is None:
            return True
        return now - last >= rule.cooldown_seconds

    def _escalate(self, rule: ClassificationRule):
        """Count a firing; promote to the escalated event at the threshold."""
        if rule.escalation is None:
            return rule.event, False

        count = self._escalation_counts.get(rule.id, 0) + 1
        if count >= rule.escalation.threshold:
            self._escalation_counts[rule.id] = 0
            return rule.escalation.event, True

        self._escalation_counts[rule.id] = count
        return rule.event, False

    def _reset_opposing(self, polarity: Polarity) -> None:
        opposite = _OPPOSITE.get(polarity)
        if opposite is None:
            return
        for rule in self.rules:
            if rule.escalation is not None and rule.polarity == opposite:
                self._escalation_counts[rule.id] = 0

    # --- Introspection ---

    def escalation_count(self, rule_id: str) -> int:
        return self._escalation_counts.get(rule_id, 0)

    def cooldown_remaining(self, rule_id: str, now: Optional[float] = None) -> float:
        """Seconds until a rule may fire again (0 when it is ready)."""
        if now is None:
            now = self._clock()
        rule = next((r for r in self.rules if r.id == rule_id), None)
        last = self._last_fired.get(rule_id)
        if rule is None or last is None:
            return 0.0
        return max(0.0, rule.cooldown_seconds - (now - last))
