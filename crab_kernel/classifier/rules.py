"""
Default classification rule table.

Order is priority: the classifier walks this list top to bottom and stops at
the first rule that both matches and is off cooldown. Specific signals
(mentions, sub-agents, git, test results) sit above the generic keyword
buckets so they are not shadowed by them.
"""

import json
import logging
from pathlib import Path
from typing import List, Optional

from pydantic import TypeAdapter, ValidationError

from crab_kernel.models.classifier import ClassificationRule, EscalationSpec, EventKind

logger = logging.getLogger(__name__)

_USER_CONTENT = r'"role"\s*:\s*"user"\s*,\s*"content"\s*:\s*"[^"]*'


DEFAULT_RULES: List[ClassificationRule] = [
    # Mentions in user messages only
    ClassificationRule(
        id="ferris_mention",
        pattern=_USER_CONTENT + r"\bferris\b",
        event=EventKind.LOVESTRUCK,
        cooldown_seconds=10,
    ),
    ClassificationRule(
        id="claude_mention",
        pattern=_USER_CONTENT + r"\bclaude\b",
        event=EventKind.CLAUDE_FAN,
        cooldown_seconds=10,
    ),
    # Only source of curiosity
    ClassificationRule(
        id="planning_agent",
        pattern=r'"subagent_type"\s*:\s*"(Plan|Explore)"',
        event=EventKind.QUESTION,
        cooldown_seconds=3,
    ),
    ClassificationRule(
        id="git_publish",
        pattern=r"git commit|git push|committed|pushed to|pull request|PR created",
        event=EventKind.SURPRISE,
        cooldown_seconds=3,
    ),
    ClassificationRule(
        id="tests_passing",
        pattern=r"tests? pass|all tests|✓.*test|passed.*tests|\d+ passing",
        event=EventKind.MULTIPLE_SUCCESSES,
        cooldown_seconds=3,
    ),
    ClassificationRule(
        id="success",
        pattern=r"✓|completed|success(?:fully)?|done|created|wrote\s+\d+|file created|saved|updated",
        event=EventKind.SUCCESS,
        cooldown_seconds=2,
        escalation=EscalationSpec(threshold=3, event=EventKind.MULTIPLE_SUCCESSES),
    ),
    ClassificationRule(
        id="code_edit",
        pattern=r"Write|Edit|NotebookEdit|file has been|updated successfully",
        event=EventKind.SUCCESS,
        cooldown_seconds=2,
    ),
    # Structured error markers, not the bare word "error"
    ClassificationRule(
        id="tool_error",
        pattern=r'"is_error"\s*:\s*true|"exitCode"\s*:\s*[1-9]',
        event=EventKind.ERROR,
        cooldown_seconds=2,
        ignore_case=False,
        escalation=EscalationSpec(threshold=3, event=EventKind.REPEATED_ERRORS),
    ),
    ClassificationRule(
        id="tests_failing",
        pattern=r"tests? fail|\d+ failing|✗.*test|FAIL\s",
        event=EventKind.ERROR,
        cooldown_seconds=2,
    ),
    ClassificationRule(
        id="reading",
        pattern=r"Read|Glob|Grep|searching|looking for|finding|exploring",
        event=EventKind.THINKING,
        cooldown_seconds=3,
    ),
    ClassificationRule(
        id="web",
        pattern=r"WebFetch|WebSearch|fetching|searching the web",
        event=EventKind.THINKING,
        cooldown_seconds=3,
    ),
    ClassificationRule(
        id="planning_words",
        pattern=r"thinking|planning|analyzing|Let me|I'll|I will|considering",
        event=EventKind.THINKING,
        cooldown_seconds=5,
    ),
    ClassificationRule(
        id="commands",
        pattern=r"Bash|running|executing|npm|yarn|pip|cargo|go run",
        event=EventKind.THINKING,
        cooldown_seconds=3,
    ),
    ClassificationRule(
        id="building",
        pattern=r"install|build|compil|bundl|package",
        event=EventKind.THINKING,
        cooldown_seconds=5,
    ),
    ClassificationRule(
        id="todo",
        pattern=r"TodoWrite|todo|breaking down",
        event=EventKind.THINKING,
        cooldown_seconds=3,
    ),
    ClassificationRule(
        id="question",
        pattern=r"\?$|asking|clarif|question|AskUser|what do you|how should",
        event=EventKind.THINKING,
        cooldown_seconds=3,
    ),
    ClassificationRule(
        id="large_output",
        pattern=(
            r"\d{3,}\s+lines?|large\s+(?:file|output)|diff.*\+\d{2,}|unexpected|wow|whoa"
            r"|interesting|that's a lot|huh|surprisingly|didn't expect|unusual|quite a few"
            r"|more than expected|impressive|extensive|remarkable|turns out"
        ),
        event=EventKind.SURPRISE,
        cooldown_seconds=10,
    ),
    ClassificationRule(
        id="long_session",
        pattern=r"context|tokens|summariz|compacting",
        event=EventKind.LONG_SESSION,
        cooldown_seconds=30,
    ),
]


_RULE_TABLE = TypeAdapter(List[ClassificationRule])


def load_rules(path: Optional[str] = None) -> List[ClassificationRule]:
    """
    Load an ordered rule table from a JSON file (a list of rule objects).
    Falls back to DEFAULT_RULES when no path is given, or when the file is
    missing, unreadable, or fails validation.
    """
    if not path:
        return list(DEFAULT_RULES)

    file_path = Path(path).expanduser()
    try:
        raw = file_path.read_text(encoding="utf-8")
        rules = _RULE_TABLE.validate_python(json.loads(raw))
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        logger.warning("Cannot load rule table %s, using defaults: %s", file_path, e)
        return list(DEFAULT_RULES)

    ids = [r.id for r in rules]
    if len(set(ids)) != len(ids):
        logger.warning("Rule table %s has duplicate ids, using defaults", file_path)
        return list(DEFAULT_RULES)

    logger.info("Loaded %d classification rules from %s", len(rules), file_path)
    return rules


def dump_rules(rules: List[ClassificationRule]) -> list:
    """Serializable form of a rule table, in order."""
    return [r.model_dump(mode="json") for r in rules]
