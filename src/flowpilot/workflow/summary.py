"""Rolling summary and failure-pattern heuristics based on bag-of-words similarity."""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from flowpilot.workflow.models import TERMINAL_STATUSES, Task, TaskStatus, WorkflowProgress

SIMILARITY_THRESHOLD = 0.8
RECENT_WINDOW = 5
MID_WINDOW = 5

_TOKEN_RE = re.compile(r"[a-z0-9_]+|[\u4e00-\u9fff]")
_TAG_RE = re.compile(r"\[(?:DECISION|ARCHITECTURE|IMPORTANT)\]", re.IGNORECASE)
_FAILURE_HEADING_RE = re.compile(r"^## Failure \d+\s*$", re.MULTILINE)


@dataclass(frozen=True, slots=True)
class SummaryItem:
    """One progress line: display label plus the text used for dedup."""

    label: str
    text: str


def tokenize(text: str) -> set[str]:
    """Latin word runs and single CJK characters, lowercased."""

    return set(_TOKEN_RE.findall(text.lower()))


def similarity(left: str, right: str) -> float:
    """Jaccard similarity of the two token sets; 0 when either is empty."""

    left_tokens, right_tokens = tokenize(left), tokenize(right)
    if not left_tokens or not right_tokens:
        return 0.0
    shared = len(left_tokens & right_tokens)
    return shared / (len(left_tokens) + len(right_tokens) - shared)


def extract_tagged_lines(text: str) -> list[str]:
    return [line.strip() for line in text.split("\n") if _TAG_RE.search(line)]


def dedup_items(items: Sequence[SummaryItem]) -> list[SummaryItem]:
    """Drop items too similar to an earlier kept item; the first occurrence wins."""

    kept: list[SummaryItem] = []
    for item in items:
        if not any(
            similarity(existing.text, item.text) > SIMILARITY_THRESHOLD for existing in kept
        ):
            kept.append(item)
    return kept


def build_rolling_summary(progress: WorkflowProgress, contexts: Mapping[str, str]) -> str:
    """Rebuild the shared summary from done tasks and their recorded outputs.

    Tagged decision lines are always kept. The five most recent done tasks
    keep their full summary, the five before them only its first line, and
    older ones only their title. Near-duplicate entries are then collapsed.
    """

    done = list(progress.tasks_with_status(TaskStatus.DONE))
    lines = [f"# {progress.name}", ""]

    tagged: list[str] = []
    for task in done:
        for line in extract_tagged_lines(contexts.get(task.id, "")):
            if line not in tagged:
                tagged.append(line)
    if tagged:
        lines.extend(["## Key Decisions", ""])
        lines.extend(f"- {line}" for line in tagged)
        lines.append("")

    items = dedup_items(_decayed_items(done))
    if items:
        lines.extend(["## Progress", ""])
        lines.extend(f"- {item.label}" for item in items)
        lines.append("")

    remaining = [task for task in progress.tasks if task.status not in TERMINAL_STATUSES]
    if remaining:
        lines.extend(["## Pending", ""])
        lines.extend(f"- [{task.type.value}] {task.title}" for task in remaining)

    return "\n".join(lines).rstrip() + "\n"


def _decayed_items(done: Sequence[Task]) -> list[SummaryItem]:
    recent_start = max(0, len(done) - RECENT_WINDOW)
    mid_start = max(0, recent_start - MID_WINDOW)
    items: list[SummaryItem] = []
    for position, task in enumerate(done):
        if position >= recent_start:
            text = f"{task.title}: {task.summary}" if task.summary else task.title
        elif position >= mid_start:
            first_line = task.summary.split("\n")[0]
            text = f"{task.title}: {first_line}" if first_line else task.title
        else:
            text = task.title
        items.append(SummaryItem(label=f"[{task.type.value}] {text}", text=text))
    return items


def format_failure_record(attempt: int, reason: str) -> str:
    return f"## Failure {attempt}\n\n{reason.strip()}\n"


def parse_failure_records(context: str) -> list[str]:
    """Return the reasons recorded under ``## Failure N`` headings, oldest first."""

    parts = _FAILURE_HEADING_RE.split(context)
    return [part.strip() for part in parts[1:]]


def detect_repeated_failure(previous: Sequence[str], current: str) -> str | None:
    """Warn when the new failure reads like the one immediately before it."""

    if not previous:
        return None
    score = similarity(previous[-1], current)
    if score > SIMILARITY_THRESHOLD:
        return (
            f"Warning: this failure is {score:.0%} similar to the previous one; "
            "the same mistake appears to be repeating. Change the approach before retrying."
        )
    return None
