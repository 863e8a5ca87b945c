"""Cross-workflow statistics and planning suggestions derived from them."""

from __future__ import annotations

import math
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from flowpilot.workflow.models import TaskStatus, WorkflowProgress

FAILURE_RATE_THRESHOLD = 0.2
FAILURE_RATE_MIN_TASKS = 3
AVERAGE_RETRY_THRESHOLD = 1.0
SKIP_RATE_THRESHOLD = 0.15


@dataclass(slots=True)
class WorkflowStats:
    """Outcome counters of one finished workflow."""

    name: str
    total_tasks: int
    done_count: int
    skip_count: int
    fail_count: int
    retry_total: int
    tasks_by_type: dict[str, int] = field(default_factory=dict)
    fails_by_type: dict[str, int] = field(default_factory=dict)
    finished_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "total_tasks": self.total_tasks,
            "done_count": self.done_count,
            "skip_count": self.skip_count,
            "fail_count": self.fail_count,
            "retry_total": self.retry_total,
            "tasks_by_type": dict(self.tasks_by_type),
            "fails_by_type": dict(self.fails_by_type),
            "finished_at": self.finished_at,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> WorkflowStats:
        return cls(
            name=str(payload.get("name", "")),
            total_tasks=int(payload.get("total_tasks", 0)),
            done_count=int(payload.get("done_count", 0)),
            skip_count=int(payload.get("skip_count", 0)),
            fail_count=int(payload.get("fail_count", 0)),
            retry_total=int(payload.get("retry_total", 0)),
            tasks_by_type={str(k): int(v) for k, v in (payload.get("tasks_by_type") or {}).items()},
            fails_by_type={str(k): int(v) for k, v in (payload.get("fails_by_type") or {}).items()},
            finished_at=str(payload.get("finished_at", "")),
        )


@dataclass(slots=True)
class HistoryAnalysis:
    suggestions: list[str] = field(default_factory=list)
    recommended_max_attempts: int | None = None


def collect_stats(progress: WorkflowProgress, *, now: datetime | None = None) -> WorkflowStats:
    tasks_by_type = Counter(task.type.value for task in progress.tasks)
    fails_by_type = Counter(
        task.type.value for task in progress.tasks if task.status is TaskStatus.FAILED
    )
    return WorkflowStats(
        name=progress.name,
        total_tasks=len(progress.tasks),
        done_count=progress.count(TaskStatus.DONE),
        skip_count=progress.count(TaskStatus.SKIPPED),
        fail_count=progress.count(TaskStatus.FAILED),
        retry_total=sum(task.retries for task in progress.tasks),
        tasks_by_type=dict(tasks_by_type),
        fails_by_type=dict(fails_by_type),
        finished_at=(now or datetime.now(tz=UTC)).isoformat(),
    )


def analyze_history(history: Sequence[WorkflowStats]) -> HistoryAnalysis:
    """Suggest planning adjustments from past failure, retry and skip rates."""

    analysis = HistoryAnalysis()
    if not history:
        return analysis

    type_totals: Counter[str] = Counter()
    type_fails: Counter[str] = Counter()
    for stats in history:
        type_totals.update(stats.tasks_by_type)
        type_fails.update(stats.fails_by_type)
    total_tasks = sum(stats.total_tasks for stats in history)
    total_retries = sum(stats.retry_total for stats in history)
    total_skips = sum(stats.skip_count for stats in history)

    for task_type, total in type_totals.items():
        fails = type_fails.get(task_type, 0)
        rate = fails / total
        if rate > FAILURE_RATE_THRESHOLD and total >= FAILURE_RATE_MIN_TASKS:
            analysis.suggestions.append(
                f"{task_type} tasks failed {rate:.0%} of the time ({fails}/{total}); "
                "split them into smaller tasks.",
            )

    if total_tasks > 0:
        average_retries = total_retries / total_tasks
        if average_retries > AVERAGE_RETRY_THRESHOLD:
            analysis.suggestions.append(
                f"Tasks needed {average_retries:.1f} retries on average; "
                "give sub-agents more context per task.",
            )
            analysis.recommended_max_attempts = min(math.ceil(average_retries) + 2, 8)
        skip_rate = total_skips / total_tasks
        if skip_rate > SKIP_RATE_THRESHOLD:
            analysis.suggestions.append(
                f"{skip_rate:.0%} of tasks were skipped; reduce dependencies between tasks.",
            )

    return analysis
