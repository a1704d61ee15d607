# tests/test_task_analytics.py — Board analytics helpers
from datetime import timedelta

import pytest

import task_analytics
from models import Task, TaskPriority, TaskStatus, TaskType, utcnow


def _task(title, status=TaskStatus.BACKLOG, priority=TaskPriority.MEDIUM, column_id="c1", **extra):
    now = utcnow()
    fields = dict(
        id=title.lower().replace(" ", "-"),
        project_id="p1",
        column_id=column_id,
        title=title,
        type=TaskType.CUSTOM,
        status=status,
        priority=priority,
        position=0,
        assignees=[],
        actual_tokens_used=0,
        created_at=now - timedelta(days=2),
        due_date=None,
        completed_at=None,
    )
    fields.update(extra)
    return Task(**fields)


@pytest.mark.parametrize("timeframe,days", [
    ("7d", 7), ("2w", 14), ("3m", 90), ("1y", 365), ("", 30), (None, 30), ("soon", 30),
])
def test_timeframe_days(timeframe, days):
    assert task_analytics.timeframe_days(timeframe) == days


def test_progress_counts_by_status():
    tasks = [
        _task("A", TaskStatus.DONE),
        _task("B", TaskStatus.IN_PROGRESS),
        _task("C", TaskStatus.BLOCKED),
        _task("D"),
    ]
    result = task_analytics.ANALYSES["progress"](tasks, None)
    assert result["completionRate"] == 25.0
    assert result["inProgressTasks"] == 1
    assert result["blockedTasks"] == 1
    assert result["backlogTasks"] == 1


def test_completion_time_uses_completed_at():
    done = _task("Done", TaskStatus.DONE, completed_at=utcnow() - timedelta(days=1))
    still_open = _task("Open")
    result = task_analytics.analyze_completion_time([done, still_open])
    assert result["totalCompletedTasks"] == 1
    assert result["avgCompletionTime"] == pytest.approx(86400, rel=0.01)


def test_bottlenecks_flag_crowded_columns_and_overdue_tasks():
    crowded = [_task(f"T{i}", column_id="busy") for i in range(11)]
    late = _task("Late", due_date=utcnow() - timedelta(days=1))
    result = task_analytics.analyze_bottlenecks(crowded + [late])
    assert [b["columnId"] for b in result["bottlenecks"]] == ["busy"]
    assert [t["title"] for t in result["overdueTasks"]] == ["Late"]


def test_urgent_share_triggers_prioritization_advice():
    tasks = [_task("U1", priority=TaskPriority.URGENT), _task("U2", priority=TaskPriority.URGENT), _task("N")]
    result = task_analytics.analyze_priority_distribution(tasks)
    assert result["distribution"] == {"urgent": 2, "medium": 1}
    assert any("urgent" in s for s in result["recommendedPrioritization"])


def test_task_stats_grouping():
    tasks = [_task("A", assignees=[{"userId": "u1"}]), _task("B")]
    stats = task_analytics.task_stats(tasks, "assignee")
    assert stats["total"] == 2
    assert set(stats["groups"]) == {"u1", "unassigned"}
    with pytest.raises(ValueError):
        task_analytics.task_stats(tasks, "moon_phase")


def test_project_stats_average_per_column():
    stats = task_analytics.project_stats([_task("A"), _task("B")], column_count=4)
    assert stats["averageTasksPerColumn"] == 0.5
    assert stats["tasksByStatus"] == {"backlog": 2}
