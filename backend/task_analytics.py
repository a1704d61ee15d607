# task_analytics.py — Board analytics over a project's tasks
# Pure functions over Task rows; results are JSON-safe dicts so they can be
# returned straight to the model provider.

import re
from collections import Counter, defaultdict
from datetime import timedelta
from statistics import median
from typing import Any, Callable, Dict, Iterable, List, Optional

from models import Task, TaskPriority, TaskStatus, as_aware, utcnow

BOTTLENECK_THRESHOLD = 10
URGENT_SHARE_LIMIT = 0.3
DEFAULT_TIMEFRAME_DAYS = 30

_TIMEFRAME_UNITS = {"d": 1, "w": 7, "m": 30, "y": 365}


def _value(enum_or_str) -> Optional[str]:
    return getattr(enum_or_str, "value", enum_or_str)


def timeframe_days(timeframe: Optional[str]) -> int:
    """'7d' -> 7, '3m' -> 90, '1y' -> 365; anything else -> 30."""
    match = re.fullmatch(r"\s*(\d+)\s*([dwmy])\s*", (timeframe or "").lower())
    if not match:
        return DEFAULT_TIMEFRAME_DAYS
    return max(int(match.group(1)) * _TIMEFRAME_UNITS[match.group(2)], 1)


def task_summary(task: Task) -> Dict[str, Any]:
    return {
        "id": task.id,
        "title": task.title,
        "status": _value(task.status),
        "priority": _value(task.priority),
        "columnId": task.column_id,
    }


def group_by(items: Iterable[Any], key: Callable[[Any], Optional[str]]) -> Dict[str, List[Any]]:
    groups: Dict[str, List[Any]] = defaultdict(list)
    for item in items:
        groups[key(item) or "unknown"].append(item)
    return dict(groups)


def count_by(tasks: Iterable[Task], attr: str) -> Dict[str, int]:
    return dict(Counter(_value(getattr(t, attr)) or "unknown" for t in tasks))


def _is_overdue(task: Task, now) -> bool:
    return task.due_date is not None and as_aware(task.due_date) < now


def completion_rate(tasks: List[Task]) -> float:
    if not tasks:
        return 0.0
    done = sum(1 for t in tasks if t.status == TaskStatus.DONE)
    return done / len(tasks) * 100


def average_tokens(tasks: List[Task]) -> float:
    used = [t.actual_tokens_used for t in tasks if (t.actual_tokens_used or 0) > 0]
    return sum(used) / len(used) if used else 0.0


# ============================================================
# ANALYSES
# ============================================================

def analyze_progress(tasks: List[Task]) -> Dict[str, Any]:
    by_status = Counter(_value(t.status) for t in tasks)
    return {
        "completionRate": completion_rate(tasks),
        "completedTasks": by_status[TaskStatus.DONE.value],
        "totalTasks": len(tasks),
        "inProgressTasks": by_status[TaskStatus.IN_PROGRESS.value],
        "blockedTasks": by_status[TaskStatus.BLOCKED.value],
        "readyTasks": by_status[TaskStatus.READY.value],
        "backlogTasks": by_status[TaskStatus.BACKLOG.value],
    }


def analyze_workload(tasks: List[Task]) -> Dict[str, Any]:
    per_assignee: Counter = Counter()
    for task in tasks:
        for assignee in task.assignees or []:
            user_id = assignee.get("userId") if isinstance(assignee, dict) else assignee
            per_assignee[user_id or "unknown"] += 1
    return {
        "totalAssignees": len(per_assignee),
        "workloadDistribution": dict(per_assignee),
        "unassignedTasks": sum(1 for t in tasks if not t.assignees),
        "avgTasksPerAssignee": len(tasks) / max(len(per_assignee), 1),
    }


def analyze_bottlenecks(tasks: List[Task], threshold: int = BOTTLENECK_THRESHOLD) -> Dict[str, Any]:
    now = utcnow()
    bottlenecks = []
    for column_id, column_tasks in group_by(tasks, lambda t: t.column_id).items():
        if len(column_tasks) > threshold:
            oldest = min(as_aware(t.created_at) for t in column_tasks)
            bottlenecks.append({
                "columnId": column_id,
                "taskCount": len(column_tasks),
                "oldestTask": oldest.isoformat(),
            })
    return {
        "bottlenecks": bottlenecks,
        "blockedTasks": [task_summary(t) for t in tasks if t.status == TaskStatus.BLOCKED],
        "overdueTasks": [task_summary(t) for t in tasks if _is_overdue(t, now)],
    }


def analyze_completion_time(tasks: List[Task], timeframe: Optional[str] = None) -> Dict[str, Any]:
    completed = [t for t in tasks if t.status == TaskStatus.DONE and t.completed_at]
    if timeframe:
        since = utcnow() - timedelta(days=timeframe_days(timeframe))
        completed = [t for t in completed if as_aware(t.completed_at) >= since]
    durations = [
        (as_aware(t.completed_at) - as_aware(t.created_at)).total_seconds()
        for t in completed
    ]
    durations = [d for d in durations if d > 0]
    return {
        "unit": "seconds",
        "avgCompletionTime": sum(durations) / len(durations) if durations else 0,
        "medianCompletionTime": median(durations) if durations else 0,
        "minCompletionTime": min(durations) if durations else 0,
        "maxCompletionTime": max(durations) if durations else 0,
        "totalCompletedTasks": len(completed),
    }


def suggest_prioritization(tasks: List[Task]) -> List[str]:
    suggestions = []
    now = utcnow()
    urgent = sum(1 for t in tasks if t.priority == TaskPriority.URGENT)
    overdue = sum(1 for t in tasks if _is_overdue(t, now))
    if tasks and urgent > len(tasks) * URGENT_SHARE_LIMIT:
        suggestions.append(
            "Consider re-evaluating urgent priority assignments - over 30% of tasks are marked urgent"
        )
    if overdue > 0:
        suggestions.append(f"{overdue} tasks are overdue and should be prioritized")
    return suggestions


def analyze_priority_distribution(tasks: List[Task]) -> Dict[str, Any]:
    return {
        "distribution": count_by(tasks, "priority"),
        "urgentTasks": [task_summary(t) for t in tasks if t.priority == TaskPriority.URGENT],
        "highPriorityTasks": [task_summary(t) for t in tasks if t.priority == TaskPriority.HIGH],
        "recommendedPrioritization": suggest_prioritization(tasks),
    }


def calculate_trends(tasks: List[Task], timeframe: Optional[str] = None) -> Dict[str, Any]:
    days = timeframe_days(timeframe)
    since = utcnow() - timedelta(days=days)
    recent = [t for t in tasks if as_aware(t.created_at) >= since]
    return {
        "days": days,
        "tasksCreated": len(recent),
        "tasksCompleted": sum(1 for t in recent if t.status == TaskStatus.DONE),
        "avgTasksPerDay": len(recent) / days,
    }


ANALYSES = {
    "progress": lambda tasks, timeframe: analyze_progress(tasks),
    "workload": lambda tasks, timeframe: analyze_workload(tasks),
    "bottlenecks": lambda tasks, timeframe: analyze_bottlenecks(tasks),
    "completion_time": analyze_completion_time,
    "priority_distribution": lambda tasks, timeframe: analyze_priority_distribution(tasks),
}


# ============================================================
# AGGREGATES
# ============================================================

def project_stats(tasks: List[Task], column_count: int) -> Dict[str, Any]:
    return {
        "totalTasks": len(tasks),
        "tasksByStatus": count_by(tasks, "status"),
        "tasksByPriority": count_by(tasks, "priority"),
        "tasksByType": count_by(tasks, "type"),
        "totalColumns": column_count,
        "averageTasksPerColumn": len(tasks) / max(column_count, 1),
        "completionRate": completion_rate(tasks),
        "avgTokensPerTask": average_tokens(tasks),
    }


def project_analytics(tasks: List[Task], timeframe: Optional[str] = None) -> Dict[str, Any]:
    return {
        "overview": analyze_progress(tasks),
        "workload": analyze_workload(tasks),
        "bottlenecks": analyze_bottlenecks(tasks),
        "completion": analyze_completion_time(tasks, timeframe),
        "priorities": analyze_priority_distribution(tasks),
        "trends": calculate_trends(tasks, timeframe),
    }


TASK_STAT_GROUPINGS = ("status", "priority", "type", "assignee", "column")


def _assignee_key(task: Task) -> str:
    first = (task.assignees or [None])[0]
    if isinstance(first, dict):
        return first.get("userId") or "unassigned"
    return first or "unassigned"


def task_stats(tasks: List[Task], grouping: Optional[str] = None) -> Dict[str, Any]:
    stats: Dict[str, Any] = {
        "total": len(tasks),
        "byStatus": count_by(tasks, "status"),
        "byPriority": count_by(tasks, "priority"),
        "byType": count_by(tasks, "type"),
    }
    if not grouping:
        return stats
    if grouping not in TASK_STAT_GROUPINGS:
        raise ValueError(f"Unknown grouping: {grouping}")
    keys = {
        "status": lambda t: _value(t.status),
        "priority": lambda t: _value(t.priority),
        "type": lambda t: _value(t.type),
        "assignee": _assignee_key,
        "column": lambda t: t.column_id,
    }
    groups = group_by(tasks, keys[grouping])
    stats["groupedBy"] = grouping
    stats["groups"] = {k: [task_summary(t) for t in v] for k, v in groups.items()}
    return stats
