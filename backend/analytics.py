"""
Analytics endpoints: derived, read-only views over non-deleted tasks.

- overview: status counts plus overdue tasks
- performance: per-user assignment, completion rate and cycle time
- trends: tasks created/completed per day, week or month
- export: visible tasks as flat JSON rows or CSV
"""

import csv
import io
import logging
from collections import defaultdict
from typing import Dict, List

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy import func
from sqlalchemy.orm import Session

import models
import schemas
from auth.dependencies import get_current_user
from auth.permissions import visible_tasks_criterion
from database import get_db
from task_query import with_task_refs
from time_utils import utc_now, days_between, trend_bucket

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/analytics", tags=["analytics"])


def status_counts(db: Session) -> Dict[models.TaskStatus, int]:
    rows = (
        db.query(models.Task.status, func.count(models.Task.id))
        .filter(models.Task.active())
        .group_by(models.Task.status)
        .all()
    )
    return {task_status: count for task_status, count in rows}


def compute_overview(db: Session) -> dict:
    counts = status_counts(db)

    overdue_tasks = db.query(models.Task).filter(
        models.Task.active(),
        models.Task.due_date < utc_now(),
        models.Task.status != models.TaskStatus.done,
    ).count()

    return {
        "total_tasks": sum(counts.values()),
        "completed_tasks": counts.get(models.TaskStatus.done, 0),
        "pending_tasks": counts.get(models.TaskStatus.todo, 0),
        "in_progress_tasks": counts.get(models.TaskStatus.in_progress, 0),
        "overdue_tasks": overdue_tasks,
    }


def compute_performance(db: Session) -> List[dict]:
    """
    Per-user completion metrics, one row for every user (including idle ones).

    completionRate is done/assigned * 100 and averageCompletionTime is the mean
    (updated_at - created_at) of the user's done tasks in days; both are 0 when
    there is nothing to divide by.
    """
    assigned = dict(
        db.query(models.Task.assigned_to_id, func.count(models.Task.id))
        .filter(models.Task.active(), models.Task.assigned_to_id.isnot(None))
        .group_by(models.Task.assigned_to_id)
        .all()
    )

    completed: Dict[int, int] = defaultdict(int)
    cycle_times: Dict[int, List[float]] = defaultdict(list)
    done_rows = (
        db.query(models.Task.assigned_to_id, models.Task.created_at, models.Task.updated_at)
        .filter(
            models.Task.active(),
            models.Task.assigned_to_id.isnot(None),
            models.Task.status == models.TaskStatus.done,
        )
        .all()
    )
    for user_id, created_at, updated_at in done_rows:
        completed[user_id] += 1
        if created_at is not None and updated_at is not None:
            cycle_times[user_id].append(days_between(created_at, updated_at))

    result = []
    for user in db.query(models.User).order_by(models.User.id).all():
        total = assigned.get(user.id, 0)
        done = completed.get(user.id, 0)
        durations = cycle_times.get(user.id, [])
        result.append({
            "user_id": user.id,
            "username": user.username,
            "total_tasks": total,
            "completed_tasks": done,
            "completion_rate": round(done / total * 100, 1) if total > 0 else 0.0,
            "average_completion_time": round(sum(durations) / len(durations), 2) if durations else 0.0,
        })
    return result


def compute_trends(db: Session, period: str) -> List[dict]:
    rows = (
        db.query(models.Task.created_at, models.Task.status)
        .filter(models.Task.active(), models.Task.created_at.isnot(None))
        .all()
    )

    buckets: Dict[str, Dict[str, int]] = defaultdict(lambda: {"created": 0, "completed": 0})
    for created_at, task_status in rows:
        bucket = buckets[trend_bucket(created_at, period)]
        bucket["created"] += 1
        if task_status == models.TaskStatus.done:
            bucket["completed"] += 1

    return [{"date": key, **buckets[key]} for key in sorted(buckets)]


def export_rows(db: Session, user: models.User) -> List[schemas.ExportRow]:
    tasks = (
        with_task_refs(db.query(models.Task))
        .filter(models.Task.active(), visible_tasks_criterion(user))
        .order_by(models.Task.created_at.desc(), models.Task.id.desc())
        .all()
    )
    return [
        schemas.ExportRow(
            id=task.id,
            title=task.title,
            description=task.description,
            status=task.status,
            priority=task.priority,
            due_date=task.due_date,
            assigned_to=task.assigned_to.display_name if task.assigned_to else "",
            created_by=task.created_by.display_name if task.created_by else "",
            created_at=task.created_at,
            updated_at=task.updated_at,
        )
        for task in tasks
    ]


def render_csv(rows: List[schemas.ExportRow]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=schemas.EXPORT_COLUMNS, lineterminator="\n")
    writer.writeheader()
    for row in rows:
        record = row.model_dump(mode="json", by_alias=True)
        writer.writerow({column: "" if record[column] is None else record[column] for column in schemas.EXPORT_COLUMNS})
    return buffer.getvalue()


@router.get("/overview", response_model=schemas.OverviewStats)
def get_overview(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Task counts by status plus overdue tasks."""
    logger.debug(f"User {current_user.id} requesting analytics overview")
    return compute_overview(db)


@router.get("/performance", response_model=List[schemas.UserPerformance])
def get_performance(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Per-user completion metrics."""
    logger.debug(f"User {current_user.id} requesting performance metrics")
    return compute_performance(db)


@router.get("/trends", response_model=List[schemas.TrendPoint])
def get_trends(
    period: schemas.TrendPeriod = Query("month", description="Bucket size: day, week or month"),
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Tasks created and completed per time bucket, oldest bucket first."""
    logger.debug(f"User {current_user.id} requesting trends by {period}")
    return compute_trends(db, period)


@router.get("/export")
def export_tasks(
    format: schemas.ExportFormat = Query("json", description="Output format: json or csv"),
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Export the tasks visible to the current user."""
    rows = export_rows(db, current_user)
    logger.info(f"User {current_user.id} exporting {len(rows)} tasks as {format}")

    if format == "csv":
        return Response(
            content=render_csv(rows),
            media_type="text/csv",
            headers={"Content-Disposition": 'attachment; filename="tasks.csv"'},
        )
    return [row.model_dump(mode="json", by_alias=True) for row in rows]
