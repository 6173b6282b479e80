"""
Read path for task listings: filter, free-text search, sort and paginate.

The engine always excludes soft-deleted tasks and resolves the creator and
assignee references in the same query, so callers get rows ready to serialize.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import List

from fastapi import HTTPException, status
from sqlalchemy import asc, case, desc, exists, func, or_
from sqlalchemy.orm import Query, Session, joinedload

import models
import schemas

logger = logging.getLogger(__name__)

PRIORITY_ORDER = [
    models.TaskPriority.low,
    models.TaskPriority.medium,
    models.TaskPriority.high,
    models.TaskPriority.urgent,
]
STATUS_ORDER = [
    models.TaskStatus.todo,
    models.TaskStatus.in_progress,
    models.TaskStatus.review,
    models.TaskStatus.done,
]


@dataclass
class TaskPage:
    items: List[models.Task] = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 10

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def pagination(self) -> dict:
        return {"page": self.page, "limit": self.limit, "total": self.total, "pages": self.pages}


def _rank(column, ordered_values):
    """Map an enum column to its position in ordered_values for sorting."""
    return case(
        *[(column == value, index) for index, value in enumerate(ordered_values)],
        else_=len(ordered_values),
    )


SORT_COLUMNS = {
    "createdAt": lambda: models.Task.created_at,
    "dueDate": lambda: models.Task.due_date,
    "priority": lambda: _rank(models.Task.priority, PRIORITY_ORDER),
    "status": lambda: _rank(models.Task.status, STATUS_ORDER),
}


def escape_like(term: str) -> str:
    """Escape LIKE wildcards so a search term matches literally."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def with_task_refs(query: Query) -> Query:
    """Resolve creator and assignee in the same round trip."""
    return query.options(
        joinedload(models.Task.created_by),
        joinedload(models.Task.assigned_to),
    )


def tag_match_criterion(pattern: str, dialect_name: str):
    """
    EXISTS over the task's tags, true when any single tag matches pattern.

    Tags are stored as a JSON array, so the elements are unnested with the
    backend's JSON table function rather than matched against the raw text.
    """
    if dialect_name == "postgresql":
        elements = func.json_array_elements_text(models.Task.tags).table_valued("value").render_derived()
    else:
        elements = func.json_each(models.Task.tags).table_valued("value")
    return exists().select_from(elements).where(elements.c.value.ilike(pattern, escape="\\"))


def text_search_criterion(term: str, dialect_name: str = "sqlite"):
    """Case-insensitive substring match on title OR description OR any single tag."""
    pattern = f"%{escape_like(term)}%"
    return or_(
        models.Task.title.ilike(pattern, escape="\\"),
        models.Task.description.ilike(pattern, escape="\\"),
        tag_match_criterion(pattern, dialect_name),
    )


def filter_tasks(db: Session, params: schemas.TaskQueryParams) -> Query:
    """
    Build the filtered (unsorted, unpaginated) task query.

    Raises:
        HTTPException: 400 if the search term is empty or whitespace only
    """
    query = db.query(models.Task).filter(models.Task.active())

    if params.status is not None:
        query = query.filter(models.Task.status == params.status)
    if params.priority is not None:
        query = query.filter(models.Task.priority == params.priority)
    if params.assigned_to is not None:
        query = query.filter(models.Task.assigned_to_id == params.assigned_to)

    if params.search is not None:
        term = params.search.strip()
        if not term:
            logger.info("Empty or whitespace-only search query provided")
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Search query cannot be empty or whitespace only",
            )
        query = query.filter(text_search_criterion(term, db.get_bind().dialect.name))

    return query


def search_tasks(db: Session, params: schemas.TaskQueryParams) -> TaskPage:
    """
    Run a task listing query.

    Args:
        db: Database session
        params: Validated filters, sort and page parameters

    Returns:
        TaskPage with the requested slice and the total number of matching rows.
        A page past the end yields an empty slice, not an error.
    """
    logger.debug(
        f"Task query: status={params.status}, priority={params.priority}, "
        f"assigned_to={params.assigned_to}, search={params.search!r}, "
        f"sort={params.sort_by} {params.sort_order}, page={params.page}, limit={params.limit}"
    )

    query = filter_tasks(db, params)
    total = query.order_by(None).count()

    direction = desc if params.sort_order == "desc" else asc
    sort_column = SORT_COLUMNS[params.sort_by]()
    # Task id breaks ties so that pages never overlap or skip rows
    query = query.order_by(direction(sort_column), direction(models.Task.id))

    offset = (params.page - 1) * params.limit
    items = with_task_refs(query).offset(offset).limit(params.limit).all()

    logger.debug(f"Task query matched {total} rows, returning {len(items)}")
    return TaskPage(items=items, total=total, page=params.page, limit=params.limit)
