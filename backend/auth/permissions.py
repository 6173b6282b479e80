"""
Row-level permission checking utilities.

Each rule comes as a predicate (check_*/can_*) returning a bool and a require_*
wrapper that raises HTTPException(403) when the predicate fails. Handlers look
the row up first (404 for missing or soft-deleted rows) and only then ask for
permission, so 403 is reserved for rows that exist.
"""

import logging
from typing import Iterable

from fastapi import HTTPException, status
from sqlalchemy import or_, true

from models import User, UserRole, Task, Comment, FileAttachment

logger = logging.getLogger(__name__)

# Fields an assignee may change on a task they did not create
ASSIGNEE_EDITABLE_FIELDS = {"status"}


def is_admin(user: User) -> bool:
    return user.role == UserRole.admin


def _forbidden(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


def check_task_update_permission(user: User, task: Task, fields: Iterable[str]) -> bool:
    """
    Check if a user may apply an update touching the given fields.

    Permission sources (in order):
    1. Global admin role
    2. Task creator
    3. Task assignee, limited to ASSIGNEE_EDITABLE_FIELDS

    Args:
        user: User attempting the update
        task: Target task (already known to exist and not be deleted)
        fields: Names of the fields present in the update

    Returns:
        True if the update is allowed, False otherwise
    """
    if is_admin(user) or task.created_by_id == user.id:
        return True

    if task.assigned_to_id == user.id:
        touched = set(fields)
        allowed = touched <= ASSIGNEE_EDITABLE_FIELDS
        if not allowed:
            logger.info(
                f"Assignee {user.id} tried to change {sorted(touched - ASSIGNEE_EDITABLE_FIELDS)} "
                f"on task {task.id}"
            )
        return allowed

    return False


def require_task_update_permission(user: User, task: Task, fields: Iterable[str]) -> None:
    """
    Require permission to update a task, or raise 403.

    Example:
        >>> require_task_update_permission(user, task, update_data.keys())
    """
    if not check_task_update_permission(user, task, fields):
        logger.info(f"User {user.id} denied update on task {task.id}")
        raise _forbidden("Only the task creator or an admin can modify this task")


def require_task_delete_permission(user: User, task: Task) -> None:
    """Only the task creator or an admin may delete a task."""
    if is_admin(user) or task.created_by_id == user.id:
        return
    logger.info(f"User {user.id} denied delete on task {task.id}")
    raise _forbidden("Only the task creator or an admin can delete this task")


def require_comment_author(user: User, comment: Comment) -> None:
    """Comments can only be edited or deleted by their author."""
    if comment.author_id == user.id:
        return
    logger.info(f"User {user.id} is not the author of comment {comment.id}")
    raise _forbidden("Can only modify your own comments")


def can_delete_file(user: User, file: FileAttachment, task: Task) -> bool:
    """Uploader, creator of the parent task, or an admin."""
    return is_admin(user) or file.uploaded_by_id == user.id or task.created_by_id == user.id


def require_file_delete_permission(user: User, file: FileAttachment, task: Task) -> None:
    if not can_delete_file(user, file, task):
        logger.info(f"User {user.id} denied delete on file {file.id}")
        raise _forbidden("Only the uploader or the task creator can delete this file")


def can_download_file(user: User, file: FileAttachment, task: Task) -> bool:
    """Anyone who may delete the file, plus the parent task's assignee."""
    return can_delete_file(user, file, task) or task.assigned_to_id == user.id


def require_file_download_permission(user: User, file: FileAttachment, task: Task) -> None:
    if not can_download_file(user, file, task):
        logger.info(f"User {user.id} denied download of file {file.id}")
        raise _forbidden("Access denied")


def visible_tasks_criterion(user: User):
    """
    SQL criterion restricting tasks to those a user may export.

    Admins see every task; everyone else sees tasks they created or are assigned.

    Example:
        >>> db.query(Task).filter(Task.active(), visible_tasks_criterion(user))
    """
    if is_admin(user):
        return true()
    return or_(Task.created_by_id == user.id, Task.assigned_to_id == user.id)
