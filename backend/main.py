from fastapi import FastAPI, HTTPException, Depends, Query, UploadFile, File, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload
from typing import List, Optional
import logging
import sys

import config
from database import get_db, engine, Base, SessionLocal
import models
import schemas
from analytics import router as analytics_router
from auth.routes import router as auth_router
from auth.dependencies import get_current_user, get_current_admin
from auth.security import hash_password
from auth.permissions import (
    require_task_update_permission,
    require_task_delete_permission,
    require_comment_author,
    require_file_delete_permission,
    require_file_download_permission,
)
from rate_limit import FixedWindowRateLimiter, RateLimitMiddleware
from storage import LocalFileStorage, FileTooLargeError
from task_query import search_tasks, with_task_refs

# Configure logging
logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Task Manager API",
    description="Task tracking with assignments, comments, file attachments and analytics",
    version="1.0.0",
    docs_url="/api-docs",
)

# Per-client admission control; replaced wholesale by tests
app.state.rate_limiter = FixedWindowRateLimiter(
    max_requests=config.RATE_LIMIT_MAX_REQUESTS,
    window_seconds=config.RATE_LIMIT_WINDOW_MINUTES * 60,
)
app.add_middleware(RateLimitMiddleware)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "no-referrer")
    return response


# CORS: only the configured frontend origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=[config.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(auth_router)
app.include_router(analytics_router)


# ============== Error Handling ==============

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Report only the first validation error, as a 400."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(
        str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path", "header")
    )
    message = first.get("msg", "Invalid request")
    detail = f"{field}: {message}" if field else message
    logger.info(f"Validation failed on {request.method} {request.url.path}: {detail}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": detail, "field": field or None},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Something went wrong!"},
    )


# ============== File Upload Configuration ==============

ALLOWED_MIME_TYPES = {
    "image/jpeg",
    "image/png",
    "image/gif",
    "application/pdf",
    "text/plain",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}

storage = LocalFileStorage(config.UPLOAD_DIR, config.MAX_FILE_SIZE)


# ============== Startup ==============

@app.on_event("startup")
def on_startup():
    if config.AUTO_CREATE_TABLES:
        Base.metadata.create_all(bind=engine)

    try:
        storage.ensure_root()
    except OSError as e:
        logger.warning(f"Could not create upload directory: {e}. File uploads will not work.")

    if config.SEED_ADMIN:
        ensure_admin_user()


def ensure_admin_user():
    """
    Ensure the admin account exists.

    Uses ADMIN_PASSWORD if set, otherwise 'admin123' for local development.
    The default password is refused in production-like environments.
    """
    db = SessionLocal()
    try:
        admin = db.query(models.User).filter(models.User.email == config.ADMIN_EMAIL).first()
        if admin:
            logger.info(f"Admin user already exists (email: {config.ADMIN_EMAIL})")
            return

        admin_password = config.ADMIN_PASSWORD
        is_default_password = admin_password.strip() == "admin123"

        if config.is_production_like() and (is_default_password or len(admin_password.strip()) < 8):
            logger.error(
                "❌ STARTUP FAILED: a secure ADMIN_PASSWORD (at least 8 characters, not the default) "
                "is required in production/staging. Example: ADMIN_PASSWORD=$(openssl rand -base64 32)"
            )
            sys.exit(1)

        admin = models.User(
            username="admin",
            email=config.ADMIN_EMAIL,
            password_hash=hash_password(admin_password),
            first_name="Admin",
            last_name="User",
            role=models.UserRole.admin,
            is_active=True,
        )
        db.add(admin)
        db.commit()

        if is_default_password:
            logger.warning(
                f"⚠️  SECURITY WARNING: Admin user created with DEFAULT password 'admin123' "
                f"({config.ADMIN_EMAIL}). Set ADMIN_PASSWORD for anything but local development."
            )
        else:
            logger.info(f"✅ Admin user created: {config.ADMIN_EMAIL}")

    except SQLAlchemyError as e:
        logger.error(f"Failed to ensure admin user exists: {e}")
        db.rollback()
        # Don't fail startup - let the app run even if admin creation fails
    finally:
        db.close()


# Health check
@app.get("/health")
def health_check():
    return {"status": "healthy"}


# ============== Lookup Helpers ==============

def get_active_task_or_404(db: Session, task_id: int, with_refs: bool = False) -> models.Task:
    """Load a task that has not been soft-deleted, or raise 404."""
    query = db.query(models.Task)
    if with_refs:
        query = with_task_refs(query)
    task = query.filter(models.Task.id == task_id, models.Task.active()).first()
    if not task:
        logger.info(f"Task {task_id} not found")
        raise HTTPException(status_code=404, detail="Task not found")
    return task


def get_active_comment_or_404(db: Session, comment_id: int) -> models.Comment:
    """Load a comment whose own row and parent task are both active, or raise 404."""
    comment = db.query(models.Comment)\
        .options(joinedload(models.Comment.author))\
        .join(models.Task, models.Comment.task_id == models.Task.id)\
        .filter(models.Comment.id == comment_id, models.Comment.active(), models.Task.active())\
        .first()
    if not comment:
        logger.info(f"Comment {comment_id} not found")
        raise HTTPException(status_code=404, detail="Comment not found")
    return comment


def get_active_file_or_404(db: Session, file_id: int) -> models.FileAttachment:
    """Load a file attachment whose own row and parent task are both active, or raise 404."""
    file = db.query(models.FileAttachment)\
        .options(joinedload(models.FileAttachment.task), joinedload(models.FileAttachment.uploaded_by))\
        .join(models.Task, models.FileAttachment.task_id == models.Task.id)\
        .filter(models.FileAttachment.id == file_id, models.FileAttachment.active(), models.Task.active())\
        .first()
    if not file:
        logger.info(f"File {file_id} not found")
        raise HTTPException(status_code=404, detail="File not found")
    return file


def validate_assignee(db: Session, user_id: Optional[int]) -> None:
    """An assignee must be an existing, active user."""
    if user_id is None:
        return
    assignee = db.query(models.User).filter(
        models.User.id == user_id,
        models.User.is_active == True
    ).first()
    if not assignee:
        logger.info(f"Assignee {user_id} not found or inactive")
        raise HTTPException(status_code=404, detail=f"Assigned user with ID {user_id} not found")


def build_task(task: schemas.TaskCreate, creator: models.User) -> models.Task:
    # SECURITY: Always use the authenticated user as creator, never request data
    task_data = task.model_dump(exclude={"assigned_to"})
    return models.Task(
        **task_data,
        assigned_to_id=task.assigned_to,
        created_by_id=creator.id,
    )


# ============== Users ==============

@app.get("/api/users", response_model=List[schemas.UserListItem])
def list_users(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List active users (for the assignment picker)."""
    logger.debug(f"User {current_user.id} listing users")
    return db.query(models.User)\
        .filter(models.User.is_active == True)\
        .order_by(models.User.username)\
        .all()


@app.put("/api/users/{user_id}/status", response_model=schemas.UserResponse)
def set_user_status(
    user_id: int,
    status_update: schemas.UserStatusUpdate,
    current_user: models.User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    """Activate or deactivate a user account (admin only). Users are never hard-deleted."""
    logger.info(f"Admin {current_user.id} setting is_active={status_update.is_active} for user {user_id}")

    if user_id == current_user.id and not status_update.is_active:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot deactivate your own account. Ask another admin."
        )

    user = db.query(models.User).filter(models.User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    user.is_active = status_update.is_active
    db.commit()
    db.refresh(user)
    return user


# ============== Tasks ==============

@app.get("/api/tasks", response_model=schemas.TaskListResponse)
def list_tasks(
    task_status: Optional[models.TaskStatus] = Query(None, alias="status"),
    priority: Optional[models.TaskPriority] = Query(None),
    assigned_to: Optional[int] = Query(None, alias="assignedTo", gt=0),
    search: Optional[str] = Query(None, max_length=200, description="Case-insensitive match on title, description or tags"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=schemas.MAX_PAGE_SIZE),
    sort_by: schemas.SortField = Query("createdAt", alias="sortBy"),
    sort_order: schemas.SortOrder = Query("desc", alias="sortOrder"),
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List non-deleted tasks with filtering, search, sorting and pagination."""
    params = schemas.TaskQueryParams(
        status=task_status,
        priority=priority,
        assigned_to=assigned_to,
        search=search,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    result = search_tasks(db, params)
    logger.debug(f"User {current_user.id} listed {len(result.items)} of {result.total} tasks")
    return {"tasks": result.items, "pagination": result.pagination()}


@app.post("/api/tasks", response_model=schemas.TaskResponse, status_code=status.HTTP_201_CREATED)
def create_task(
    task: schemas.TaskCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Create a new task owned by the current user."""
    logger.info(f"User {current_user.id} creating task: {task.title}")

    validate_assignee(db, task.assigned_to)

    db_task = build_task(task, current_user)
    db.add(db_task)
    db.commit()

    logger.info(f"Task created successfully: id={db_task.id}")
    return get_active_task_or_404(db, db_task.id, with_refs=True)


@app.post("/api/tasks/bulk", response_model=List[schemas.TaskResponse], status_code=status.HTTP_201_CREATED)
def bulk_create_tasks(
    bulk_create: schemas.BulkTaskCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Create multiple tasks, all or nothing.

    The request body is validated as a whole before this runs, so one invalid
    task rejects the batch. Assignees are then checked for every task, and only
    when all pass are the tasks inserted and committed in a single transaction.
    """
    logger.info(f"User {current_user.id} bulk creating {len(bulk_create.tasks)} tasks")

    # Phase 1: Pre-validate ALL assignees
    assignee_ids = {task.assigned_to for task in bulk_create.tasks if task.assigned_to is not None}
    if assignee_ids:
        existing_ids = {
            row[0] for row in db.query(models.User.id)
            .filter(models.User.id.in_(assignee_ids), models.User.is_active == True)
            .all()
        }
        missing = sorted(assignee_ids - existing_ids)
        if missing:
            logger.info(f"Bulk create rejected: assignees not found: {missing}")
            raise HTTPException(
                status_code=404,
                detail=f"Assigned user(s) not found: {', '.join(str(user_id) for user_id in missing)}"
            )

    # Phase 2: Create all tasks in one transaction
    try:
        db_tasks = [build_task(task, current_user) for task in bulk_create.tasks]
        db.add_all(db_tasks)
        db.flush()
        created_ids = [db_task.id for db_task in db_tasks]
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Transaction failed during bulk create: {str(e)}")
        raise HTTPException(status_code=500, detail="Bulk create failed")

    logger.info(f"Successfully bulk created {len(created_ids)} tasks")
    return with_task_refs(db.query(models.Task))\
        .filter(models.Task.id.in_(created_ids))\
        .order_by(models.Task.id)\
        .all()


@app.get("/api/tasks/{task_id}", response_model=schemas.TaskResponse)
def get_task(
    task_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Get a task by ID."""
    logger.debug(f"User {current_user.id} requesting task {task_id}")
    return get_active_task_or_404(db, task_id, with_refs=True)


@app.put("/api/tasks/{task_id}", response_model=schemas.TaskResponse)
def update_task(
    task_id: int,
    task_update: schemas.TaskUpdate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Update a task (creator or admin; the assignee may change only the status)."""
    logger.info(f"User {current_user.id} updating task {task_id}")

    task = get_active_task_or_404(db, task_id)

    update_data = task_update.model_dump(exclude_unset=True)
    require_task_update_permission(current_user, task, update_data.keys())

    if "assigned_to" in update_data:
        assigned_to = update_data.pop("assigned_to")
        validate_assignee(db, assigned_to)
        task.assigned_to_id = assigned_to

    for key, value in update_data.items():
        setattr(task, key, value)

    db.commit()

    logger.info(f"Task {task_id} updated by user {current_user.id}")
    return get_active_task_or_404(db, task_id, with_refs=True)


@app.delete("/api/tasks/{task_id}", response_model=schemas.Message)
def delete_task(
    task_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Soft-delete a task (creator or admin)."""
    logger.debug(f"User {current_user.id} deleting task {task_id}")

    task = get_active_task_or_404(db, task_id)
    require_task_delete_permission(current_user, task)

    task.soft_delete()
    db.commit()

    logger.info(f"Task {task_id} deleted by user {current_user.id}")
    return {"message": "Task deleted successfully"}


# ============== Comments ==============

@app.get("/api/comments/{task_id}", response_model=List[schemas.CommentResponse])
def list_comments(
    task_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List comments on a task, oldest first."""
    logger.debug(f"User {current_user.id} listing comments for task {task_id}")

    get_active_task_or_404(db, task_id)

    return db.query(models.Comment)\
        .options(joinedload(models.Comment.author))\
        .filter(models.Comment.task_id == task_id, models.Comment.active())\
        .order_by(models.Comment.created_at.asc(), models.Comment.id.asc())\
        .all()


@app.post("/api/comments/{task_id}", response_model=schemas.CommentResponse, status_code=status.HTTP_201_CREATED)
def create_comment(
    task_id: int,
    comment: schemas.CommentCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Comment on a task. Any authenticated user may comment on a non-deleted task."""
    logger.debug(f"User {current_user.id} creating comment on task {task_id}")

    get_active_task_or_404(db, task_id)

    # SECURITY: Always use current_user.id, never trust author data from the request
    db_comment = models.Comment(
        content=comment.content,
        task_id=task_id,
        author_id=current_user.id
    )
    db.add(db_comment)
    db.commit()

    logger.info(f"Comment {db_comment.id} added to task {task_id} by user {current_user.id}")
    return get_active_comment_or_404(db, db_comment.id)


@app.put("/api/comments/{comment_id}", response_model=schemas.CommentResponse)
def update_comment(
    comment_id: int,
    comment_update: schemas.CommentUpdate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Edit a comment (author only)."""
    logger.debug(f"User {current_user.id} updating comment {comment_id}")

    comment = get_active_comment_or_404(db, comment_id)
    require_comment_author(current_user, comment)

    comment.content = comment_update.content
    db.commit()

    return get_active_comment_or_404(db, comment_id)


@app.delete("/api/comments/{comment_id}", response_model=schemas.Message)
def delete_comment(
    comment_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Soft-delete a comment (author only)."""
    logger.debug(f"User {current_user.id} deleting comment {comment_id}")

    comment = get_active_comment_or_404(db, comment_id)
    require_comment_author(current_user, comment)

    comment.soft_delete()
    db.commit()

    logger.info(f"Comment {comment_id} deleted by user {current_user.id}")
    return {"message": "Comment deleted successfully"}


# ============== File Attachments ==============

def check_upload_policy(file: UploadFile) -> Optional[str]:
    """Return why a file violates the upload policy, or None if it conforms."""
    if file.content_type not in ALLOWED_MIME_TYPES:
        return f"File type not allowed: {file.content_type}"
    size = getattr(file, "size", None)
    if size is not None and size > storage.max_file_size:
        return str(FileTooLargeError(storage.max_file_size))
    return None


@app.post("/api/files/{task_id}", response_model=schemas.FileUploadResult, status_code=status.HTTP_201_CREATED)
async def upload_files(
    task_id: int,
    files: List[UploadFile] = File(..., description="Up to 10 files"),
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Attach files to a task.

    Files that break the type or size policy are reported in `rejected`; the
    rest are stored. Responds 201 if at least one file was stored, 400 otherwise.
    """
    logger.debug(f"User {current_user.id} uploading {len(files)} file(s) to task {task_id}")

    if len(files) > config.MAX_FILES_PER_UPLOAD:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Too many files. Maximum per upload: {config.MAX_FILES_PER_UPLOAD}"
        )

    task = get_active_task_or_404(db, task_id)

    accepted: List[models.FileAttachment] = []
    rejected: List[schemas.RejectedFile] = []

    for upload in files:
        original_name = upload.filename or "unnamed"

        error = check_upload_policy(upload)
        if error is None:
            try:
                filename, filepath, file_size = await storage.save(task.id, upload)
            except FileTooLargeError as e:
                error = str(e)
            except OSError as e:
                db.rollback()
                for attachment in accepted:
                    storage.delete(attachment.path)
                logger.error(f"Failed to save file {original_name}: {e}")
                raise HTTPException(status_code=500, detail="Failed to save file")

        if error is not None:
            logger.info(f"Rejected upload {original_name} for task {task_id}: {error}")
            rejected.append(schemas.RejectedFile(filename=original_name, error=error))
            continue

        attachment = models.FileAttachment(
            filename=filename,
            original_name=original_name,
            mimetype=upload.content_type,
            size=file_size,
            path=filepath,
            task_id=task.id,
            uploaded_by_id=current_user.id  # SECURITY: Always use authenticated user
        )
        db.add(attachment)
        accepted.append(attachment)

    if not accepted:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "detail": "No files were accepted",
                "files": [],
                "rejected": [item.model_dump() for item in rejected],
            },
        )

    # Create attachment records with rollback and byte cleanup on failure
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        for attachment in accepted:
            storage.delete(attachment.path)
        logger.error(f"Failed to create attachment records: {e}")
        raise HTTPException(status_code=500, detail="Failed to save attachment")

    created_ids = [attachment.id for attachment in accepted]
    logger.info(f"Uploaded {len(created_ids)} file(s) to task {task_id}, rejected {len(rejected)}")

    stored = db.query(models.FileAttachment)\
        .options(joinedload(models.FileAttachment.uploaded_by))\
        .filter(models.FileAttachment.id.in_(created_ids))\
        .order_by(models.FileAttachment.id)\
        .all()
    return {"files": stored, "rejected": rejected}


@app.get("/api/files/task/{task_id}", response_model=List[schemas.FileAttachmentResponse])
def list_task_files(
    task_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List the files attached to a task, newest first."""
    logger.debug(f"User {current_user.id} listing files for task {task_id}")

    get_active_task_or_404(db, task_id)

    return db.query(models.FileAttachment)\
        .options(joinedload(models.FileAttachment.uploaded_by))\
        .filter(models.FileAttachment.task_id == task_id, models.FileAttachment.active())\
        .order_by(models.FileAttachment.created_at.desc(), models.FileAttachment.id.desc())\
        .all()


@app.get("/api/files/{file_id}")
def download_file(
    file_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Stream a file's bytes (uploader, task creator, task assignee or admin)."""
    file = get_active_file_or_404(db, file_id)
    require_file_download_permission(current_user, file, file.task)

    if not storage.exists(file.path):
        logger.error(f"File {file_id} has metadata but no bytes at {file.path}")
        raise HTTPException(status_code=404, detail="File not found on disk")

    logger.debug(f"User {current_user.id} downloading file {file_id}")
    return FileResponse(
        storage.resolve(file.path),
        media_type=file.mimetype,
        filename=file.original_name,
    )


@app.delete("/api/files/{file_id}", response_model=schemas.Message)
def delete_file(
    file_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Soft-delete a file (uploader, task creator or admin) and remove its bytes."""
    logger.debug(f"User {current_user.id} deleting file {file_id}")

    file = get_active_file_or_404(db, file_id)
    require_file_delete_permission(current_user, file, file.task)

    file.soft_delete()
    db.commit()

    # Byte removal is best-effort; the metadata deletion already succeeded
    storage.delete(file.path)

    logger.info(f"File {file_id} deleted by user {current_user.id}")
    return {"message": "File deleted successfully"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=config.HOST, port=config.PORT)
