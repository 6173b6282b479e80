from pydantic import BaseModel, ConfigDict, EmailStr, Field, computed_field, field_validator
from pydantic.alias_generators import to_camel
from datetime import datetime
from typing import Optional, List, Literal

from models import TaskStatus, TaskPriority, UserRole
from time_utils import to_utc, is_overdue


SortField = Literal["createdAt", "dueDate", "priority", "status"]
SortOrder = Literal["asc", "desc"]
TrendPeriod = Literal["day", "week", "month"]
ExportFormat = Literal["json", "csv"]

MAX_PAGE_SIZE = 100
MAX_BULK_TASKS = 100


class ApiModel(BaseModel):
    """Base for every wire model: snake_case in Python, camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class Message(BaseModel):
    message: str


# User schemas
class UserSummary(ApiModel):
    """Display form of a user reference (assignee, creator, author, uploader)."""
    id: int
    username: str
    first_name: str
    last_name: str


class UserListItem(UserSummary):
    email: str


class UserResponse(ApiModel):
    id: int
    username: str
    email: str
    first_name: str
    last_name: str
    role: UserRole
    is_active: bool
    created_at: Optional[datetime] = None


class UserStatusUpdate(ApiModel):
    is_active: bool


# Auth schemas
class RegisterRequest(ApiModel):
    username: str = Field(..., min_length=3, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)


class LoginRequest(ApiModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class AuthResponse(ApiModel):
    user: UserResponse
    token: str


# Task schemas
class TaskCreate(ApiModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    status: TaskStatus = TaskStatus.todo
    priority: TaskPriority = TaskPriority.medium
    due_date: Optional[datetime] = None
    tags: List[str] = Field(default_factory=list)
    assigned_to: Optional[int] = Field(None, gt=0, description="ID of the assigned user")

    @field_validator("due_date")
    @classmethod
    def normalize_due_date(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_utc(value)


class TaskUpdate(ApiModel):
    """
    Partial task update.

    Only fields present in the request body are applied. description, dueDate
    and assignedTo may be cleared with an explicit null; the other fields may not.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    due_date: Optional[datetime] = None
    tags: Optional[List[str]] = None
    assigned_to: Optional[int] = Field(None, gt=0)

    @field_validator("title", "status", "priority", "tags")
    @classmethod
    def reject_null(cls, value, info):
        if value is None:
            raise ValueError(f"{to_camel(info.field_name)} cannot be null")
        return value

    @field_validator("due_date")
    @classmethod
    def normalize_due_date(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_utc(value)


class BulkTaskCreate(ApiModel):
    tasks: List[TaskCreate] = Field(..., min_length=1, max_length=MAX_BULK_TASKS)


class TaskResponse(ApiModel):
    id: int
    title: str
    description: Optional[str] = None
    status: TaskStatus
    priority: TaskPriority
    due_date: Optional[datetime] = None
    tags: List[str] = Field(default_factory=list)
    assigned_to: Optional[UserSummary] = None
    created_by: Optional[UserSummary] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @computed_field(alias="isOverdue")
    @property
    def is_overdue(self) -> bool:
        return is_overdue(self.due_date, self.status.value)


class TaskQueryParams(BaseModel):
    """Validated inputs of the task list query (see task_query.search_tasks)."""
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    assigned_to: Optional[int] = Field(None, gt=0)
    search: Optional[str] = None
    page: int = Field(1, ge=1)
    limit: int = Field(10, ge=1, le=MAX_PAGE_SIZE)
    sort_by: SortField = "createdAt"
    sort_order: SortOrder = "desc"


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class TaskListResponse(BaseModel):
    tasks: List[TaskResponse] = []
    pagination: Pagination


# Comment schemas
class CommentCreate(ApiModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    content: str = Field(..., min_length=1, max_length=1000)


class CommentUpdate(CommentCreate):
    pass


class CommentResponse(ApiModel):
    id: int
    content: str
    task_id: int
    author: Optional[UserSummary] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# File attachment schemas
class FileAttachmentResponse(ApiModel):
    id: int
    filename: str
    original_name: str
    mimetype: str
    size: int
    task_id: int
    uploaded_by: Optional[UserSummary] = None
    created_at: Optional[datetime] = None


class RejectedFile(BaseModel):
    filename: str
    error: str


class FileUploadResult(BaseModel):
    files: List[FileAttachmentResponse] = []
    rejected: List[RejectedFile] = []


# Analytics schemas
class OverviewStats(ApiModel):
    total_tasks: int
    completed_tasks: int
    pending_tasks: int
    in_progress_tasks: int
    overdue_tasks: int


class UserPerformance(ApiModel):
    user_id: int
    username: str
    total_tasks: int
    completed_tasks: int
    completion_rate: float
    average_completion_time: float  # days


class TrendPoint(BaseModel):
    date: str
    created: int
    completed: int


class ExportRow(ApiModel):
    """Flattened task row; identity references are rendered as display names."""
    id: int
    title: str
    description: Optional[str] = None
    status: TaskStatus
    priority: TaskPriority
    due_date: Optional[datetime] = None
    assigned_to: str = ""
    created_by: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


EXPORT_COLUMNS = [
    "id", "title", "description", "status", "priority",
    "dueDate", "assignedTo", "createdBy", "createdAt", "updatedAt",
]
