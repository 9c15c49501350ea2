from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class TodoStatus(StrEnum):
    todo = "todo"
    in_progress = "in_progress"
    done = "done"


class TodoCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    status: TodoStatus = TodoStatus.todo
    assignee_id: int | None = None


class TodoUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    completed: bool | None = None
    status: TodoStatus | None = None
    position: int | None = Field(default=None, ge=0)
    assignee_id: int | None = None


class ReorderItem(BaseModel):
    id: int
    status: TodoStatus
    position: int = Field(ge=0)


class ReorderIn(BaseModel):
    items: list[ReorderItem]


class TodoOut(BaseModel):
    id: int
    reporter_id: int
    assignee_id: int | None
    title: str
    completed: bool
    status: TodoStatus
    position: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(
        from_attributes=True,
    )
