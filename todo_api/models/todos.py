import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from todo_api.core.database import Base


class Todo(Base):
    __tablename__ = "todos"

    id: Mapped[int] = mapped_column(primary_key=True, init=False)
    reporter_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    title: Mapped[str] = mapped_column(String(200))
    status: Mapped[str] = mapped_column(String(20))
    position: Mapped[int]
    completed: Mapped[bool]
    assignee_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id"), default=None, index=True
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        insert_default=func.now(),
        server_default=func.now(),
        init=False,
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        insert_default=func.now(),
        server_default=func.now(),
        onupdate=func.now(),
        init=False,
    )

    __table_args__ = (
        Index("ix_todos_partition", "assignee_id", "status", "position"),
        CheckConstraint("position >= 0", name="ck_todos_position_non_negative"),
        CheckConstraint(
            "status IN ('todo', 'in_progress', 'done')", name="ck_todos_status"
        ),
    )

    @property
    def owner_id(self) -> int:
        return self.assignee_id if self.assignee_id is not None else self.reporter_id
