"""
Todo creation, moves and bulk reordering.

Todos are ranked inside partitions keyed by ``(assignee or reporter, status)``.
Positions in a partition stay dense (``0..n-1``) across creates, moves and
deletes. Every allocation of a new position first locks the partition owner's
user row, so concurrent creates in the same partition cannot both read the
same ``MAX(position)``. Moves and deletes take the same locks before reading
the position they vacate.
"""

import logging
from collections.abc import Sequence
from typing import Protocol

from sqlalchemy import case, delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from todo_api.core.errors import InternalError, NotFoundError, ValidationError
from todo_api.models.todos import Todo
from todo_api.models.users import User
from todo_api.schemas.todos import TodoStatus
from todo_api.services import user_service

logger = logging.getLogger(__name__)

LARGE_REORDER_BATCH = 200

_partition_owner = func.coalesce(Todo.assignee_id, Todo.reporter_id)

_status_rank = case(
    (Todo.status == TodoStatus.todo.value, 1),
    (Todo.status == TodoStatus.in_progress.value, 2),
    (Todo.status == TodoStatus.done.value, 3),
    else_=4,
)


class ReorderEntry(Protocol):
    id: int
    status: str
    position: int


def normalize_title(title: str) -> str:
    trimmed = title.strip()
    if not trimmed:
        raise ValidationError("Title is required")
    if len(trimmed) > 200:
        raise ValidationError("Title must be at most 200 characters")
    return trimmed


def normalize_status(status: str) -> TodoStatus:
    try:
        return TodoStatus(status.strip().lower())
    except ValueError:
        raise ValidationError("Invalid status")


def _visible_to(user_id: int):
    return or_(Todo.reporter_id == user_id, Todo.assignee_id == user_id)


def _in_partition(owner_id: int, status: str):
    return (_partition_owner == owner_id) & (Todo.status == status)


def _lock_partition(db: Session, owner_id: int) -> None:
    db.execute(select(User.id).where(User.id == owner_id).with_for_update()).first()


def _next_position(
    db: Session, owner_id: int, status: str, exclude_id: int | None = None
) -> int:
    stmt = select(func.coalesce(func.max(Todo.position), -1) + 1).where(
        _in_partition(owner_id, status)
    )
    if exclude_id is not None:
        stmt = stmt.where(Todo.id != exclude_id)
    return db.execute(stmt).scalar_one()


def _close_gap(
    db: Session, owner_id: int, status: str, position: int, exclude_id: int
) -> None:
    db.execute(
        update(Todo)
        .where(
            _in_partition(owner_id, status),
            Todo.position > position,
            Todo.id != exclude_id,
        )
        .values(position=Todo.position - 1)
        .execution_options(synchronize_session=False)
    )


def _ensure_user_exists(db: Session, user_id: int) -> None:
    if user_service.get_user(db, user_id) is None:
        raise ValidationError("Assignee not found")


def _get_visible(db: Session, user_id: int, todo_id: int) -> Todo:
    todo = db.execute(
        select(Todo).where(Todo.id == todo_id, _visible_to(user_id))
    ).scalar_one_or_none()
    if todo is None:
        raise NotFoundError()
    return todo


def _lock_for_write(
    db: Session, requester_id: int, todo_id: int, extra_owner_id: int | None = None
) -> Todo:
    """
    Lock the partition owners of a todo, then re-read the row under lock.

    Position and partition must be read after the owner locks are held; a
    move or delete committed in between would otherwise leave them stale.
    """
    todo = _get_visible(db, requester_id, todo_id)
    locked: set[int] = set()
    while True:
        pending = {todo.owner_id} - locked
        if extra_owner_id is not None and extra_owner_id not in locked:
            pending.add(extra_owner_id)
        if not pending:
            return todo
        for owner_id in sorted(pending):
            _lock_partition(db, owner_id)
        locked |= pending
        todo = db.execute(
            select(Todo)
            .where(Todo.id == todo_id, _visible_to(requester_id))
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if todo is None:
            raise NotFoundError()


def _commit(db: Session, action: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Todo %s failed; rolled back", action)
        raise InternalError()
    # Bulk UPDATEs bypass the identity map; drop whatever it still holds.
    db.expire_all()


def list_todos(db: Session, user_id: int) -> list[Todo]:
    stmt = (
        select(Todo)
        .where(_visible_to(user_id))
        .order_by(_status_rank, Todo.position.asc(), Todo.updated_at.desc())
    )
    return list(db.execute(stmt).scalars())


def get_todo(db: Session, user_id: int, todo_id: int) -> Todo:
    return _get_visible(db, user_id, todo_id)


def partition_positions(db: Session, owner_id: int, status: str) -> list[int]:
    return list(
        db.execute(
            select(Todo.position)
            .where(_in_partition(owner_id, status))
            .order_by(Todo.position)
        ).scalars()
    )


def create_todo(
    db: Session,
    reporter_id: int,
    title: str,
    *,
    assignee_id: int | None = None,
    status: str = TodoStatus.todo,
) -> Todo:
    title = normalize_title(title)
    todo_status = normalize_status(status)
    if assignee_id is not None:
        _ensure_user_exists(db, assignee_id)
    owner_id = assignee_id if assignee_id is not None else reporter_id

    try:
        _lock_partition(db, owner_id)
        todo = Todo(
            reporter_id=reporter_id,
            assignee_id=owner_id,
            title=title,
            status=todo_status.value,
            position=_next_position(db, owner_id, todo_status.value),
            completed=todo_status is TodoStatus.done,
        )
        db.add(todo)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to allocate position for user %s", owner_id)
        raise InternalError()
    _commit(db, "create")
    db.refresh(todo)
    return todo


def update_todo(
    db: Session,
    todo_id: int,
    requester_id: int,
    *,
    title: str | None = None,
    completed: bool | None = None,
    status: str | None = None,
    position: int | None = None,
    assignee_id: int | None = None,
) -> Todo:
    if (
        title is None
        and completed is None
        and status is None
        and position is None
        and assignee_id is None
    ):
        raise ValidationError("Nothing to update")

    new_title = normalize_title(title) if title is not None else None
    new_status = normalize_status(status) if status is not None else None
    if new_status is not None and completed is not None:
        if completed != (new_status is TodoStatus.done):
            raise ValidationError("completed does not match status")
    elif completed is not None:
        new_status = TodoStatus.done if completed else TodoStatus.todo
    if position is not None and position < 0:
        raise ValidationError("Position must be non-negative")
    if assignee_id is not None:
        _ensure_user_exists(db, assignee_id)

    try:
        todo = _lock_for_write(db, requester_id, todo_id, extra_owner_id=assignee_id)
        old_owner, old_status, old_position = todo.owner_id, todo.status, todo.position
        target_owner = assignee_id if assignee_id is not None else old_owner
        target_status = new_status.value if new_status is not None else old_status
        moved = (target_owner, target_status) != (old_owner, old_status)

        if position is not None:
            todo.position = position
        elif moved:
            _close_gap(db, old_owner, old_status, old_position, exclude_id=todo.id)
            todo.position = _next_position(
                db, target_owner, target_status, exclude_id=todo.id
            )
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to move todo %s", todo_id)
        raise InternalError()

    if new_title is not None:
        todo.title = new_title
    if assignee_id is not None:
        todo.assignee_id = assignee_id
    todo.status = target_status
    todo.completed = target_status == TodoStatus.done.value

    _commit(db, "update")
    db.refresh(todo)
    return todo


def reorder_todos(
    db: Session, requester_id: int, items: Sequence[ReorderEntry]
) -> None:
    """
    Apply a batch of ``(id, status, position)`` placements atomically.

    The caller submits the complete target ordering for every partition it
    touches; this only guarantees all-or-nothing application. Any item that
    does not resolve to a todo the requester reports or is assigned rolls back
    the whole batch.
    """
    if not items:
        raise ValidationError("items is required")
    placements = []
    for item in items:
        if item.position < 0:
            raise ValidationError("Position must be non-negative")
        placements.append((item.id, normalize_status(item.status), item.position))
    if len(placements) > LARGE_REORDER_BATCH:
        logger.warning(
            "Large reorder batch from user %s: %s items", requester_id, len(placements)
        )

    try:
        for todo_id, todo_status, position in placements:
            result = db.execute(
                update(Todo)
                .where(Todo.id == todo_id, _visible_to(requester_id))
                .values(
                    status=todo_status.value,
                    position=position,
                    completed=todo_status is TodoStatus.done,
                    updated_at=func.now(),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                db.rollback()
                raise NotFoundError()
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Reorder for user %s failed; rolled back", requester_id)
        raise InternalError()
    db.expire_all()


def delete_todo(db: Session, user_id: int, todo_id: int) -> None:
    try:
        todo = _lock_for_write(db, user_id, todo_id)
        owner_id, todo_status, position = todo.owner_id, todo.status, todo.position
        db.execute(
            delete(Todo)
            .where(Todo.id == todo_id)
            .execution_options(synchronize_session=False)
        )
        _close_gap(db, owner_id, todo_status, position, exclude_id=todo_id)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to delete todo %s", todo_id)
        raise InternalError()
    db.expunge(todo)
    _commit(db, "delete")
