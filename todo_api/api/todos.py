from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from todo_api.api.deps import get_current_user_id
from todo_api.core.database import get_db
from todo_api.models.todos import Todo
from todo_api.schemas.todos import ReorderIn, TodoCreate, TodoOut, TodoUpdate
from todo_api.services import todo_service

router = APIRouter(prefix="/api/todos", tags=["todos"])


@router.get("", response_model=list[TodoOut])
def list_todos(
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
) -> list[Todo]:
    return todo_service.list_todos(db, user_id)


@router.post("", response_model=TodoOut, status_code=status.HTTP_201_CREATED)
def create_todo(
    payload: TodoCreate,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
) -> Todo:
    return todo_service.create_todo(
        db,
        user_id,
        payload.title,
        assignee_id=payload.assignee_id,
        status=payload.status,
    )


@router.put("/reorder-items", status_code=status.HTTP_204_NO_CONTENT)
def reorder_todos(
    payload: ReorderIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
) -> Response:
    todo_service.reorder_todos(db, user_id, payload.items)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{todo_id}", response_model=TodoOut)
def get_todo(
    todo_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
) -> Todo:
    return todo_service.get_todo(db, user_id, todo_id)


@router.put("/{todo_id}", response_model=TodoOut)
def update_todo(
    todo_id: int,
    payload: TodoUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
) -> Todo:
    return todo_service.update_todo(
        db,
        todo_id,
        user_id,
        **payload.model_dump(exclude_none=True),
    )


@router.delete("/{todo_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_todo(
    todo_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
) -> Response:
    todo_service.delete_todo(db, user_id, todo_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
