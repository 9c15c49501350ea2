from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from todo_api.api.deps import get_current_user_id
from todo_api.core.database import get_db
from todo_api.models.users import User
from todo_api.schemas.users import UserOut
from todo_api.services import user_service

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("", response_model=list[UserOut])
def list_users(
    db: Session = Depends(get_db),
    _: int = Depends(get_current_user_id),
) -> list[User]:
    return user_service.list_users(db)
