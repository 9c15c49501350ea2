from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from todo_api.core.errors import ConflictError
from todo_api.core.security import hash_password
from todo_api.models.users import User


def normalize_email(email: str) -> str:
    return email.strip().lower()


def find_by_email(db: Session, email: str) -> User | None:
    return db.execute(
        select(User).where(User.email == normalize_email(email))
    ).scalar_one_or_none()


def get_user(db: Session, user_id: int) -> User | None:
    return db.get(User, user_id)


def list_users(db: Session) -> list[User]:
    return list(db.execute(select(User).order_by(User.email)).scalars())


def register(db: Session, email: str, raw_password: str) -> User:
    email = normalize_email(email)
    if find_by_email(db, email):
        raise ConflictError("Email already registered")

    user = User(email=email, password_hash=hash_password(raw_password))
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # Lost a race with a concurrent registration for the same address.
        db.rollback()
        raise ConflictError("Email already registered")
    db.refresh(user)
    return user
