from pydantic import BaseModel, EmailStr, SecretStr, field_validator

from todo_api.schemas.users import validate_password_strength


class PasswordForgotIn(BaseModel):
    email: EmailStr


class PasswordResetIn(BaseModel):
    token: SecretStr
    password: SecretStr

    @field_validator("password")
    @classmethod
    def check_password(cls, value: SecretStr) -> SecretStr:
        validate_password_strength(value.get_secret_value())
        return value


class MessageOut(BaseModel):
    message: str
