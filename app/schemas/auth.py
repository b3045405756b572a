import re

from pydantic import BaseModel, EmailStr, Field, field_validator

PASSWORD_RULES = (
    (re.compile(r"[a-z]"), "a lowercase letter"),
    (re.compile(r"[A-Z]"), "an uppercase letter"),
    (re.compile(r"\d"), "a number"),
    (re.compile(r"[^A-Za-z0-9]"), "a symbol"),
)


class UserCreate(BaseModel):
    name: str = Field(min_length=4, max_length=20)
    email: EmailStr
    password: str = Field(min_length=8, max_length=72)

    @field_validator("password")
    @classmethod
    def password_is_strong(cls, value: str) -> str:
        missing = [label for pattern, label in PASSWORD_RULES if not pattern.search(value)]
        if missing:
            raise ValueError(
                "The password is too weak. It should be at least 8 characters long "
                "and contain " + ", ".join(missing)
            )
        return value


class UserLogin(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class UserResponse(BaseModel):
    id: int
    name: str
    email: str

    class Config:
        from_attributes = True


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class RefreshRequest(BaseModel):
    refresh_token: str
