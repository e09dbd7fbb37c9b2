from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator


class LoginRequest(BaseModel):
    email: str | None = None
    username: str | None = None
    password: SecretStr

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("email", "username", mode="before")
    @classmethod
    def normalize_identifier(cls, value: str | None) -> str | None:
        if value is None:
            return None
        candidate = str(value).strip().lower()
        return candidate or None

    @field_validator("password", mode="before")
    @classmethod
    def password_non_empty(cls, value: SecretStr | str | None) -> SecretStr:
        raw = value.get_secret_value() if isinstance(value, SecretStr) else str(value or "")
        if not raw.strip():
            raise ValueError("password required")
        return SecretStr(raw)

    @model_validator(mode="after")
    def ensure_identifier_present(self) -> "LoginRequest":
        if not (self.email or self.username):
            raise ValueError("email required")
        return self

    def identifier(self) -> str:
        return self.email or self.username or ""


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = Field(default="bearer")
