# This project was developed with assistance from AI tools.
"""Authentication schemas."""

from pydantic import BaseModel, ConfigDict


class UserContext(BaseModel):
    """Injected by auth middleware into every authenticated request."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    email: str


class TokenPayload(BaseModel):
    """Decoded JWT token claims from Supabase Auth."""

    sub: str
    email: str | None = ""
    role: str = ""
    aud: str | list[str] = ""
    session_id: str | None = None
