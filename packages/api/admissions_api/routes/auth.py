# This project was developed with assistance from AI tools.
"""Session-check route for the browser client."""

from fastapi import APIRouter

from ..middleware.auth import CurrentUser

router = APIRouter()


@router.get("/ping")
async def ping(user: CurrentUser) -> dict[str, bool]:
    """Validate the caller's session; 401 when it is missing or expired."""
    return {"ok": True}
