# This project was developed with assistance from AI tools.
"""Liveness route."""

from fastapi import APIRouter

router = APIRouter()


@router.get("")
async def health() -> dict[str, str]:
    """Process liveness. Does not touch Salesforce or Supabase."""
    return {"status": "ok"}
