"""Health check endpoint."""

from __future__ import annotations

from fastapi import APIRouter

from opencontext import __version__
from opencontext.api.schemas import CommonResponse, ok

router = APIRouter(tags=["health"])


@router.get("/health", response_model=CommonResponse[dict])
def health():
    return ok({"status": "UP", "version": __version__})
