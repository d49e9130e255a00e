"""
Liveness endpoint.
"""

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

router = APIRouter()


@router.get(
    "/health",
    response_class=PlainTextResponse,
    summary="Service health check",
    description="Returns `ok` once the working copy has been cloned and the server is accepting requests.",
)
async def health_check() -> str:
    return "ok"
