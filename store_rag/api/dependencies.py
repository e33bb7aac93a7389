"""
Dependency injection for the FastAPI application.
"""

from typing import Optional

from fastapi import HTTPException, Request, status

from store_rag.service import KnowledgeService
from store_rag.utils.logger import get_logger

logger = get_logger(__name__)


async def get_service_optional(request: Request) -> Optional[KnowledgeService]:
    """The knowledge service if startup built one, None otherwise."""
    service = getattr(request.app.state, "service", None)
    if service is None:
        logger.warning("Knowledge service not available")
    return service


async def get_service(request: Request) -> KnowledgeService:
    """
    Get the knowledge service (required).

    Raises:
        HTTPException: If the service failed to start
    """
    service = await get_service_optional(request)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Knowledge service is not available. Please try again later."
        )
    return service
