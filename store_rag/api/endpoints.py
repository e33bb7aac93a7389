"""
API endpoints for triggering jobs, searching and reading status.

Callers are trusted: authorization happens before requests reach this
service.
"""

from typing import Optional

from fastapi import APIRouter, Body, Depends, status

from store_rag.api.dependencies import get_service
from store_rag.api.models import (
    CleanupRequest,
    JobStatusResponse,
    JobSubmittedResponse,
    LockStatusResponse,
    SearchRequest,
    SearchResponseModel,
    SyncStatusResponse,
)
from store_rag.service import KnowledgeService
from store_rag.utils.logger import get_logger
from store_rag.vector.hybrid_search import SearchContext, SearchFilters, SearchOptions

logger = get_logger(__name__)

router = APIRouter()


def _submitted(service: KnowledgeService, job_id: str) -> JobSubmittedResponse:
    job = service.get_job(job_id)
    return JobSubmittedResponse(
        job_id=job.job_id,
        store_id=job.store_id,
        job_type=job.job_type.value,
        state=job.state.value,
    )


# Job Endpoints

@router.post("/stores/{store_id}/index",
             response_model=JobSubmittedResponse,
             status_code=status.HTTP_202_ACCEPTED,
             summary="Index a store's knowledge")
async def index_store(store_id: str,
                      incremental: bool = False,
                      service: KnowledgeService = Depends(get_service)):
    job_id = service.submit_index_job(store_id, incremental=incremental)
    logger.info("Index job requested", store_id=store_id, job_id=job_id, incremental=incremental)
    return _submitted(service, job_id)


@router.post("/stores/{store_id}/cleanup",
             response_model=JobSubmittedResponse,
             status_code=status.HTTP_202_ACCEPTED,
             summary="Clear and rebuild a store's namespaces")
async def cleanup_store(store_id: str,
                        request: Optional[CleanupRequest] = Body(None),
                        service: KnowledgeService = Depends(get_service)):
    data_types = request.data_types if request else None
    job_id = service.submit_cleanup_job(store_id, data_types)
    logger.info("Cleanup job requested", store_id=store_id, job_id=job_id)
    return _submitted(service, job_id)


@router.delete("/stores/{store_id}/knowledge",
               response_model=JobSubmittedResponse,
               status_code=status.HTTP_202_ACCEPTED,
               summary="Delete all of a store's knowledge")
async def delete_store_knowledge(store_id: str,
                                 reason: str = "store_deletion",
                                 service: KnowledgeService = Depends(get_service)):
    job_id = service.submit_delete_job(store_id, reason)
    logger.info("Delete job requested", store_id=store_id, job_id=job_id, reason=reason)
    return _submitted(service, job_id)


@router.get("/jobs/{job_id}", response_model=JobStatusResponse, summary="Job state and history")
async def get_job(job_id: str, service: KnowledgeService = Depends(get_service)):
    return service.get_job(job_id).to_dict()


# Search Endpoints

@router.post("/search",
             response_model=SearchResponseModel,
             summary="Search a store's knowledge",
             description="Hybrid semantic and keyword search over one store's namespaces.")
async def search(request: SearchRequest, service: KnowledgeService = Depends(get_service)):
    logger.info(
        "Processing search request",
        store_id=request.store_id,
        agent_type=request.agent_type,
        top_k=request.top_k
    )

    response = await service.search(
        request.query,
        SearchContext(store_id=request.store_id, agent_type=request.agent_type),
        SearchOptions(
            top_k=request.top_k,
            score_threshold=request.score_threshold,
            lock_mode=request.lock_mode,
            restrict_to_agent_namespaces=request.restrict_to_agent_namespaces,
        ),
        SearchFilters(data_types=request.data_types),
    )

    payload = response.to_dict()
    payload['total_results'] = len(response.results)
    return payload


# Status Endpoints

@router.get("/locks", response_model=LockStatusResponse, summary="Active deletion locks")
async def get_locks(service: KnowledgeService = Depends(get_service)):
    return service.get_lock_status()


@router.get("/stores/{store_id}/sync-status",
            response_model=SyncStatusResponse,
            summary="Synchronization status of a store")
async def get_sync_status(store_id: str, service: KnowledgeService = Depends(get_service)):
    report = await service.get_sync_status(store_id)
    return report.to_dict()
