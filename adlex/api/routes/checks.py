"""Check submission, status and cancellation endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from adlex.core.exceptions import CheckStateConflictError, NotFoundError, PipelineError, ValidationError
from adlex.dependencies import get_check_service
from adlex.schemas.checks import CancelCheckResponse, CheckCreateRequest, CheckResponse, QueueStatusResponse
from adlex.services.check_service import CheckService
from adlex.utils.logging import get_logger

LOGGER = get_logger(__name__)

router = APIRouter()

CheckServiceDep = Annotated[CheckService, Depends(get_check_service)]


@router.post(
    "/checks",
    response_model=CheckResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["Checks"],
    summary="Submit a check",
    description="Create a pending check and queue it for processing",
    operation_id="create_check",
)
async def create_check(request: CheckCreateRequest, service: CheckServiceDep) -> CheckResponse:
    try:
        check = await service.create_check(
            organization_id=request.organization_id,
            input_type=request.input_type,
            text=request.text,
            image_url=request.image_url,
            user_id=request.user_id,
        )
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.message)
    except PipelineError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)
    return CheckResponse.from_check(check, include_violations=False)


@router.get(
    "/checks/{check_id}",
    response_model=CheckResponse,
    tags=["Checks"],
    summary="Get a check",
    operation_id="get_check",
)
async def get_check(check_id: UUID, service: CheckServiceDep) -> CheckResponse:
    try:
        check = await service.get_check(check_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    return CheckResponse.from_check(check)


@router.post(
    "/checks/{check_id}/cancel",
    response_model=CancelCheckResponse,
    tags=["Checks"],
    summary="Cancel a pending or processing check",
    operation_id="cancel_check",
)
async def cancel_check(check_id: UUID, service: CheckServiceDep) -> CancelCheckResponse:
    try:
        result = await service.cancel_check(check_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except CheckStateConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
    return CancelCheckResponse(check_id=check_id, status=result)


@router.get(
    "/queue-status",
    response_model=QueueStatusResponse,
    tags=["Checks"],
    summary="Queue and quota status",
    operation_id="get_queue_status",
)
async def get_queue_status(
    service: CheckServiceDep,
    organization_id: UUID = Query(..., description="Organization to report quota for"),
) -> QueueStatusResponse:
    return await service.get_queue_status(organization_id)
