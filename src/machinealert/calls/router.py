"""
API router for machine calls.
"""

from datetime import date
from typing import Annotated
from uuid import UUID
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from machinealert.auth.middleware import CurrentUser, get_current_user
from machinealert.calls.export import EXPORT_FILENAME, export_calls_csv
from machinealert.calls.lifecycle import CallLifecycleEngine
from machinealert.calls.models import CallStatus
from machinealert.calls.query import CallQueryService, PageRequest
from machinealert.calls.repository import CallFilters
from machinealert.calls.scheduler import ExpirationScheduler
from machinealert.calls.schemas import (
    CallCreateRequest,
    CallListResponse,
    CallResponse,
    MessageResponse,
    PaginationMeta,
    SweepErrorItem,
    SweepResponse,
)
from machinealert.config import Settings, get_settings
from machinealert.shared.database import get_session_factory
from machinealert.shared.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api/calls", tags=["calls"])


def get_lifecycle_engine(
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> CallLifecycleEngine:
    """Dependency for the lifecycle engine."""
    return CallLifecycleEngine(session_factory=session_factory, settings=settings)


def get_query_service(
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> CallQueryService:
    """Dependency for the query service."""
    return CallQueryService(session_factory=session_factory, settings=settings)


def get_expiration_scheduler(request: Request) -> ExpirationScheduler:
    """The scheduler created in the application lifespan."""
    return request.app.state.expiration_scheduler


def get_call_filters(
    machine_id: Annotated[UUID | None, Query(alias="machineId")] = None,
    factory_id: Annotated[UUID | None, Query(alias="factoryId")] = None,
    category_id: Annotated[UUID | None, Query(alias="categoryId")] = None,
    call_date: Annotated[date | None, Query(alias="date")] = None,
    call_status: Annotated[CallStatus | None, Query(alias="status")] = None,
) -> CallFilters:
    return CallFilters(
        machine_id=machine_id,
        status=call_status,
        call_date=call_date,
        factory_id=factory_id,
        category_id=category_id,
    )


@router.post(
    "",
    response_model=CallResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Raise a call against a machine",
)
async def create_call(
    request: CallCreateRequest,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    engine: Annotated[CallLifecycleEngine, Depends(get_lifecycle_engine)],
    query: Annotated[CallQueryService, Depends(get_query_service)],
) -> CallResponse:
    call = await engine.create_call(
        machine_id=request.machine_id,
        roles=current_user.roles,
        duration=request.duration,
        call_type=request.call_type,
    )
    return await query.present(call)


@router.get(
    "",
    response_model=CallListResponse,
    summary="List calls",
    description="Filtered, paginated calls, newest first, with remaining time in seconds.",
)
async def list_calls(
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    filters: Annotated[CallFilters, Depends(get_call_filters)],
    query: Annotated[CallQueryService, Depends(get_query_service)],
    settings: Annotated[Settings, Depends(get_settings)],
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int | None, Query(ge=1)] = None,
) -> CallListResponse:
    result = await query.list_calls(
        filters,
        PageRequest(page=page, page_size=limit or settings.default_page_size),
    )
    return CallListResponse(
        calls=result.items,
        pagination=PaginationMeta(
            page=result.page,
            page_size=result.page_size,
            total=result.total,
            total_pages=result.total_pages,
            has_next=result.has_next,
            has_prev=result.has_prev,
        ),
    )


@router.get(
    "/export",
    summary="Export calls as CSV",
    response_class=Response,
)
async def export_calls(
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    filters: Annotated[CallFilters, Depends(get_call_filters)],
    query: Annotated[CallQueryService, Depends(get_query_service)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> Response:
    views = await query.list_all(filters)
    content = export_calls_csv(views, ZoneInfo(settings.plant_timezone))
    logger.info(
        "Calls exported",
        extra={"user_id": current_user.id, "rows": len(views)},
    )
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={EXPORT_FILENAME}"},
    )


@router.post(
    "/check-expired",
    response_model=SweepResponse,
    response_model_exclude_none=True,
    summary="Run the expiration sweep now",
)
async def check_expired_calls(
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    scheduler: Annotated[ExpirationScheduler, Depends(get_expiration_scheduler)],
) -> SweepResponse:
    result = await scheduler.run_once(wait=True)
    updated = result.updated_count if result else 0
    errors = [SweepErrorItem(id=e.call_id, error=e.error) for e in result.errors] if result else []
    logger.info(
        "Forced expiration sweep",
        extra={"user_id": current_user.id, "updated": updated, "failed": len(errors)},
    )
    return SweepResponse(
        message=f"{updated} expired calls marked as {CallStatus.EXPIRADA.value}",
        updated_count=updated,
        errors=errors or None,
    )


@router.get(
    "/{call_id}",
    response_model=CallResponse,
    summary="Get call details",
)
async def get_call(
    call_id: UUID,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    query: Annotated[CallQueryService, Depends(get_query_service)],
) -> CallResponse:
    return await query.get_call(call_id)


@router.put(
    "/{call_id}/complete",
    response_model=CallResponse,
    summary="Mark a call as Realizada",
    responses={
        401: {"description": "Not authenticated"},
        403: {"description": "Only LOGISTICA may complete calls"},
        404: {"description": "Call not found"},
        409: {"description": "Call already Realizada or Expirada"},
    },
)
async def complete_call(
    call_id: UUID,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    engine: Annotated[CallLifecycleEngine, Depends(get_lifecycle_engine)],
    query: Annotated[CallQueryService, Depends(get_query_service)],
) -> CallResponse:
    call = await engine.complete_call(call_id, roles=current_user.roles)
    return await query.present(call)


@router.delete(
    "/{call_id}",
    response_model=MessageResponse,
    summary="Delete a call",
)
async def delete_call(
    call_id: UUID,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    engine: Annotated[CallLifecycleEngine, Depends(get_lifecycle_engine)],
) -> MessageResponse:
    await engine.delete_call(call_id, roles=current_user.roles)
    return MessageResponse(message="Call deleted successfully")
