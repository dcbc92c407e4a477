from __future__ import annotations

from typing import Annotated, Any, NoReturn

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from serialstock.api.deps import get_current_claims, require_min_level
from serialstock.domain.errors import (
    ConflictingTransitionError,
    InvalidTransitionError,
    NotFoundError,
    SerialStockError,
    ValidationError,
)
from serialstock.domain.models import (
    SerialConsistencyRead,
    SerialDeployRequest,
    SerialItem,
    SerialItemPage,
    SerialItemRead,
    SerialMovementRead,
    SerialNoteRequest,
    SerialReceiveFailure,
    SerialReceiveRequest,
    SerialReceiveResult,
    SerialRepairRequest,
    SerialReserveRequest,
    SerialReturnRequest,
    SerialStatusUpdateRequest,
    SerialSummaryRead,
    SerialTransferRequest,
)
from serialstock.domain.permissions import LEVEL_STOCK_OPERATE, LEVEL_STOCK_READ, LEVEL_STOCK_SUPERVISE
from serialstock.domain.state_machine import SerialOperation, SerialStatus
from serialstock.infra.audit import set_audit_context
from serialstock.services.catalog_service import CatalogConflictError
from serialstock.services.registry_service import SerialFilters
from serialstock.services.serial_query_service import SerialQueryService
from serialstock.services.transition_service import TransitionEngine

router = APIRouter()


def get_transition_engine() -> TransitionEngine:
    return TransitionEngine()


def get_query_service() -> SerialQueryService:
    return SerialQueryService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Engine = Annotated[TransitionEngine, Depends(get_transition_engine)]
Queries = Annotated[SerialQueryService, Depends(get_query_service)]


def _handle_stock_error(exc: SerialStockError) -> NoReturn:
    if isinstance(exc, NotFoundError):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "not_found", "message": str(exc)},
        ) from exc
    if isinstance(exc, InvalidTransitionError):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "code": "invalid_transition",
                "message": str(exc),
                "current_status": exc.current.value,
                "operation": exc.operation.value,
            },
        ) from exc
    if isinstance(exc, ConflictingTransitionError):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "conflicting_transition", "message": str(exc)},
        ) from exc
    if isinstance(exc, CatalogConflictError):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "conflict", "message": str(exc)},
        ) from exc
    if isinstance(exc, ValidationError):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "validation_error", "message": str(exc)},
        ) from exc
    raise exc


def _audit_transition(request: Request, operation: SerialOperation, item: SerialItem) -> None:
    set_audit_context(
        request,
        action=f"serial.{operation.value}",
        resource=f"/api/stock/serials/{item.id}",
        detail={
            "what": {
                "serial_item_id": item.id,
                "serial_no": item.serial_no,
                "status": item.status.value,
                "version": item.version,
            }
        },
    )


@router.get(
    "/serials",
    response_model=SerialItemPage,
    dependencies=[Depends(require_min_level(LEVEL_STOCK_READ))],
)
def list_serials(
    queries: Queries,
    location_id: str | None = None,
    model_id: str | None = None,
    status_filter: Annotated[SerialStatus | None, Query(alias="status")] = None,
    ticket_id: str | None = None,
    search: str | None = None,
    order: Annotated[str, Query(pattern="^(newest|oldest)$")] = "newest",
    limit: Annotated[int, Query(ge=1, le=500)] = 20,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> SerialItemPage:
    filters = SerialFilters(
        location_id=location_id,
        model_id=model_id,
        status=status_filter,
        ticket_id=ticket_id,
        search=search,
    )
    return queries.list_serials(filters, limit=limit, offset=offset, newest_first=order == "newest")


@router.get(
    "/serials/search",
    response_model=list[SerialItemRead],
    dependencies=[Depends(require_min_level(LEVEL_STOCK_READ))],
)
def search_serials(
    queries: Queries,
    q: Annotated[str, Query(min_length=1)],
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
) -> list[SerialItemRead]:
    return queries.search(q, limit=limit)


@router.get(
    "/serials/summary",
    response_model=SerialSummaryRead,
    dependencies=[Depends(require_min_level(LEVEL_STOCK_READ))],
)
def serial_summary(queries: Queries) -> SerialSummaryRead:
    return queries.summary()


@router.get(
    "/serials/by-serial/{serial_no}",
    response_model=SerialItemRead,
    dependencies=[Depends(require_min_level(LEVEL_STOCK_READ))],
)
def get_serial_by_serial_no(serial_no: str, queries: Queries, model_id: str | None = None) -> SerialItemRead:
    try:
        return queries.get_by_serial(serial_no, model_id)
    except SerialStockError as exc:
        _handle_stock_error(exc)


@router.post(
    "/serials/receive",
    response_model=SerialReceiveResult,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_min_level(LEVEL_STOCK_OPERATE))],
)
def receive_serials(
    request: Request,
    payload: SerialReceiveRequest,
    claims: Claims,
    engine: Engine,
    queries: Queries,
) -> SerialReceiveResult:
    try:
        result = engine.receive(payload.items, location_id=payload.location_id, received_by=claims["sub"])
    except SerialStockError as exc:
        _handle_stock_error(exc)
    set_audit_context(
        request,
        action="serial.receive",
        resource="/api/stock/serials/receive",
        detail={
            "what": {
                "location_id": payload.location_id,
                "received": len(result.received),
                "failed": len(result.failed),
            }
        },
    )
    return SerialReceiveResult(
        received=[queries.describe(item) for item in result.received],
        failed=[
            SerialReceiveFailure(serial_no=item.serial_no, model_id=item.model_id, error=item.error)
            for item in result.failed
        ],
    )


@router.get(
    "/serials/{asset_id}",
    response_model=SerialItemRead,
    dependencies=[Depends(require_min_level(LEVEL_STOCK_READ))],
)
def get_serial(asset_id: str, queries: Queries) -> SerialItemRead:
    try:
        return queries.get(asset_id)
    except SerialStockError as exc:
        _handle_stock_error(exc)


@router.get(
    "/serials/{asset_id}/movements",
    response_model=list[SerialMovementRead],
    dependencies=[Depends(require_min_level(LEVEL_STOCK_READ))],
)
def list_serial_movements(
    asset_id: str,
    queries: Queries,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
) -> list[SerialMovementRead]:
    try:
        return queries.movements(asset_id, limit=limit)
    except SerialStockError as exc:
        _handle_stock_error(exc)


@router.get(
    "/serials/{asset_id}/verify",
    response_model=SerialConsistencyRead,
    dependencies=[Depends(require_min_level(LEVEL_STOCK_READ))],
)
def verify_serial(asset_id: str, queries: Queries) -> SerialConsistencyRead:
    try:
        return queries.verify(asset_id)
    except SerialStockError as exc:
        _handle_stock_error(exc)


@router.post(
    "/serials/{asset_id}/transfer",
    response_model=SerialItemRead,
    dependencies=[Depends(require_min_level(LEVEL_STOCK_OPERATE))],
)
def transfer_serial(
    asset_id: str,
    payload: SerialTransferRequest,
    request: Request,
    claims: Claims,
    engine: Engine,
    queries: Queries,
) -> SerialItemRead:
    try:
        item = engine.transfer(
            asset_id,
            to_location_id=payload.to_location_id,
            performed_by=claims["sub"],
            notes=payload.notes,
        )
    except SerialStockError as exc:
        _handle_stock_error(exc)
    _audit_transition(request, SerialOperation.TRANSFER, item)
    return queries.describe(item)


@router.post(
    "/serials/{asset_id}/reserve",
    response_model=SerialItemRead,
    dependencies=[Depends(require_min_level(LEVEL_STOCK_OPERATE))],
)
def reserve_serial(
    asset_id: str,
    payload: SerialReserveRequest,
    request: Request,
    claims: Claims,
    engine: Engine,
    queries: Queries,
) -> SerialItemRead:
    try:
        item = engine.reserve(asset_id, performed_by=claims["sub"], ticket_id=payload.ticket_id, notes=payload.notes)
    except SerialStockError as exc:
        _handle_stock_error(exc)
    _audit_transition(request, SerialOperation.RESERVE, item)
    return queries.describe(item)


@router.post(
    "/serials/{asset_id}/unreserve",
    response_model=SerialItemRead,
    dependencies=[Depends(require_min_level(LEVEL_STOCK_OPERATE))],
)
def unreserve_serial(
    asset_id: str,
    payload: SerialNoteRequest,
    request: Request,
    claims: Claims,
    engine: Engine,
    queries: Queries,
) -> SerialItemRead:
    try:
        item = engine.unreserve(asset_id, performed_by=claims["sub"], notes=payload.notes)
    except SerialStockError as exc:
        _handle_stock_error(exc)
    _audit_transition(request, SerialOperation.UNRESERVE, item)
    return queries.describe(item)


@router.post(
    "/serials/{asset_id}/deploy",
    response_model=SerialItemRead,
    dependencies=[Depends(require_min_level(LEVEL_STOCK_OPERATE))],
)
def deploy_serial(
    asset_id: str,
    payload: SerialDeployRequest,
    request: Request,
    claims: Claims,
    engine: Engine,
    queries: Queries,
) -> SerialItemRead:
    try:
        item = engine.deploy(
            asset_id,
            ticket_id=payload.ticket_id,
            site_id=payload.site_id,
            performed_by=claims["sub"],
            notes=payload.notes,
        )
    except SerialStockError as exc:
        _handle_stock_error(exc)
    _audit_transition(request, SerialOperation.DEPLOY, item)
    return queries.describe(item)


@router.post(
    "/serials/{asset_id}/return",
    response_model=SerialItemRead,
    dependencies=[Depends(require_min_level(LEVEL_STOCK_OPERATE))],
)
def return_serial(
    asset_id: str,
    payload: SerialReturnRequest,
    request: Request,
    claims: Claims,
    engine: Engine,
    queries: Queries,
) -> SerialItemRead:
    try:
        item = engine.return_to_stock(
            asset_id,
            to_location_id=payload.to_location_id,
            performed_by=claims["sub"],
            notes=payload.notes,
        )
    except SerialStockError as exc:
        _handle_stock_error(exc)
    _audit_transition(request, SerialOperation.RETURN, item)
    return queries.describe(item)


@router.post(
    "/serials/{asset_id}/defective",
    response_model=SerialItemRead,
    dependencies=[Depends(require_min_level(LEVEL_STOCK_OPERATE))],
)
def mark_serial_defective(
    asset_id: str,
    request: Request,
    claims: Claims,
    engine: Engine,
    queries: Queries,
    payload: SerialNoteRequest | None = None,
) -> SerialItemRead:
    notes = payload.notes if payload is not None else None
    try:
        item = engine.mark_defective(asset_id, performed_by=claims["sub"], notes=notes)
    except SerialStockError as exc:
        _handle_stock_error(exc)
    _audit_transition(request, SerialOperation.MARK_DEFECTIVE, item)
    return queries.describe(item)


@router.post(
    "/serials/{asset_id}/repair",
    response_model=SerialItemRead,
    dependencies=[Depends(require_min_level(LEVEL_STOCK_SUPERVISE))],
)
def repair_serial(
    asset_id: str,
    payload: SerialRepairRequest,
    request: Request,
    claims: Claims,
    engine: Engine,
    queries: Queries,
) -> SerialItemRead:
    try:
        item = engine.repair(
            asset_id,
            performed_by=claims["sub"],
            to_location_id=payload.to_location_id,
            notes=payload.notes,
        )
    except SerialStockError as exc:
        _handle_stock_error(exc)
    _audit_transition(request, SerialOperation.REPAIR, item)
    return queries.describe(item)


@router.post(
    "/serials/{asset_id}/scrap",
    response_model=SerialItemRead,
    dependencies=[Depends(require_min_level(LEVEL_STOCK_SUPERVISE))],
)
def scrap_serial(
    asset_id: str,
    payload: SerialNoteRequest,
    request: Request,
    claims: Claims,
    engine: Engine,
    queries: Queries,
) -> SerialItemRead:
    try:
        item = engine.scrap(asset_id, performed_by=claims["sub"], notes=payload.notes)
    except SerialStockError as exc:
        _handle_stock_error(exc)
    _audit_transition(request, SerialOperation.SCRAP, item)
    return queries.describe(item)


@router.post(
    "/serials/{asset_id}/status",
    response_model=SerialItemRead,
    dependencies=[Depends(require_min_level(LEVEL_STOCK_SUPERVISE))],
)
def update_serial_status(
    asset_id: str,
    payload: SerialStatusUpdateRequest,
    request: Request,
    claims: Claims,
    engine: Engine,
    queries: Queries,
) -> SerialItemRead:
    try:
        item = engine.update_status(
            asset_id,
            status=payload.status,
            performed_by=claims["sub"],
            location_id=payload.location_id,
            ticket_id=payload.ticket_id,
            site_id=payload.site_id,
            notes=payload.notes,
        )
    except SerialStockError as exc:
        _handle_stock_error(exc)
    _audit_transition(request, SerialOperation.ADJUST, item)
    return queries.describe(item)


@router.get(
    "/locations/{location_id}/serials",
    response_model=SerialItemPage,
    dependencies=[Depends(require_min_level(LEVEL_STOCK_READ))],
)
def list_serials_at_location(
    location_id: str,
    queries: Queries,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> SerialItemPage:
    try:
        return queries.list_at_location(location_id, limit=limit, offset=offset)
    except SerialStockError as exc:
        _handle_stock_error(exc)


@router.get(
    "/tickets/{ticket_id}/serials",
    response_model=SerialItemPage,
    dependencies=[Depends(require_min_level(LEVEL_STOCK_READ))],
)
def list_serials_for_ticket(
    ticket_id: str,
    queries: Queries,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> SerialItemPage:
    return queries.list_for_ticket(ticket_id, limit=limit, offset=offset)
