from __future__ import annotations

from typing import Annotated, NoReturn

from fastapi import APIRouter, Depends, HTTPException, Request, status

from serialstock.api.deps import require_min_level
from serialstock.domain.errors import NotFoundError, SerialStockError, ValidationError
from serialstock.domain.models import (
    StockLocation,
    StockLocationCreate,
    StockLocationRead,
    StockLocationType,
    StockModel,
    StockModelCreate,
    StockModelRead,
)
from serialstock.domain.permissions import LEVEL_CATALOG_ADMIN, LEVEL_STOCK_READ
from serialstock.infra.audit import set_audit_context
from serialstock.services.catalog_service import CatalogConflictError, CatalogService

router = APIRouter()


def get_catalog_service() -> CatalogService:
    return CatalogService()


Service = Annotated[CatalogService, Depends(get_catalog_service)]


def _handle_catalog_error(exc: SerialStockError) -> NoReturn:
    if isinstance(exc, NotFoundError):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "not_found", "message": str(exc)},
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


@router.post(
    "/models",
    response_model=StockModelRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_min_level(LEVEL_CATALOG_ADMIN))],
)
def create_model(payload: StockModelCreate, request: Request, service: Service) -> StockModel:
    try:
        model = service.create_model(payload)
    except SerialStockError as exc:
        _handle_catalog_error(exc)
    set_audit_context(
        request,
        action="catalog.model.create",
        resource=f"/api/stock/models/{model.id}",
        detail={"what": {"code": model.code, "has_serial": model.has_serial}},
    )
    return model


@router.get(
    "/models",
    response_model=list[StockModelRead],
    dependencies=[Depends(require_min_level(LEVEL_STOCK_READ))],
)
def list_models(service: Service, has_serial: bool | None = None) -> list[StockModel]:
    return service.list_models(has_serial=has_serial)


@router.post(
    "/locations",
    response_model=StockLocationRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_min_level(LEVEL_CATALOG_ADMIN))],
)
def create_location(payload: StockLocationCreate, request: Request, service: Service) -> StockLocation:
    try:
        location = service.create_location(payload)
    except SerialStockError as exc:
        _handle_catalog_error(exc)
    set_audit_context(
        request,
        action="catalog.location.create",
        resource=f"/api/stock/locations/{location.id}",
        detail={"what": {"code": location.code, "location_type": location.location_type.value}},
    )
    return location


@router.get(
    "/locations",
    response_model=list[StockLocationRead],
    dependencies=[Depends(require_min_level(LEVEL_STOCK_READ))],
)
def list_locations(
    service: Service,
    location_type: StockLocationType | None = None,
    active_only: bool = False,
) -> list[StockLocation]:
    return service.list_locations(location_type=location_type, active_only=active_only)


@router.get(
    "/locations/{location_id}",
    response_model=StockLocationRead,
    dependencies=[Depends(require_min_level(LEVEL_STOCK_READ))],
)
def get_location(location_id: str, service: Service) -> StockLocation:
    try:
        return service.get_location(location_id)
    except SerialStockError as exc:
        _handle_catalog_error(exc)
