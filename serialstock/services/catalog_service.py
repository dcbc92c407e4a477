from __future__ import annotations

import logging
from collections.abc import Iterable

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from serialstock.domain.errors import NotFoundError, SerialStockError, ValidationError
from serialstock.domain.models import (
    StockLocation,
    StockLocationCreate,
    StockLocationType,
    StockModel,
    StockModelCreate,
)
from serialstock.infra.db import get_engine

logger = logging.getLogger(__name__)


class CatalogConflictError(SerialStockError):
    pass


class CatalogService:
    """Model and stock-location catalog consulted by the transition engine."""

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def create_model(self, payload: StockModelCreate) -> StockModel:
        with self._session() as session:
            model = StockModel(code=payload.code, name=payload.name, has_serial=payload.has_serial)
            session.add(model)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise CatalogConflictError("model code already exists") from exc
            session.refresh(model)
        logger.info("catalog model %s created (has_serial=%s)", model.code, model.has_serial)
        return model

    def list_models(self, *, has_serial: bool | None = None) -> list[StockModel]:
        with self._session() as session:
            statement = select(StockModel)
            if has_serial is not None:
                statement = statement.where(StockModel.has_serial == has_serial)
            return list(session.exec(statement.order_by(col(StockModel.code))).all())

    def create_location(self, payload: StockLocationCreate) -> StockLocation:
        with self._session() as session:
            location = StockLocation(
                code=payload.code,
                name=payload.name,
                location_type=payload.location_type,
                is_active=payload.is_active,
            )
            session.add(location)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise CatalogConflictError("location code already exists") from exc
            session.refresh(location)
        logger.info("stock location %s created", location.code)
        return location

    def list_locations(
        self,
        *,
        location_type: StockLocationType | None = None,
        active_only: bool = False,
    ) -> list[StockLocation]:
        with self._session() as session:
            statement = select(StockLocation)
            if location_type is not None:
                statement = statement.where(StockLocation.location_type == location_type)
            if active_only:
                statement = statement.where(col(StockLocation.is_active).is_(True))
            return list(session.exec(statement.order_by(col(StockLocation.code))).all())

    def get_location(self, location_id: str) -> StockLocation:
        with self._session() as session:
            return self.require_location(session, location_id)

    # Session-scoped checks used inside engine transactions.

    def require_location(self, session: Session, location_id: str) -> StockLocation:
        location = session.get(StockLocation, location_id)
        if location is None:
            raise NotFoundError(f"stock location {location_id} not found")
        return location

    def require_active_location(self, session: Session, location_id: str) -> StockLocation:
        location = self.require_location(session, location_id)
        if not location.is_active:
            raise ValidationError(f"stock location {location.code} is inactive")
        return location

    def require_serial_models(self, session: Session, model_ids: Iterable[str]) -> dict[str, StockModel]:
        wanted = set(model_ids)
        if not wanted:
            return {}
        rows = session.exec(select(StockModel).where(col(StockModel.id).in_(wanted))).all()
        found = {row.id: row for row in rows}
        for model_id in sorted(wanted):
            model = found.get(model_id)
            if model is None:
                raise NotFoundError(f"model {model_id} not found")
            if not model.has_serial:
                raise ValidationError(f"model {model.code} is not serial-tracked; receive it as quantity stock")
        return found
