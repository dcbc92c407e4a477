from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from redis.exceptions import RedisError
from sqlalchemy import func
from sqlmodel import Session, col, select

from serialstock.domain.models import (
    SerialConsistencyRead,
    SerialItem,
    SerialItemPage,
    SerialItemRead,
    SerialMovement,
    SerialMovementRead,
    SerialSummaryRead,
    StockLocation,
    StockModel,
)
from serialstock.domain.state_machine import SerialStatus
from serialstock.infra import redis_state
from serialstock.infra.db import get_engine
from serialstock.services.catalog_service import CatalogService
from serialstock.services.ledger_service import MovementLedger
from serialstock.services.registry_service import SerialFilters, SerialRegistry

logger = logging.getLogger(__name__)

RECENT_MOVEMENT_LIMIT = 10


class SerialQueryService:
    """Read-only projections over the registry and the movement ledger."""

    def __init__(
        self,
        registry: SerialRegistry | None = None,
        ledger: MovementLedger | None = None,
        catalog: CatalogService | None = None,
    ) -> None:
        self._registry = registry or SerialRegistry()
        self._ledger = ledger or MovementLedger()
        self._catalog = catalog or CatalogService()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _enrich(self, session: Session, items: Sequence[SerialItem]) -> list[SerialItemRead]:
        model_ids = {item.model_id for item in items}
        location_ids = {item.location_id for item in items if item.location_id is not None}
        models = self._models_by_id(session, model_ids)
        locations = self._locations_by_id(session, location_ids)
        result: list[SerialItemRead] = []
        for item in items:
            model = models.get(item.model_id)
            location = locations.get(item.location_id) if item.location_id is not None else None
            result.append(
                SerialItemRead.model_validate(item).model_copy(
                    update={
                        "model_code": model.code if model is not None else None,
                        "model_name": model.name if model is not None else None,
                        "location_code": location.code if location is not None else None,
                        "location_name": location.name if location is not None else None,
                    }
                )
            )
        return result

    def _enrich_movements(self, session: Session, movements: Sequence[SerialMovement]) -> list[SerialMovementRead]:
        location_ids: set[str] = set()
        for movement in movements:
            location_ids.update(
                item for item in (movement.from_location_id, movement.to_location_id) if item is not None
            )
        locations = self._locations_by_id(session, location_ids)
        result: list[SerialMovementRead] = []
        for movement in movements:
            from_location = locations.get(movement.from_location_id) if movement.from_location_id else None
            to_location = locations.get(movement.to_location_id) if movement.to_location_id else None
            result.append(
                SerialMovementRead.model_validate(movement).model_copy(
                    update={
                        "from_location_name": from_location.name if from_location is not None else None,
                        "to_location_name": to_location.name if to_location is not None else None,
                    }
                )
            )
        return result

    @staticmethod
    def _models_by_id(session: Session, model_ids: Iterable[str]) -> dict[str, StockModel]:
        wanted = set(model_ids)
        if not wanted:
            return {}
        rows = session.exec(select(StockModel).where(col(StockModel.id).in_(wanted))).all()
        return {row.id: row for row in rows}

    @staticmethod
    def _locations_by_id(session: Session, location_ids: Iterable[str]) -> dict[str, StockLocation]:
        wanted = set(location_ids)
        if not wanted:
            return {}
        rows = session.exec(select(StockLocation).where(col(StockLocation.id).in_(wanted))).all()
        return {row.id: row for row in rows}

    def describe(self, item: SerialItem) -> SerialItemRead:
        with self._session() as session:
            return self._enrich(session, [item])[0]

    def list_serials(
        self,
        filters: SerialFilters,
        *,
        limit: int = 20,
        offset: int = 0,
        newest_first: bool = True,
    ) -> SerialItemPage:
        with self._session() as session:
            rows, total = self._registry.list_items(
                session,
                filters,
                limit=limit,
                offset=offset,
                newest_first=newest_first,
            )
            return SerialItemPage(items=self._enrich(session, rows), total=total, limit=limit, offset=offset)

    def search(self, query: str, limit: int = 20) -> list[SerialItemRead]:
        with self._session() as session:
            rows, _ = self._registry.list_items(session, SerialFilters(search=query), limit=limit)
            return self._enrich(session, rows)

    def get(self, asset_id: str) -> SerialItemRead:
        with self._session() as session:
            item = self._registry.get_by_id(session, asset_id)
            return self._enrich(session, [item])[0]

    def get_by_serial(self, serial_no: str, model_id: str | None = None) -> SerialItemRead:
        with self._session() as session:
            item = self._registry.get_by_serial(session, serial_no, model_id)
            return self._enrich(session, [item])[0]

    def list_at_location(self, location_id: str, *, limit: int = 100, offset: int = 0) -> SerialItemPage:
        with self._session() as session:
            self._catalog.require_location(session, location_id)
        return self.list_serials(SerialFilters(location_id=location_id), limit=limit, offset=offset)

    def list_for_ticket(self, ticket_id: str, *, limit: int = 100, offset: int = 0) -> SerialItemPage:
        return self.list_serials(SerialFilters(ticket_id=ticket_id), limit=limit, offset=offset)

    def movements(self, asset_id: str, limit: int = 50) -> list[SerialMovementRead]:
        with self._session() as session:
            self._registry.get_by_id(session, asset_id)
            rows = self._ledger.list_for_asset(session, asset_id, limit=limit)
            return self._enrich_movements(session, rows)

    def verify(self, asset_id: str) -> SerialConsistencyRead:
        with self._session() as session:
            item = self._registry.get_by_id(session, asset_id)
            status, location_id, count = self._ledger.replay_for_asset(session, asset_id)
        consistent = status == item.status and location_id == item.location_id
        if not consistent:
            logger.error(
                "serial item %s disagrees with its ledger: registry=%s/%s replay=%s/%s",
                asset_id,
                item.status,
                item.location_id,
                status,
                location_id,
            )
        return SerialConsistencyRead(
            serial_item_id=asset_id,
            registry_status=item.status,
            registry_location_id=item.location_id,
            replayed_status=status,
            replayed_location_id=location_id,
            movement_count=count,
            consistent=consistent,
        )

    def summary(self) -> SerialSummaryRead:
        cached = self._read_cached_summary()
        if cached is not None:
            return cached
        try:
            generation = redis_state.summary_generation()
        except RedisError:
            logger.warning("serial summary cache unavailable", exc_info=True)
            return self._build_summary()
        summary = self._build_summary()
        try:
            if not redis_state.store_summary(summary.model_dump_json(), generation):
                logger.debug("serial summary changed while building; not caching")
        except RedisError:
            logger.warning("could not cache serial summary", exc_info=True)
        return summary

    def _read_cached_summary(self) -> SerialSummaryRead | None:
        try:
            raw = redis_state.get_redis().get(redis_state.SUMMARY_CACHE_KEY)
        except RedisError:
            logger.warning("serial summary cache unavailable", exc_info=True)
            return None
        if raw is None:
            return None
        return SerialSummaryRead.model_validate_json(raw)

    def _build_summary(self) -> SerialSummaryRead:
        with self._session() as session:
            rows = session.exec(
                select(SerialItem.status, func.count()).group_by(SerialItem.status)
            ).all()
            by_status = {status.value: 0 for status in SerialStatus}
            for status, count in rows:
                by_status[SerialStatus(status).value] = int(count)
            active_locations = session.exec(
                select(func.count()).select_from(StockLocation).where(col(StockLocation.is_active).is_(True))
            ).one()
            recent = self._enrich_movements(
                session,
                self._ledger.list_recent(session, limit=RECENT_MOVEMENT_LIMIT),
            )
        return SerialSummaryRead(
            by_status=by_status,
            total_serials=sum(by_status.values()),
            active_locations=int(active_locations),
            recent_movements=recent,
        )
