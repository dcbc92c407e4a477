from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy import func, update
from sqlmodel import Session, col, select

from serialstock.domain.errors import NotFoundError, ValidationError
from serialstock.domain.models import SerialItem, normalize_serial_no
from serialstock.domain.state_machine import SerialStatus


@dataclass(frozen=True)
class SerialFilters:
    location_id: str | None = None
    model_id: str | None = None
    status: SerialStatus | None = None
    ticket_id: str | None = None
    search: str | None = None


class SerialRegistry:
    """Storage access for serial items. Holds no business rules; callers own the session."""

    def get_by_id(self, session: Session, asset_id: str) -> SerialItem:
        item = session.get(SerialItem, asset_id)
        if item is None:
            raise NotFoundError(f"serial item {asset_id} not found")
        return item

    def get_by_serial(self, session: Session, serial_no: str, model_id: str | None = None) -> SerialItem:
        normalized = normalize_serial_no(serial_no)
        if not normalized:
            raise ValidationError("serial_no must not be empty")
        statement = select(SerialItem).where(SerialItem.serial_no == normalized)
        if model_id is not None:
            statement = statement.where(SerialItem.model_id == model_id)
        rows = list(session.exec(statement.limit(2)).all())
        if not rows:
            raise NotFoundError(f"serial number {normalized} not found")
        if len(rows) > 1:
            raise ValidationError(f"serial number {normalized} exists for several models; pass model_id")
        return rows[0]

    def find_duplicate(self, session: Session, model_id: str, serial_no: str) -> SerialItem | None:
        return session.exec(
            select(SerialItem)
            .where(SerialItem.model_id == model_id)
            .where(SerialItem.serial_no == normalize_serial_no(serial_no))
        ).first()

    def list_items(
        self,
        session: Session,
        filters: SerialFilters,
        *,
        limit: int = 20,
        offset: int = 0,
        newest_first: bool = True,
    ) -> tuple[list[SerialItem], int]:
        statement = select(SerialItem)
        if filters.location_id is not None:
            statement = statement.where(SerialItem.location_id == filters.location_id)
        if filters.model_id is not None:
            statement = statement.where(SerialItem.model_id == filters.model_id)
        if filters.status is not None:
            statement = statement.where(SerialItem.status == filters.status)
        if filters.ticket_id is not None:
            statement = statement.where(SerialItem.ticket_id == filters.ticket_id)
        if filters.search:
            statement = statement.where(col(SerialItem.serial_no).icontains(filters.search.strip(), autoescape=True))

        total = session.exec(select(func.count()).select_from(statement.subquery())).one()
        if newest_first:
            statement = statement.order_by(col(SerialItem.received_at).desc(), col(SerialItem.created_at).desc())
        else:
            statement = statement.order_by(col(SerialItem.received_at).asc(), col(SerialItem.created_at).asc())
        rows = list(session.exec(statement.offset(offset).limit(limit)).all())
        return rows, int(total)

    def add(self, session: Session, item: SerialItem) -> SerialItem:
        session.add(item)
        session.flush()
        return item

    def compare_and_swap(
        self,
        session: Session,
        asset_id: str,
        *,
        expected_status: SerialStatus,
        expected_version: int,
        values: dict[str, Any],
    ) -> bool:
        statement = (
            update(SerialItem)
            .where(col(SerialItem.id) == asset_id)
            .where(col(SerialItem.status) == expected_status)
            .where(col(SerialItem.version) == expected_version)
            .values(**values)
        )
        result = session.connection().execute(statement)
        return result.rowcount == 1
