from __future__ import annotations

from datetime import datetime

from sqlmodel import Session, col, select

from serialstock.domain.models import SerialMovement
from serialstock.domain.state_machine import SerialMovementType, SerialStatus, TransitionPlan, replay


class MovementLedger:
    """Append-only movement log. Rows are inserted once and never updated or deleted."""

    def append(
        self,
        session: Session,
        *,
        serial_item_id: str,
        sequence: int,
        movement_type: SerialMovementType,
        from_status: SerialStatus | None,
        to_status: SerialStatus,
        from_location_id: str | None,
        to_location_id: str | None,
        ticket_id: str | None,
        performed_by: str,
        performed_at: datetime,
        notes: str | None,
    ) -> SerialMovement:
        movement = SerialMovement(
            serial_item_id=serial_item_id,
            sequence=sequence,
            movement_type=movement_type,
            from_status=from_status,
            to_status=to_status,
            from_location_id=from_location_id,
            to_location_id=to_location_id,
            ticket_id=ticket_id,
            performed_by=performed_by,
            performed_at=performed_at,
            notes=notes,
        )
        session.add(movement)
        return movement

    def append_plan(
        self,
        session: Session,
        *,
        serial_item_id: str,
        sequence: int,
        plan: TransitionPlan,
        performed_by: str,
        performed_at: datetime,
        notes: str | None,
    ) -> SerialMovement:
        return self.append(
            session,
            serial_item_id=serial_item_id,
            sequence=sequence,
            movement_type=plan.movement_type,
            from_status=plan.before.status,
            to_status=plan.after.status,
            from_location_id=plan.before.location_id,
            to_location_id=plan.after.location_id,
            ticket_id=plan.movement_ticket_id,
            performed_by=performed_by,
            performed_at=performed_at,
            notes=notes,
        )

    def list_for_asset(self, session: Session, serial_item_id: str, limit: int = 50) -> list[SerialMovement]:
        statement = (
            select(SerialMovement)
            .where(SerialMovement.serial_item_id == serial_item_id)
            .order_by(col(SerialMovement.performed_at).desc(), col(SerialMovement.sequence).desc())
            .limit(limit)
        )
        return list(session.exec(statement).all())

    def list_recent(self, session: Session, limit: int = 10) -> list[SerialMovement]:
        statement = (
            select(SerialMovement)
            .order_by(col(SerialMovement.performed_at).desc(), col(SerialMovement.sequence).desc())
            .limit(limit)
        )
        return list(session.exec(statement).all())

    def replay_for_asset(
        self,
        session: Session,
        serial_item_id: str,
    ) -> tuple[SerialStatus | None, str | None, int]:
        movements = session.exec(
            select(SerialMovement)
            .where(SerialMovement.serial_item_id == serial_item_id)
            .order_by(col(SerialMovement.performed_at).asc(), col(SerialMovement.sequence).asc())
        ).all()
        status, location_id = replay((row.to_status, row.to_location_id) for row in movements)
        return status, location_id, len(movements)
