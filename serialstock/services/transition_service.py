from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from serialstock.domain.errors import (
    ConflictingTransitionError,
    DuplicateSerialError,
    InvalidTransitionError,
    ValidationError,
)
from serialstock.domain.models import SerialItem, SerialReceiveItem, now_utc
from serialstock.domain.state_machine import (
    TRANSITIONS,
    SerialOperation,
    SerialState,
    SerialStatus,
    TransitionPlan,
    plan_transition,
)
from serialstock.infra import redis_state
from serialstock.infra.db import get_engine
from serialstock.infra.events import event_bus
from serialstock.services.catalog_service import CatalogService
from serialstock.services.ledger_service import MovementLedger
from serialstock.services.registry_service import SerialRegistry

logger = logging.getLogger(__name__)

_EVENT_NAMES: dict[SerialOperation, str] = {
    SerialOperation.RECEIVE: "serial.received",
    SerialOperation.TRANSFER: "serial.transferred",
    SerialOperation.RESERVE: "serial.reserved",
    SerialOperation.UNRESERVE: "serial.unreserved",
    SerialOperation.DEPLOY: "serial.deployed",
    SerialOperation.RETURN: "serial.returned",
    SerialOperation.MARK_DEFECTIVE: "serial.marked_defective",
    SerialOperation.REPAIR: "serial.repaired",
    SerialOperation.SCRAP: "serial.scrapped",
    SerialOperation.ADJUST: "serial.status_adjusted",
}


@dataclass
class ReceiveFailure:
    model_id: str
    serial_no: str
    error: str


@dataclass
class ReceiveResult:
    received: list[SerialItem] = field(default_factory=list)
    failed: list[ReceiveFailure] = field(default_factory=list)


class TransitionEngine:
    """Sole writer of serial items and their movements.

    Every transition reads the current row, checks it against ``TRANSITIONS``
    and then writes with a status/version guarded UPDATE in the same
    transaction as the ledger insert. A writer whose UPDATE matches no row lost
    a race and gets ``ConflictingTransitionError`` with nothing persisted.
    """

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

    def receive(
        self,
        items: list[SerialReceiveItem],
        *,
        location_id: str,
        received_by: str,
    ) -> ReceiveResult:
        if not items:
            raise ValidationError("receive requires at least one item")
        rule = TRANSITIONS[SerialOperation.RECEIVE]
        with self._session() as session:
            self._catalog.require_active_location(session, location_id)
            self._catalog.require_serial_models(session, (item.model_id for item in items))

        result = ReceiveResult()
        seen: set[tuple[str, str]] = set()
        for item in items:
            key = (item.model_id, item.serial_no)
            if key in seen:
                self._record_failure(result, item, DuplicateSerialError(*key))
                continue
            seen.add(key)
            try:
                created = self._receive_one(item, location_id=location_id, received_by=received_by)
            except DuplicateSerialError as exc:
                self._record_failure(result, item, exc)
                continue
            result.received.append(created)
            event_bus.publish_dict(
                _EVENT_NAMES[SerialOperation.RECEIVE],
                {
                    "serial_item_id": created.id,
                    "model_id": created.model_id,
                    "serial_no": created.serial_no,
                    "to_status": rule.target_status,
                    "to_location_id": location_id,
                },
                actor_id=received_by,
            )

        if result.received:
            redis_state.invalidate_summary_cache()
        logger.info(
            "received %d serial item(s) into %s, %d failed",
            len(result.received),
            location_id,
            len(result.failed),
        )
        return result

    def _receive_one(self, payload: SerialReceiveItem, *, location_id: str, received_by: str) -> SerialItem:
        rule = TRANSITIONS[SerialOperation.RECEIVE]
        with self._session() as session:
            if self._registry.find_duplicate(session, payload.model_id, payload.serial_no) is not None:
                raise DuplicateSerialError(payload.model_id, payload.serial_no)
            now = now_utc()
            item = SerialItem(
                model_id=payload.model_id,
                serial_no=payload.serial_no,
                status=rule.target_status,
                location_id=location_id,
                received_at=now,
                received_by=received_by,
                notes=payload.notes,
                version=1,
                created_at=now,
                updated_at=now,
            )
            try:
                self._registry.add(session, item)
                self._ledger.append(
                    session,
                    serial_item_id=item.id,
                    sequence=item.version,
                    movement_type=rule.movement_type,
                    from_status=None,
                    to_status=item.status,
                    from_location_id=None,
                    to_location_id=location_id,
                    ticket_id=None,
                    performed_by=received_by,
                    performed_at=now,
                    notes=payload.notes,
                )
                session.commit()
            except IntegrityError as exc:
                # A concurrent receive inserted the same serial between the check and the insert.
                session.rollback()
                raise DuplicateSerialError(payload.model_id, payload.serial_no) from exc
            session.refresh(item)
        return item

    @staticmethod
    def _record_failure(result: ReceiveResult, item: SerialReceiveItem, exc: DuplicateSerialError) -> None:
        logger.warning("receive rejected %s/%s: %s", item.model_id, item.serial_no, exc)
        result.failed.append(ReceiveFailure(model_id=item.model_id, serial_no=item.serial_no, error=str(exc)))

    def transfer(self, asset_id: str, *, to_location_id: str, performed_by: str, notes: str | None = None) -> SerialItem:
        return self.apply(
            SerialOperation.TRANSFER,
            asset_id,
            performed_by=performed_by,
            location_id=to_location_id,
            notes=notes,
        )

    def reserve(
        self,
        asset_id: str,
        *,
        performed_by: str,
        ticket_id: str | None = None,
        notes: str | None = None,
    ) -> SerialItem:
        return self.apply(
            SerialOperation.RESERVE,
            asset_id,
            performed_by=performed_by,
            ticket_id=ticket_id,
            notes=notes,
        )

    def unreserve(self, asset_id: str, *, performed_by: str, notes: str | None = None) -> SerialItem:
        return self.apply(SerialOperation.UNRESERVE, asset_id, performed_by=performed_by, notes=notes)

    def deploy(
        self,
        asset_id: str,
        *,
        ticket_id: str,
        performed_by: str,
        site_id: str | None = None,
        notes: str | None = None,
    ) -> SerialItem:
        return self.apply(
            SerialOperation.DEPLOY,
            asset_id,
            performed_by=performed_by,
            ticket_id=ticket_id,
            site_id=site_id,
            notes=notes,
        )

    def return_to_stock(
        self,
        asset_id: str,
        *,
        to_location_id: str,
        performed_by: str,
        notes: str | None = None,
    ) -> SerialItem:
        return self.apply(
            SerialOperation.RETURN,
            asset_id,
            performed_by=performed_by,
            location_id=to_location_id,
            notes=notes,
        )

    def mark_defective(self, asset_id: str, *, performed_by: str, notes: str | None = None) -> SerialItem:
        return self.apply(SerialOperation.MARK_DEFECTIVE, asset_id, performed_by=performed_by, notes=notes)

    def repair(
        self,
        asset_id: str,
        *,
        performed_by: str,
        to_location_id: str | None = None,
        notes: str | None = None,
    ) -> SerialItem:
        return self.apply(
            SerialOperation.REPAIR,
            asset_id,
            performed_by=performed_by,
            location_id=to_location_id,
            notes=notes,
        )

    def scrap(self, asset_id: str, *, performed_by: str, notes: str | None = None) -> SerialItem:
        return self.apply(SerialOperation.SCRAP, asset_id, performed_by=performed_by, notes=notes)

    def update_status(
        self,
        asset_id: str,
        *,
        status: SerialStatus,
        performed_by: str,
        location_id: str | None = None,
        ticket_id: str | None = None,
        site_id: str | None = None,
        notes: str | None = None,
    ) -> SerialItem:
        return self.apply(
            SerialOperation.ADJUST,
            asset_id,
            performed_by=performed_by,
            target_status=status,
            location_id=location_id,
            ticket_id=ticket_id,
            site_id=site_id,
            notes=notes,
        )

    def apply(
        self,
        operation: SerialOperation,
        asset_id: str,
        *,
        performed_by: str,
        target_status: SerialStatus | None = None,
        location_id: str | None = None,
        ticket_id: str | None = None,
        site_id: str | None = None,
        notes: str | None = None,
    ) -> SerialItem:
        if operation == SerialOperation.RECEIVE:
            raise ValidationError("use receive() to register new serial items")
        if not performed_by:
            raise ValidationError("performed_by is required")

        with self._session() as session:
            item = self._registry.get_by_id(session, asset_id)
            before = SerialState(
                status=item.status,
                location_id=item.location_id,
                ticket_id=item.ticket_id,
                site_id=item.site_id,
            )
            try:
                plan = plan_transition(
                    operation,
                    before,
                    target_status=target_status,
                    location_id=location_id,
                    ticket_id=ticket_id,
                    site_id=site_id,
                )
            except InvalidTransitionError:
                logger.warning("rejected %s on %s: status is %s", operation, asset_id, before.status)
                raise
            if location_id is not None and plan.after.location_id == location_id:
                self._catalog.require_active_location(session, location_id)

            expected_version = item.version
            now = now_utc()
            values: dict[str, object] = {
                "status": plan.after.status,
                "location_id": plan.after.location_id,
                "ticket_id": plan.after.ticket_id,
                "site_id": plan.after.site_id,
                "version": expected_version + 1,
                "updated_at": now,
            }
            if notes is not None:
                values["notes"] = notes

            swapped = self._registry.compare_and_swap(
                session,
                asset_id,
                expected_status=before.status,
                expected_version=expected_version,
                values=values,
            )
            if not swapped:
                session.rollback()
                logger.warning("conflicting %s on %s: row changed after read", operation, asset_id)
                raise ConflictingTransitionError(asset_id)

            self._ledger.append_plan(
                session,
                serial_item_id=asset_id,
                sequence=expected_version + 1,
                plan=plan,
                performed_by=performed_by,
                performed_at=now,
                notes=notes,
            )
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictingTransitionError(asset_id) from exc
            session.refresh(item)

        logger.info(
            "%s %s: %s -> %s by %s",
            operation,
            asset_id,
            plan.before.status,
            plan.after.status,
            performed_by,
        )
        redis_state.invalidate_summary_cache()
        self._publish(operation, item, plan, performed_by)
        return item

    def _publish(self, operation: SerialOperation, item: SerialItem, plan: TransitionPlan, actor_id: str) -> None:
        event_bus.publish_dict(
            _EVENT_NAMES[operation],
            {
                "serial_item_id": item.id,
                "serial_no": item.serial_no,
                "movement_type": plan.movement_type,
                "from_status": plan.before.status,
                "to_status": plan.after.status,
                "from_location_id": plan.before.location_id,
                "to_location_id": plan.after.location_id,
                "ticket_id": plan.movement_ticket_id,
                "version": item.version,
            },
            actor_id=actor_id,
        )
