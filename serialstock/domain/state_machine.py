from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum

from serialstock.domain.errors import InvalidTransitionError, ValidationError


class SerialStatus(StrEnum):
    IN_STOCK = "in_stock"
    RESERVED = "reserved"
    DEPLOYED = "deployed"
    DEFECTIVE = "defective"
    RETURNED = "returned"
    SCRAPPED = "scrapped"


class SerialMovementType(StrEnum):
    RECEIVE = "receive"
    TRANSFER = "transfer"
    RESERVE = "reserve"
    UNRESERVE = "unreserve"
    DEPLOY = "deploy"
    RETURN = "return"
    DEFECTIVE = "defective"
    REPAIR = "repair"
    SCRAP = "scrap"
    ADJUST = "adjust"


class SerialOperation(StrEnum):
    RECEIVE = "receive"
    TRANSFER = "transfer"
    RESERVE = "reserve"
    UNRESERVE = "unreserve"
    DEPLOY = "deploy"
    RETURN = "return"
    MARK_DEFECTIVE = "mark_defective"
    REPAIR = "repair"
    SCRAP = "scrap"
    ADJUST = "adjust"


class LocationEffect(StrEnum):
    KEEP = "keep"
    SET = "set"
    SET_OR_KEEP = "set_or_keep"
    CLEAR = "clear"


class TicketEffect(StrEnum):
    KEEP = "keep"
    SET = "set"
    SET_OR_KEEP = "set_or_keep"
    CLEAR = "clear"


# Statuses that cannot carry a ticket or site.
STOCKED_STATUSES = frozenset({SerialStatus.IN_STOCK, SerialStatus.RETURNED})
ALL_STATUSES = frozenset(SerialStatus)


@dataclass(frozen=True)
class TransitionRule:
    movement_type: SerialMovementType
    allowed_from: frozenset[SerialStatus]
    # None keeps the current status (transfer) or takes the caller's target (adjust).
    target_status: SerialStatus | None
    location: LocationEffect
    ticket: TicketEffect
    requires_location: bool = False
    requires_ticket: bool = False


TRANSITIONS: dict[SerialOperation, TransitionRule] = {
    SerialOperation.RECEIVE: TransitionRule(
        movement_type=SerialMovementType.RECEIVE,
        allowed_from=frozenset(),
        target_status=SerialStatus.IN_STOCK,
        location=LocationEffect.SET,
        ticket=TicketEffect.CLEAR,
        requires_location=True,
    ),
    SerialOperation.TRANSFER: TransitionRule(
        movement_type=SerialMovementType.TRANSFER,
        allowed_from=frozenset({SerialStatus.IN_STOCK, SerialStatus.RETURNED}),
        target_status=None,
        location=LocationEffect.SET,
        ticket=TicketEffect.KEEP,
        requires_location=True,
    ),
    SerialOperation.RESERVE: TransitionRule(
        movement_type=SerialMovementType.RESERVE,
        allowed_from=frozenset({SerialStatus.IN_STOCK}),
        target_status=SerialStatus.RESERVED,
        location=LocationEffect.KEEP,
        ticket=TicketEffect.SET_OR_KEEP,
    ),
    SerialOperation.UNRESERVE: TransitionRule(
        movement_type=SerialMovementType.UNRESERVE,
        allowed_from=frozenset({SerialStatus.RESERVED}),
        target_status=SerialStatus.IN_STOCK,
        location=LocationEffect.KEEP,
        ticket=TicketEffect.CLEAR,
    ),
    SerialOperation.DEPLOY: TransitionRule(
        movement_type=SerialMovementType.DEPLOY,
        allowed_from=frozenset({SerialStatus.IN_STOCK, SerialStatus.RESERVED}),
        target_status=SerialStatus.DEPLOYED,
        location=LocationEffect.CLEAR,
        ticket=TicketEffect.SET,
        requires_ticket=True,
    ),
    SerialOperation.RETURN: TransitionRule(
        movement_type=SerialMovementType.RETURN,
        allowed_from=frozenset({SerialStatus.DEPLOYED}),
        target_status=SerialStatus.RETURNED,
        location=LocationEffect.SET,
        ticket=TicketEffect.CLEAR,
        requires_location=True,
    ),
    SerialOperation.MARK_DEFECTIVE: TransitionRule(
        movement_type=SerialMovementType.DEFECTIVE,
        allowed_from=ALL_STATUSES - {SerialStatus.SCRAPPED},
        target_status=SerialStatus.DEFECTIVE,
        location=LocationEffect.KEEP,
        ticket=TicketEffect.KEEP,
    ),
    SerialOperation.REPAIR: TransitionRule(
        movement_type=SerialMovementType.REPAIR,
        allowed_from=frozenset({SerialStatus.DEFECTIVE}),
        target_status=SerialStatus.IN_STOCK,
        location=LocationEffect.SET_OR_KEEP,
        ticket=TicketEffect.CLEAR,
        requires_location=True,
    ),
    SerialOperation.SCRAP: TransitionRule(
        movement_type=SerialMovementType.SCRAP,
        allowed_from=ALL_STATUSES - {SerialStatus.DEPLOYED, SerialStatus.SCRAPPED},
        target_status=SerialStatus.SCRAPPED,
        location=LocationEffect.CLEAR,
        ticket=TicketEffect.CLEAR,
    ),
    SerialOperation.ADJUST: TransitionRule(
        movement_type=SerialMovementType.ADJUST,
        allowed_from=ALL_STATUSES,
        target_status=None,
        location=LocationEffect.SET_OR_KEEP,
        ticket=TicketEffect.SET_OR_KEEP,
    ),
}


@dataclass(frozen=True)
class SerialState:
    status: SerialStatus
    location_id: str | None
    ticket_id: str | None
    site_id: str | None


@dataclass(frozen=True)
class TransitionPlan:
    operation: SerialOperation
    movement_type: SerialMovementType
    before: SerialState
    after: SerialState
    # Ticket the movement refers to: the new one on deploy/reserve, the released one on return/unreserve.
    movement_ticket_id: str | None


def can_apply(current: SerialStatus, operation: SerialOperation) -> bool:
    return current in TRANSITIONS[operation].allowed_from


def plan_transition(
    operation: SerialOperation,
    before: SerialState,
    *,
    target_status: SerialStatus | None = None,
    location_id: str | None = None,
    ticket_id: str | None = None,
    site_id: str | None = None,
) -> TransitionPlan:
    rule = TRANSITIONS[operation]
    if not can_apply(before.status, operation):
        raise InvalidTransitionError(before.status, operation)

    if operation == SerialOperation.ADJUST:
        if target_status is None:
            raise ValidationError("adjust requires a target status")
        status = target_status
    else:
        status = rule.target_status or before.status

    location_effect = rule.location
    ticket_effect = rule.ticket
    if operation == SerialOperation.ADJUST:
        if status == SerialStatus.DEPLOYED:
            location_effect = LocationEffect.CLEAR
        elif status == SerialStatus.SCRAPPED:
            location_effect = LocationEffect.CLEAR
            ticket_effect = TicketEffect.CLEAR
        if status in STOCKED_STATUSES:
            ticket_effect = TicketEffect.CLEAR

    new_location = _apply_location(location_effect, before.location_id, location_id)
    new_ticket, new_site = _apply_ticket(ticket_effect, before, ticket_id, site_id)

    if rule.requires_location and new_location is None:
        raise ValidationError(f"{operation} requires a location")
    if (rule.requires_ticket or status == SerialStatus.DEPLOYED) and new_ticket is None:
        raise ValidationError(f"{operation} requires a ticket")

    after = SerialState(status=status, location_id=new_location, ticket_id=new_ticket, site_id=new_site)
    check_invariants(after)

    if ticket_effect == TicketEffect.CLEAR:
        movement_ticket_id = before.ticket_id
    else:
        movement_ticket_id = new_ticket
    return TransitionPlan(
        operation=operation,
        movement_type=rule.movement_type,
        before=before,
        after=after,
        movement_ticket_id=movement_ticket_id,
    )


def _apply_location(effect: LocationEffect, current: str | None, requested: str | None) -> str | None:
    if effect == LocationEffect.CLEAR:
        return None
    if effect == LocationEffect.SET:
        return requested
    if effect == LocationEffect.SET_OR_KEEP:
        return requested if requested is not None else current
    return current


def _apply_ticket(
    effect: TicketEffect,
    before: SerialState,
    ticket_id: str | None,
    site_id: str | None,
) -> tuple[str | None, str | None]:
    if effect == TicketEffect.CLEAR:
        return None, None
    if effect == TicketEffect.SET:
        return ticket_id, site_id
    if effect == TicketEffect.SET_OR_KEEP and ticket_id is not None:
        return ticket_id, site_id
    return before.ticket_id, before.site_id


def check_invariants(state: SerialState) -> None:
    if state.status == SerialStatus.DEPLOYED:
        if state.location_id is not None or state.ticket_id is None:
            raise ValidationError("deployed unit must have a ticket and no location")
    if state.status in STOCKED_STATUSES:
        if state.ticket_id is not None or state.site_id is not None:
            raise ValidationError(f"{state.status} unit cannot carry a ticket or site")


def replay(steps: Iterable[tuple[SerialStatus, str | None]]) -> tuple[SerialStatus | None, str | None]:
    """Fold (to_status, to_location_id) pairs, oldest first, into the resulting state."""
    status: SerialStatus | None = None
    location_id: str | None = None
    for to_status, to_location_id in steps:
        status = to_status
        location_id = to_location_id
    return status, location_id
