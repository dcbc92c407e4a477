from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, Index, UniqueConstraint
from sqlmodel import Field, SQLModel

from serialstock.domain.state_machine import SerialMovementType, SerialStatus


def now_utc() -> datetime:
    return datetime.now(UTC)


def normalize_serial_no(value: str) -> str:
    return value.strip().upper()


class EventRecord(SQLModel, table=True):
    __tablename__ = "events"

    event_id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    event_type: str = Field(index=True)
    ts: datetime = Field(default_factory=now_utc, index=True)
    actor_id: str | None = Field(default=None, index=True)
    correlation_id: str | None = Field(default=None, index=True)
    payload: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    actor_id: str | None = Field(default=None, index=True)
    action: str
    resource: str
    method: str
    status_code: int
    ts: datetime = Field(default_factory=now_utc, index=True)
    detail: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class StockLocationType(StrEnum):
    WAREHOUSE = "warehouse"
    VEHICLE = "vehicle"
    TECHNICIAN = "technician"


class StockModel(SQLModel, table=True):
    __tablename__ = "stock_models"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    code: str = Field(index=True, unique=True)
    name: str
    has_serial: bool = Field(default=False, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class StockLocation(SQLModel, table=True):
    __tablename__ = "stock_locations"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    code: str = Field(index=True, unique=True)
    name: str
    location_type: StockLocationType = Field(default=StockLocationType.WAREHOUSE, index=True)
    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class SerialItem(SQLModel, table=True):
    __tablename__ = "serial_items"
    __table_args__ = (
        UniqueConstraint("model_id", "serial_no", name="uq_serial_items_model_serial"),
        Index("ix_serial_items_model_status", "model_id", "status"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    model_id: str = Field(foreign_key="stock_models.id", index=True)
    serial_no: str = Field(index=True)
    status: SerialStatus = Field(default=SerialStatus.IN_STOCK, index=True)
    location_id: str | None = Field(default=None, foreign_key="stock_locations.id", index=True)
    ticket_id: str | None = Field(default=None, index=True)
    site_id: str | None = Field(default=None, index=True)
    received_at: datetime = Field(default_factory=now_utc, index=True)
    received_by: str | None = None
    notes: str | None = None
    version: int = Field(default=1)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class SerialMovement(SQLModel, table=True):
    __tablename__ = "serial_movements"
    __table_args__ = (
        UniqueConstraint("serial_item_id", "sequence", name="uq_serial_movements_item_sequence"),
        Index("ix_serial_movements_item_performed", "serial_item_id", "performed_at"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    serial_item_id: str = Field(foreign_key="serial_items.id", index=True)
    sequence: int
    movement_type: SerialMovementType = Field(index=True)
    from_location_id: str | None = Field(default=None, foreign_key="stock_locations.id")
    to_location_id: str | None = Field(default=None, foreign_key="stock_locations.id")
    from_status: SerialStatus | None = None
    to_status: SerialStatus
    ticket_id: str | None = Field(default=None, index=True)
    performed_by: str = Field(index=True)
    performed_at: datetime = Field(default_factory=now_utc, index=True)
    notes: str | None = None


class EventEnvelope(BaseModel):
    event_id: str = PydanticField(default_factory=lambda: str(uuid4()))
    event_type: str
    ts: datetime = PydanticField(default_factory=now_utc)
    actor_id: str | None = None
    correlation_id: str | None = None
    payload: dict[str, Any] = PydanticField(default_factory=dict)


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, protected_namespaces=())


class StockModelCreate(BaseModel):
    code: str = PydanticField(min_length=1, max_length=100)
    name: str = PydanticField(min_length=1, max_length=200)
    has_serial: bool = False


class StockModelRead(ORMReadModel):
    id: str
    code: str
    name: str
    has_serial: bool
    created_at: datetime


class StockLocationCreate(BaseModel):
    code: str = PydanticField(min_length=1, max_length=100)
    name: str = PydanticField(min_length=1, max_length=200)
    location_type: StockLocationType = StockLocationType.WAREHOUSE
    is_active: bool = True


class StockLocationRead(ORMReadModel):
    id: str
    code: str
    name: str
    location_type: StockLocationType
    is_active: bool
    created_at: datetime


class SerialReceiveItem(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model_id: str = PydanticField(min_length=1)
    serial_no: str
    notes: str | None = None

    @field_validator("serial_no")
    @classmethod
    def _normalize(cls, value: str) -> str:
        normalized = normalize_serial_no(value)
        if not normalized:
            raise ValueError("serial_no must not be empty")
        return normalized


class SerialReceiveRequest(BaseModel):
    location_id: str = PydanticField(min_length=1)
    items: list[SerialReceiveItem] = PydanticField(min_length=1)


class SerialTransferRequest(BaseModel):
    to_location_id: str = PydanticField(min_length=1)
    notes: str | None = None


class SerialReserveRequest(BaseModel):
    ticket_id: str | None = None
    notes: str | None = None


class SerialDeployRequest(BaseModel):
    ticket_id: str = PydanticField(min_length=1)
    site_id: str | None = None
    notes: str | None = None


class SerialReturnRequest(BaseModel):
    to_location_id: str = PydanticField(min_length=1)
    notes: str | None = None


class SerialRepairRequest(BaseModel):
    to_location_id: str | None = None
    notes: str | None = None


class SerialNoteRequest(BaseModel):
    notes: str | None = None


class SerialStatusUpdateRequest(BaseModel):
    status: SerialStatus
    location_id: str | None = None
    ticket_id: str | None = None
    site_id: str | None = None
    notes: str | None = None


class SerialItemRead(ORMReadModel):
    id: str
    model_id: str
    serial_no: str
    status: SerialStatus
    location_id: str | None
    ticket_id: str | None
    site_id: str | None
    received_at: datetime
    received_by: str | None
    notes: str | None
    version: int
    created_at: datetime
    updated_at: datetime
    model_code: str | None = None
    model_name: str | None = None
    location_code: str | None = None
    location_name: str | None = None


class SerialItemPage(BaseModel):
    items: list[SerialItemRead]
    total: int
    limit: int
    offset: int


class SerialReceiveFailure(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    serial_no: str
    model_id: str
    error: str


class SerialReceiveResult(BaseModel):
    received: list[SerialItemRead]
    failed: list[SerialReceiveFailure]


class SerialMovementRead(ORMReadModel):
    id: str
    serial_item_id: str
    sequence: int
    movement_type: SerialMovementType
    from_location_id: str | None
    to_location_id: str | None
    from_status: SerialStatus | None
    to_status: SerialStatus
    ticket_id: str | None
    performed_by: str
    performed_at: datetime
    notes: str | None
    from_location_name: str | None = None
    to_location_name: str | None = None


class SerialConsistencyRead(BaseModel):
    serial_item_id: str
    registry_status: SerialStatus
    registry_location_id: str | None
    replayed_status: SerialStatus | None
    replayed_location_id: str | None
    movement_count: int
    consistent: bool


class SerialSummaryRead(BaseModel):
    by_status: dict[str, int]
    total_serials: int
    active_locations: int
    recent_movements: list[SerialMovementRead]
