from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from serialstock.domain.state_machine import SerialOperation, SerialStatus


class SerialStockError(Exception):
    pass


class NotFoundError(SerialStockError):
    pass


class ValidationError(SerialStockError):
    pass


class InvalidTransitionError(SerialStockError):
    def __init__(self, current: SerialStatus, operation: SerialOperation) -> None:
        super().__init__(f"illegal transition: {operation} not allowed from {current}")
        self.current = current
        self.operation = operation


class ConflictingTransitionError(SerialStockError):
    """Another transition committed first; re-read the asset before retrying."""

    def __init__(self, asset_id: str) -> None:
        super().__init__(f"serial item {asset_id} was changed by a concurrent transition")
        self.asset_id = asset_id


class DuplicateSerialError(SerialStockError):
    def __init__(self, model_id: str, serial_no: str) -> None:
        super().__init__(f"serial number {serial_no} already exists for model {model_id}")
        self.model_id = model_id
        self.serial_no = serial_no
