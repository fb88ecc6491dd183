"""Domain errors shared by the inventory, boards and users modules.

Every error knows how to render itself for the JSON API:
``to_dict()`` returns ``{"error_kind": ..., "message": ...}`` plus any
extra detail (shortfalls for stock errors).

``retryable`` marks the errors a caller may retry immediately or with
backoff: neither leaves a partial effect behind.
"""

from dataclasses import asdict, dataclass
from typing import Iterable, List, Optional


@dataclass(frozen=True)
class Shortfall:
    """A BOM line (or single stock request) that cannot be covered."""

    part_id: str
    required: int
    available: int


class InventoryError(Exception):
    kind = "InventoryError"
    status_code = 400
    retryable = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error_kind": self.kind, "message": self.message}


class InvalidInput(InventoryError):
    kind = "InvalidInput"
    status_code = 400


class PermissionDenied(InventoryError):
    kind = "PermissionDenied"
    status_code = 403


class PartNotFound(InventoryError):
    kind = "PartNotFound"
    status_code = 404


class BoardNotFound(InventoryError):
    kind = "BoardNotFound"
    status_code = 404


class InsufficientStock(InventoryError):
    kind = "InsufficientStock"
    status_code = 409

    def __init__(self, message: str, shortfalls: Optional[Iterable[Shortfall]] = None) -> None:
        super().__init__(message)
        self.shortfalls: List[Shortfall] = list(shortfalls or [])

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["shortfalls"] = [asdict(s) for s in self.shortfalls]
        return data


class ConcurrentConflict(InventoryError):
    kind = "ConcurrentConflict"
    status_code = 409
    retryable = True


class PersistenceFailure(InventoryError):
    kind = "PersistenceFailure"
    status_code = 503
    retryable = True
