"""Typed errors raised by the configuration engine.

Services raise these; only the HTTP layer translates them into status codes.
"""
from typing import Optional


class EngineError(Exception):
    """Base class for all configuration-engine errors."""

    def to_dict(self) -> dict:
        return {"type": type(self).__name__, "message": str(self)}


class NotFoundError(EngineError, LookupError):
    """An entity (company, configuration, vehicle, section, field, ...) is missing."""

    def __init__(self, entity: str, entity_id: Optional[str] = None, message: Optional[str] = None):
        self.entity = entity
        self.entity_id = entity_id
        if message is None:
            message = f"{entity.capitalize()} not found"
            if entity_id is not None:
                message = f"{message}: {entity_id}"
        super().__init__(message)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({"entity": self.entity, "id": self.entity_id})
        return data


class ValidationError(EngineError, ValueError):
    """A structural invariant was violated. ``invariant`` names which one."""

    def __init__(self, invariant: str, message: str):
        self.invariant = invariant
        super().__init__(message)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["invariant"] = self.invariant
        return data


class ConflictError(EngineError):
    """The write would break a uniqueness rule (e.g. a second default config)."""

    def __init__(self, message: str, conflicting_id: Optional[str] = None):
        self.conflicting_id = conflicting_id
        super().__init__(message)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["id"] = self.conflicting_id
        return data
