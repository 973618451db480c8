# Overview: Error taxonomy shared by services and routes.

from __future__ import annotations


class PosError(Exception):
    """Base for every error the POS core raises on purpose."""

    status_code = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "details": self.details}


class ValidationError(PosError):
    """400-level input problem caught at the boundary."""
    status_code = 400


class NotFound(PosError):
    """Unknown SKU, cart or invoice."""
    status_code = 404


class InsufficientStock(PosError):
    """A reservation or negative delta would drive available stock below zero."""
    status_code = 409


class StaleReservation(PosError):
    """
    Commit-time re-validation failed: at least one line's hold expired or was
    released. The cart stays DRAFT; remove and re-add the listed lines.
    """
    status_code = 409


class InvalidTransition(PosError):
    """Lifecycle rule broken (e.g. voiding an invoice that is not COMMITTED)."""
    status_code = 409


class InvalidFilter(PosError):
    """Unknown analytics dimension or value, or an unusable time range."""
    status_code = 400


class InvariantViolation(PosError):
    """
    Fatal: stock went negative or rollups diverged from a replay.

    Never retried and never self-healed. Callers log it with full state and
    surface it for operator intervention.
    """
    status_code = 500
