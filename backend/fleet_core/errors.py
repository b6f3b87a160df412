"""Errors raised by the fleet core. Not-found is not an error: handlers return None."""


class FleetError(Exception):
    """Base class for fleet core errors."""


class InvalidTransitionError(FleetError):
    """Command attempted from a state that does not allow it."""

    def __init__(self, command: str, status: str, reason: str | None = None) -> None:
        self.command = command
        self.status = status
        self.reason = reason or f"{command!r} is not allowed from status {status!r}"
        super().__init__(self.reason)


class LotConflictError(FleetError):
    """Lot code already registered to another unit."""

    def __init__(self, lot: str, existing_code: str | None = None) -> None:
        self.lot = lot
        self.existing_code = existing_code
        if existing_code:
            msg = f"Lot {lot!r} already belongs to unit {existing_code}"
        else:
            msg = f"Lot {lot!r} already exists"
        super().__init__(msg)


class StoreUnavailableError(FleetError):
    """The unit/alert store could not complete a write."""
