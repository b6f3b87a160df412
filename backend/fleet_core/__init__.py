# Fleet core: unit projection, alert reconciliation, lifecycle commands
from fleet_core.context import FleetContext
from fleet_core.errors import FleetError, InvalidTransitionError, LotConflictError, StoreUnavailableError
from fleet_core.notifications import ChangeNotifier, EntityType
from fleet_core.projector import project_unit, project_units
from fleet_core.sequencer import ReconciliationLoop, Trigger
from fleet_core.transitions import UnitCommand, apply_command, can_apply
from fleet_core.unit_state import AlertSeverity, AlertType, UnitLocation, UnitState, UnitStatus

__all__ = [
    "AlertSeverity",
    "AlertType",
    "ChangeNotifier",
    "EntityType",
    "FleetContext",
    "FleetError",
    "InvalidTransitionError",
    "LotConflictError",
    "ReconciliationLoop",
    "StoreUnavailableError",
    "Trigger",
    "UnitCommand",
    "UnitLocation",
    "UnitState",
    "UnitStatus",
    "apply_command",
    "can_apply",
    "project_unit",
    "project_units",
]
