"""Process-scoped fleet context: last good projection and the locally displayed alert set."""
import threading
from datetime import datetime
from typing import Iterable, Optional

from fleet_core.alert_rules import DesiredAlert
from fleet_core.notifications import ChangeNotifier
from fleet_core.unit_state import UnitState


class FleetContext:
    """
    Constructed once at startup and closed at shutdown. The reconciliation pass replaces
    its views; API handlers only read it, apart from forgetting a dismissed alert, and
    fall back to it when the store is unavailable.
    """

    def __init__(self, notifier: Optional[ChangeNotifier] = None) -> None:
        self.notifier = notifier or ChangeNotifier()
        self._lock = threading.Lock()
        # Held for the whole of a reconciliation pass so passes never overlap.
        self.reconcile_lock = threading.Lock()
        self._units: dict[str, UnitState] = {}
        self._alerts: list[DesiredAlert] = []
        self._dismissed_ids: set[str] = set()
        self.last_projected_at: Optional[datetime] = None
        self.last_reconciled_at: Optional[datetime] = None
        self.store_available = True

    @property
    def units(self) -> list[UnitState]:
        """Last projected units."""
        with self._lock:
            return list(self._units.values())

    def get_unit(self, unit_id: str) -> Optional[UnitState]:
        with self._lock:
            return self._units.get(unit_id)

    @property
    def alerts(self) -> list[DesiredAlert]:
        """Alerts currently shown to operators."""
        with self._lock:
            return list(self._alerts)

    @property
    def dismissed_ids(self) -> set[str]:
        """Alert ids known to be dismissed, so an offline pass does not show them again."""
        with self._lock:
            return set(self._dismissed_ids)

    def record_projection(self, units: Iterable[UnitState], at: datetime) -> None:
        """Replace the projected unit view."""
        with self._lock:
            self._units = {u.id: u for u in units}
            self.last_projected_at = at

    def record_alerts(
        self,
        alerts: Iterable[DesiredAlert],
        at: datetime,
        dismissed_ids: Optional[Iterable[str]] = None,
    ) -> None:
        """Replace the displayed alert view (and the known dismissed ids, when given)."""
        with self._lock:
            self._alerts = list(alerts)
            if dismissed_ids is not None:
                self._dismissed_ids = set(dismissed_ids)
            self.last_reconciled_at = at

    def forget_alert(self, alert_id: str) -> bool:
        """Drop an alert from the displayed view after dismissal. Returns True if it was shown."""
        with self._lock:
            before = len(self._alerts)
            self._alerts = [a for a in self._alerts if a.id != alert_id]
            self._dismissed_ids.add(alert_id)
            return len(self._alerts) != before

    def close(self) -> None:
        """Tear down: drop cached state and notification subscribers."""
        with self._lock:
            self._units.clear()
            self._alerts.clear()
            self._dismissed_ids.clear()
            self.last_projected_at = None
            self.last_reconciled_at = None
        self.notifier.clear()
