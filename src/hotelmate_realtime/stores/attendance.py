"""
Attendance store — staff duty status and per-department aggregates.

Department counts are recomputed from every known staff member in that
department whenever one of them changes.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

from hotelmate_realtime.dedup import DEFAULT_WINDOW_S, WindowedDeduplicator
from hotelmate_realtime.models.envelope import Category, Envelope
from hotelmate_realtime.models.state import Action, AttendanceState, coerce_id
from hotelmate_realtime.stores.base import DomainStore

logger = logging.getLogger(__name__)


class AttendanceAction:
    INIT_FROM_API = "INIT_FROM_API"
    INIT_DEPARTMENT_SUMMARY = "INIT_DEPARTMENT_SUMMARY"
    UPDATE_CLOCK_STATUS = "UPDATE_CLOCK_STATUS"
    UPDATE_PERSONAL_STATUS = "UPDATE_PERSONAL_STATUS"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def summarize_department(staff: Iterable[dict[str, Any]], department: str) -> dict[str, int]:
    members = [s for s in staff if s.get("department") == department]
    return {
        "on_duty_count": sum(1 for s in members if s.get("duty_status") == "on_duty"),
        "on_break_count": sum(1 for s in members if s.get("duty_status") == "on_break"),
        "off_duty_count": sum(1 for s in members if s.get("duty_status") in ("off_duty", None, "")),
        "total": len(members),
    }


class AttendanceStore(DomainStore[AttendanceState]):
    category = Category.ATTENDANCE
    state_class = AttendanceState

    def __init__(
        self,
        window_s: float = DEFAULT_WINDOW_S,
        clock: Optional[Callable[[], float]] = None,
        **kwargs: Any,
    ):
        if "dedup" not in kwargs:
            kwargs["dedup"] = WindowedDeduplicator(window_s, clock or time.monotonic)
        super().__init__(**kwargs)

    def reducers(self):
        A = AttendanceAction
        return {
            A.INIT_FROM_API: self._init_from_api,
            A.INIT_DEPARTMENT_SUMMARY: self._init_department_summary,
            A.UPDATE_CLOCK_STATUS: self._update_clock_status,
            A.UPDATE_PERSONAL_STATUS: self._update_personal_status,
        }

    def event_handlers(self):
        clock = self._on_clock_status
        personal = self._on_personal_status
        return {
            "clock_status_updated": clock,
            "clock-status-updated": clock,
            "clock-status-changed": clock,
            "attendance_update": clock,
            "timesheet-approved": personal,
            "timesheet-rejected": personal,
            "personal-attendance-update": personal,
            "log-approved": personal,
            "log-rejected": personal,
            "log_approved": personal,
            "log_rejected": personal,
        }

    def _init_from_api(self, state: AttendanceState, payload: dict[str, Any]) -> AttendanceState:
        staff_data = payload.get("staff") or []
        if isinstance(staff_data, dict):
            staff_data = list(staff_data.values())
        staff_by_id = dict(state.staff_by_id)
        for staff in staff_data:
            if staff and staff.get("id") is not None:
                staff_by_id[coerce_id(staff["id"])] = staff
        return state.model_copy(update={
            "staff_by_id": staff_by_id,
            "current_user_status": payload.get("current_user") or state.current_user_status,
        })

    def _init_department_summary(self, state: AttendanceState, payload: dict[str, Any]) -> AttendanceState:
        return state.model_copy(update={"by_department": {**state.by_department, **payload.get("departments", {})}})

    def _update_clock_status(self, state: AttendanceState, payload: dict[str, Any]) -> AttendanceState:
        staff_id = coerce_id(payload.get("staff_id") or payload.get("user_id"))
        if staff_id is None:
            logger.warning("[attendance] Clock status without staff id: %s", payload)
            return state

        updated = {**state.staff_by_id.get(staff_id, {}), **payload, "id": staff_id, "last_updated": _now()}
        staff_by_id = {**state.staff_by_id, staff_id: updated}

        by_department = state.by_department
        department = updated.get("department")
        if department:
            by_department = {**by_department, department: summarize_department(staff_by_id.values(), department)}
        return state.model_copy(update={"staff_by_id": staff_by_id, "by_department": by_department})

    def _update_personal_status(self, state: AttendanceState, payload: dict[str, Any]) -> AttendanceState:
        return state.model_copy(update={
            "current_user_status": {**(state.current_user_status or {}), **payload, "last_updated": _now()},
        })

    def _on_clock_status(self, envelope: Envelope, staff_id: Any) -> None:
        self.dispatch(Action(AttendanceAction.UPDATE_CLOCK_STATUS, {**envelope.payload, "staff_id": staff_id}))

    def _on_personal_status(self, envelope: Envelope, staff_id: Any) -> None:
        self.dispatch(Action(AttendanceAction.UPDATE_PERSONAL_STATUS, dict(envelope.payload)))

    def init_from_api(self, staff: Any, current_user: Optional[dict[str, Any]] = None) -> None:
        self.dispatch(Action(AttendanceAction.INIT_FROM_API, {"staff": staff, "current_user": current_user}))

    def init_department_summary(self, departments: dict[str, dict[str, int]]) -> None:
        self.dispatch(Action(AttendanceAction.INIT_DEPARTMENT_SUMMARY, {"departments": departments}))
