"""
Room service store — orders and the derived pending index.

`pending_orders` holds the ids of orders whose status is pending or preparing
and is re-synced by membership test on every create and update.
"""

import logging
from typing import Any, Optional

from hotelmate_realtime.models.envelope import Category, Envelope
from hotelmate_realtime.models.state import Action, RoomServiceState, coerce_id
from hotelmate_realtime.stores.base import DomainStore
from hotelmate_realtime.stores.lifecycle import allows_transition

logger = logging.getLogger(__name__)

PENDING_STATUSES = frozenset({"pending", "preparing"})
TERMINAL_STATUSES = frozenset({"completed", "delivered", "cancelled"})


class RoomServiceAction:
    INIT_ORDERS_FROM_API = "INIT_ORDERS_FROM_API"
    ORDER_CREATED = "ORDER_CREATED"
    ORDER_UPDATED = "ORDER_UPDATED"
    ORDER_STATUS_CHANGED = "ORDER_STATUS_CHANGED"
    ORDER_REOPENED = "ORDER_REOPENED"
    ORDER_DELETED = "ORDER_DELETED"
    SET_ACTIVE_ORDER = "SET_ACTIVE_ORDER"


def is_pending(order: dict[str, Any]) -> bool:
    return order.get("status") in PENDING_STATUSES


def _sync_pending(pending: list[Any], order_id: Any, order: dict[str, Any]) -> list[Any]:
    now_pending = is_pending(order)
    listed = order_id in pending
    if now_pending and not listed:
        return pending + [order_id]
    if not now_pending and listed:
        return [i for i in pending if i != order_id]
    return pending


class RoomServiceStore(DomainStore[RoomServiceState]):
    category = Category.ROOM_SERVICE
    state_class = RoomServiceState

    def reducers(self):
        A = RoomServiceAction
        return {
            A.INIT_ORDERS_FROM_API: self._init_orders,
            A.ORDER_CREATED: self._order_created,
            A.ORDER_UPDATED: self._order_updated,
            A.ORDER_STATUS_CHANGED: self._order_updated,
            A.ORDER_REOPENED: self._order_reopened,
            A.ORDER_DELETED: self._order_deleted,
            A.SET_ACTIVE_ORDER: self._set_active,
        }

    def event_handlers(self):
        created = self._on_created
        changed = self._on_status_changed
        return {
            "order_created": created,
            "new_room_service_order": created,
            "new_breakfast_order": created,
            "order_updated": changed,
            "order_status_changed": changed,
            "order_accepted": changed,
            "order_preparing": changed,
            "order_ready": changed,
            "order_delivered": changed,
            "order_completed": changed,
            "order_cancelled": changed,
            "order_reopened": self._on_reopened,
            "order_deleted": self._on_deleted,
        }

    def _init_orders(self, state: RoomServiceState, payload: dict[str, Any]) -> RoomServiceState:
        orders_by_id = dict(state.orders_by_id)
        pending: list[Any] = []
        for order in payload.get("orders") or []:
            if not order or order.get("id") is None:
                continue
            order_id = coerce_id(order["id"])
            orders_by_id[order_id] = order
            if is_pending(order):
                pending.append(order_id)
        return state.model_copy(update={"orders_by_id": orders_by_id, "pending_orders": pending})

    def _order_created(self, state: RoomServiceState, payload: dict[str, Any]) -> RoomServiceState:
        order = payload.get("order") or {}
        order_id = coerce_id(order.get("id"))
        if order_id is None:
            logger.warning("[room_service] ORDER_CREATED without order id: %s", order)
            return state
        if order_id in state.orders_by_id:
            # Replayed creation of a known order behaves as an update.
            return self._order_updated(state, {"order": order, "order_id": order_id})
        return state.model_copy(update={
            "orders_by_id": {**state.orders_by_id, order_id: order},
            "pending_orders": _sync_pending(state.pending_orders, order_id, order),
        })

    def _apply_update(self, state: RoomServiceState, payload: dict[str, Any], reopen: bool) -> RoomServiceState:
        order = payload.get("order") or {}
        order_id = coerce_id(payload.get("order_id") or order.get("id"))
        existing = state.orders_by_id.get(order_id)
        if order_id is None or existing is None:
            logger.warning("[room_service] Update for unknown order %s", order_id)
            return state
        if not allows_transition(self.name, order_id, existing, order, TERMINAL_STATUSES, reopen):
            return state
        updated = {**existing, **order, "id": existing.get("id", order_id)}
        return state.model_copy(update={
            "orders_by_id": {**state.orders_by_id, order_id: updated},
            "pending_orders": _sync_pending(state.pending_orders, order_id, updated),
        })

    def _order_updated(self, state: RoomServiceState, payload: dict[str, Any]) -> RoomServiceState:
        return self._apply_update(state, payload, reopen=False)

    def _order_reopened(self, state: RoomServiceState, payload: dict[str, Any]) -> RoomServiceState:
        return self._apply_update(state, payload, reopen=True)

    def _order_deleted(self, state: RoomServiceState, payload: dict[str, Any]) -> RoomServiceState:
        order_id = coerce_id(payload.get("order_id"))
        if order_id not in state.orders_by_id:
            logger.warning("[room_service] Delete for unknown order %s", order_id)
            return state
        orders_by_id = {k: v for k, v in state.orders_by_id.items() if k != order_id}
        return state.model_copy(update={
            "orders_by_id": orders_by_id,
            "pending_orders": [i for i in state.pending_orders if i != order_id],
            "active_order_id": None if state.active_order_id == order_id else state.active_order_id,
        })

    def _set_active(self, state: RoomServiceState, payload: dict[str, Any]) -> RoomServiceState:
        return state.model_copy(update={"active_order_id": coerce_id(payload.get("order_id"))})

    def _on_created(self, envelope: Envelope, order_id: Any) -> None:
        self.dispatch(Action(RoomServiceAction.ORDER_CREATED, {"order": {**envelope.payload, "id": order_id}}))

    def _on_status_changed(self, envelope: Envelope, order_id: Any) -> None:
        order = dict(envelope.payload)
        # order_accepted / order_ready ... imply their status when the payload omits it.
        if "status" not in order and envelope.type.startswith("order_") and envelope.type not in (
            "order_updated", "order_status_changed",
        ):
            order["status"] = envelope.type[len("order_"):]
        self.dispatch(Action(RoomServiceAction.ORDER_STATUS_CHANGED, {"order": order, "order_id": order_id}))

    def _on_reopened(self, envelope: Envelope, order_id: Any) -> None:
        self.dispatch(Action(RoomServiceAction.ORDER_REOPENED, {"order": dict(envelope.payload), "order_id": order_id}))

    def _on_deleted(self, envelope: Envelope, order_id: Any) -> None:
        self.dispatch(Action(RoomServiceAction.ORDER_DELETED, {"order_id": order_id}))

    def init_from_api(self, orders: list[dict[str, Any]]) -> None:
        self.dispatch(Action(RoomServiceAction.INIT_ORDERS_FROM_API, {"orders": orders}))

    def set_active_order(self, order_id: Optional[Any]) -> None:
        self.dispatch(Action(RoomServiceAction.SET_ACTIVE_ORDER, {"order_id": order_id}))
