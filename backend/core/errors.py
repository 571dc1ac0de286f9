"""Error kinds raised by the dispatch engine and its stores."""

from typing import Optional


class DispatchError(Exception):
    """Base class for every engine error."""

    kind = "DispatchError"


class NotFound(DispatchError):
    """An order, agent or warehouse id could not be resolved."""

    kind = "NotFound"

    def __init__(self, entity: str, entity_id: Optional[str]):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class InvalidStateTransition(DispatchError):
    """A lifecycle operation was attempted from the wrong state."""

    kind = "InvalidStateTransition"

    def __init__(self, entity: str, entity_id: str, current, target):
        self.entity = entity
        self.entity_id = entity_id
        self.current = current
        self.target = target
        current_name = getattr(current, "value", current)
        target_name = getattr(target, "value", target)
        super().__init__(f"{entity} {entity_id} cannot move from {current_name} to {target_name}")


class InvalidConfirmationCode(DispatchError):
    """Delivery confirmation code did not match the one issued at pickup."""

    kind = "InvalidConfirmationCode"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Invalid confirmation code for order {order_id}")


class NoEligibleAgent(DispatchError):
    """No agent satisfies capacity and proximity for a cluster."""

    kind = "NoEligibleAgent"

    def __init__(self, order_ids, capacity):
        self.order_ids = list(order_ids)
        self.capacity = capacity
        super().__init__(
            f"No eligible {getattr(capacity, 'value', capacity)} agent for orders {self.order_ids}"
        )


class MissingGeoData(DispatchError):
    """An order's warehouse is unresolved or lacks coordinates."""

    kind = "MissingGeoData"

    def __init__(self, order_id: str, reason: str):
        self.order_id = order_id
        self.reason = reason
        super().__init__(f"Order {order_id} skipped: {reason}")


class ConcurrentModification(DispatchError):
    """Lost a race on a store write; the entity changed since it was read."""

    kind = "ConcurrentModification"

    def __init__(self, entity: str, entity_id: str, detail: str = ""):
        self.entity = entity
        self.entity_id = entity_id
        message = f"{entity} {entity_id} was modified concurrently"
        super().__init__(f"{message}: {detail}" if detail else message)


class StoreUnavailable(DispatchError):
    """The backing store failed or could not be reached."""

    kind = "StoreUnavailable"
