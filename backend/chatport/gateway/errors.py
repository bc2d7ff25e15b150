"""Errors raised by persistence gateway implementations."""


class GatewayError(Exception):
    """A gateway call failed. The item is counted as failed."""


class TransientGatewayError(GatewayError):
    """A gateway call failed in a way that may succeed when retried."""


class EntityExistsError(GatewayError):
    """An entity with the requested id already exists."""

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} {entity_id!r} already exists")
        self.entity = entity
        self.entity_id = entity_id
