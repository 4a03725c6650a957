"""Domain exceptions raised by the service layer.

Routers translate them to HTTP responses; workers log them. Gateway
transport errors never appear here: gateways wrap them first.
"""


class MemoraError(Exception):
    """Base class for domain errors."""


class NotFoundError(MemoraError):
    def __init__(self, entity: str, entity_id: object) -> None:
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class InvalidRequestError(MemoraError):
    """Input rejected by a service operation (maps to 422)."""


class ReplyGenerationError(MemoraError):
    """The completion gateway failed for a chat turn. Safe to retry."""

    retryable = True
