"""
Domain errors raised by the matching and allocation services.

Every error is local to the failed call: the unit of work that raised it is
rolled back and the process carries on. The API layer turns them into JSON
responses using ``status_code``.
"""


class EngineError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(EngineError):
    status_code = 404


class ValidationError(EngineError):
    status_code = 422


class InsufficientInventory(EngineError):
    status_code = 409

    def __init__(self, resource_id: int, requested: int, available: int):
        super().__init__(
            f"Resource {resource_id} has {available} units available, {requested} requested"
        )
        self.resource_id = resource_id
        self.requested = requested
        self.available = available


class OverRequested(EngineError):
    status_code = 409

    def __init__(self, request_id: int, requested: int, allocated: int, quantity: int):
        super().__init__(
            f"Demand request {request_id} needs {requested} units; "
            f"{allocated} already allocated, cannot add {quantity}"
        )
        self.request_id = request_id
        self.requested = requested
        self.allocated = allocated
        self.quantity = quantity


class Conflict(EngineError):
    """Lost a race for a locked row; re-read and retry."""

    status_code = 409
