"""Service-layer errors that map to HTTP responses."""

from typing import Optional


class ServiceError(RuntimeError):
    """Base error for control-surface failures."""

    status_code: int = 400

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.__class__.__name__
        super().__init__(self.message)


class RequestValidationError(ServiceError):
    status_code = 422


class RunNotFoundError(ServiceError):
    status_code = 404

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Run not found: {run_id}")
