from fastapi import HTTPException


class ValidationError(HTTPException):
    """Request rejected before any write (bad split, amounts, currency, category, membership)."""

    def __init__(self, detail: str):
        super().__init__(status_code=400, detail=detail)


class NotFoundError(HTTPException):
    """Entry missing, already deleted, or belonging to another group."""

    def __init__(self, detail: str):
        super().__init__(status_code=404, detail=detail)


class ConsistencyError(HTTPException):
    """A group's exclusive write section could not be acquired."""

    def __init__(self, detail: str):
        super().__init__(status_code=409, detail=detail)


class ExecutionError(HTTPException):
    """A scheduled action failed while executing; recorded in history, never raised to the scheduler."""

    def __init__(self, detail: str):
        super().__init__(status_code=422, detail=detail)
