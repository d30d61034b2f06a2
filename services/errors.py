"""
services/errors.py
------------------
Exceptions raised by the series services.
Validation and calendar errors live next to the code that raises them
(services/validation.py, services/date_calculator.py).
"""

from models.recurring import SeriesStatus


class SeriesNotFoundError(LookupError):
    """No series with this id (for this owner)."""

    def __init__(self, series_id: int):
        super().__init__(f"Recurring series #{series_id} not found")
        self.series_id = series_id


class InvalidTransitionError(ValueError):
    """The requested lifecycle action is not allowed from the current status."""

    def __init__(self, series_id, status: SeriesStatus, action: str):
        super().__init__(f"Cannot {action} series #{series_id} while it is {status.value}")
        self.series_id = series_id
        self.status = status
        self.action = action


class ConcurrentUpdateError(RuntimeError):
    """A series kept changing underneath a write; the caller may retry later."""

    def __init__(self, series_id: int, attempts: int):
        super().__init__(f"Series #{series_id} changed concurrently {attempts} times")
        self.series_id = series_id
        self.attempts = attempts


class UnrecordedGenerationError(RuntimeError):
    """A document was delivered but storing the outcome failed."""

    def __init__(self, series_id: int, sequence: int, document_id: int, cause: Exception):
        super().__init__(
            f"Cycle {sequence} of series #{series_id} was generated as document "
            f"#{document_id} but could not be recorded: {cause}"
        )
        self.series_id = series_id
        self.sequence = sequence
        self.document_id = document_id
