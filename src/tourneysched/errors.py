"""Exceptions raised by the scheduling core."""


class ConfigurationError(ValueError):
    """Invalid input: raised before any work is done, so there is no partial result."""

    def __init__(self, message: str, problems: list[str] | None = None):
        self.problems = list(problems or [])
        if self.problems:
            message = message + ":\n  " + "\n  ".join(self.problems)
        super().__init__(message)


class InfeasibleScheduleError(RuntimeError):
    """Not every pairing could be placed within the search horizon.

    ``placed`` is diagnostic only and must not be used as a schedule.
    """

    def __init__(self, message: str, placed: list, unplaced: list):
        super().__init__(message)
        self.placed = placed
        self.unplaced = unplaced
