# dbedit/core/exceptions.py


class EditorError(Exception):
    """Base class for editor errors"""


class EditorConfigError(EditorError):
    """Raised for an invalid column configuration or an unknown callback name"""


class EditorRedirect(EditorError):
    """
    Terminal outcome of a request: the host must answer with a redirect.

    Raised after every mutating action and when a request refers to an
    editor instance that no longer exists.
    """

    def __init__(self, location: str):
        super().__init__(location)
        self.location = location


class EditorQueryError(EditorError):
    """A statement failed. Carries the SQL and the driver's message."""

    def __init__(self, sql: str, message: str):
        super().__init__(f"{sql}\n{message}")
        self.sql = sql
        self.message = message
