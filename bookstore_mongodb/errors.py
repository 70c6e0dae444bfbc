class BookstoreError(Exception):
    """Base class for errors raised by this package."""


class NotFoundError(BookstoreError):
    """An update or delete matched zero documents."""


class ValidationError(BookstoreError, ValueError):
    """A payload references an unknown field or carries an invalid value."""


class StoreUnavailableError(BookstoreError):
    """The MongoDB server could not be reached."""
