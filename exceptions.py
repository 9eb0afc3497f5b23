class LibraryError(Exception):
    """Base exception for library system errors."""


class NotFound(LibraryError):
    """Referenced book, member, transaction or reservation does not exist."""


class Conflict(LibraryError):
    """Duplicate active loan, duplicate reservation or duplicate username."""


class InvalidState(LibraryError):
    """The entity exists but is in the wrong state for the operation."""


class Unavailable(InvalidState):
    """No copies on the shelf and no AVAILABLE reservation for the member."""


class Forbidden(LibraryError):
    """The actor does not own the resource."""


class InvalidArgument(LibraryError):
    """Identifiers supplied together do not match, or a value is malformed."""


class StorageFailure(LibraryError):
    """The underlying persistence operation failed."""
