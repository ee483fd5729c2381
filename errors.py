# errors.py - error taxonomy of the library engine
# Every error carries a message that can be shown to the user as-is.


class LibraryError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class StoreError(LibraryError):
    """A data-store read or write failed (session already rolled back)."""
    status_code = 503


class ScopeResolutionFailure(LibraryError):
    """A lookup needed by a special-case mapping did not resolve.

    Caught inside the resolver and degraded to the all-categories scope.
    """


class InvalidSelection(LibraryError):
    pass


class InvalidResourceLink(LibraryError):
    pass


class SuggestionTransitionConflict(LibraryError):
    status_code = 409


class ResourceCreationFailure(LibraryError):
    status_code = 502


class ModerationForbidden(LibraryError):
    status_code = 403


class InvalidInput(LibraryError):
    """A submitted form is missing a required field or has a malformed value."""


class RecordNotFound(LibraryError):
    status_code = 404
