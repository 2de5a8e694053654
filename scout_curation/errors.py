"""Exceptions raised across the curation pipeline."""


class ScoutCurationError(Exception):
    """Base class for all curation errors."""


class FilterValidationError(ScoutCurationError, ValueError):
    """Filter options are inconsistent (raised before any analysis work)."""


class PreferencesNotLoadedError(ScoutCurationError, RuntimeError):
    """The suggestion store was used before user preferences were loaded."""


class SuggestionNotFoundError(ScoutCurationError, KeyError):
    """No suggestion exists with the requested id."""

    def __init__(self, suggestion_id: str):
        super().__init__(suggestion_id)
        self.suggestion_id = suggestion_id

    def __str__(self) -> str:
        return f"Suggestion not found: {self.suggestion_id}"


class SuggestionStateError(ScoutCurationError, RuntimeError):
    """A lifecycle transition was requested from a terminal state."""


class ModelInitializationError(ScoutCurationError, RuntimeError):
    """The local vision model could not be loaded."""


class CollaboratorError(ScoutCurationError):
    """A remote collaborator (description, hashing, mutation) failed."""
