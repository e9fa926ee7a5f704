"""Errors surfaced to the user by Burstwise."""


class BurstwiseError(Exception):
    """Base class for user-visible, non-fatal errors."""

    default_message = "Burstwise error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NoSelection(BurstwiseError):
    """An action needs a selected group but none is set."""

    default_message = "Select a burst group first"


class InsufficientImages(BurstwiseError):
    """Merge attempted with too few images."""

    default_message = "At least 2 images are required to merge"


class MergeInProgress(BurstwiseError):
    """A merge is already running for this session."""

    default_message = "A merge is already in progress"


class ExternalCallFailed(BurstwiseError):
    """A collaborator (watcher, analysis or merge) reported an error.

    The collaborator's message is passed through verbatim.
    """

    default_message = "External call failed"
