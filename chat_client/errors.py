class SessionError(Exception):
    """A client action was refused locally; nothing was sent to the relay."""


class MediaUnavailableError(SessionError):
    """Local camera/microphone could not be captured."""
