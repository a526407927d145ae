class JagwaxError(Exception):
    """Base class for recoverable assistant errors."""


class StorageError(JagwaxError):
    """Archive or registry persistence failed."""


class TransportError(JagwaxError):
    """A send or fetch through the messaging transport failed."""


class AuthorizationError(JagwaxError):
    """A privileged command was invoked by a non-privileged identity."""


class ValidationError(JagwaxError):
    """Command arguments were missing or malformed."""
