"""Error taxonomy for the activation service.

Every error carries a human readable ``message`` that the HTTP layer
returns verbatim in ``{"ok": false, "message": ...}`` payloads.
"""


class ActivationError(Exception):
    message = 'Activation error'

    def __init__(self, message=None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class NotFound(ActivationError):
    message = 'Activation code does not exist'


class Deactivated(ActivationError):
    message = 'Activation code has been deactivated'


class Expired(ActivationError):
    message = 'Activation code has expired'


class DeviceMismatch(ActivationError):
    message = 'Activation code is already used by another device, please contact the administrator'


class NotBound(ActivationError):
    message = 'Activation code is not bound to a device'


class InvalidRequest(ActivationError):
    message = 'Invalid request'


class GenerationExhausted(ActivationError):
    message = 'Unable to generate a unique activation code, try a different prefix'


class StoreError(ActivationError):
    """Raised by the remote document store."""
    message = 'Remote store error'


class Conflict(StoreError):
    message = 'Remote document changed since it was fetched'


class TransportError(StoreError):
    message = 'Remote store request failed'


class NotConfigured(StoreError):
    message = 'Remote store is not configured'


class MalformedDocument(StoreError):
    message = 'Remote document is not valid JSON'


class RemoteNotFound(StoreError, NotFound):
    message = 'Remote codes document not found'
