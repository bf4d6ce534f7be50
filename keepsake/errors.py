"""Error taxonomy for the submission-to-fulfillment pipeline.

Every error carries the HTTP status it maps to. Errors raised by a
collaborator (storage, Stripe, SMTP) keep their detail for the logs and
expose only a generic message to the caller.
"""


class KeepsakeError(Exception):
    status_code = 500
    public = False
    generic_message = "Something went wrong. Please try again."

    def __init__(self, message=None):
        super().__init__(message or self.generic_message)
        self.message = message or self.generic_message

    @property
    def public_message(self):
        return self.message if self.public else self.generic_message


class ValidationError(KeepsakeError):
    """Bad or missing request data."""

    status_code = 400
    public = True


class InvalidItem(ValidationError):
    """A cart line references an unknown plan or a bad quantity."""


class NotFound(KeepsakeError):
    status_code = 404
    public = True
    generic_message = "Not found."


class AuthError(KeepsakeError):
    """Webhook signature could not be verified."""

    status_code = 400
    public = True
    generic_message = "Invalid signature"


class StorageError(KeepsakeError):
    generic_message = "Failed to store uploaded files."


class PaymentProviderError(KeepsakeError):
    generic_message = "Payment provider error. Please try again."


class MailError(KeepsakeError):
    generic_message = "Failed to send email."
