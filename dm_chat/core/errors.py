class ChatError(Exception):
    """Base for errors that map onto an HTTP status and a client-safe message."""

    status_code = 500
    default_message = "Server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthorized(ChatError):
    status_code = 401
    default_message = "Unauthorized"


class InvalidInput(ChatError):
    status_code = 400
    default_message = "Invalid input"


class InvalidRecipient(InvalidInput):
    default_message = "Invalid recipient id"


class NotFound(ChatError):
    status_code = 404
    default_message = "Not found"


class ServerError(ChatError):
    pass
