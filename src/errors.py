UNKNOWN_MESSAGE_CODE = 10008


class RoleBotError(Exception):
    pass


class PlatformApiError(RoleBotError):
    def __init__(self, operation: str, detail: str, *, code: int | None = None) -> None:
        super().__init__(f"{operation} failed: {detail}")
        self.operation = operation
        self.code = code


class UnknownMessageError(PlatformApiError):
    """The referenced message no longer exists on the platform."""


class PersistenceError(RoleBotError):
    pass
