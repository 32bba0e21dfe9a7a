class ShopError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ShopError):
    """Bad input shape or range; raised before any side effect."""
    status_code = 400


class NotFoundError(ShopError):
    status_code = 404


class PermissionDenied(ShopError):
    status_code = 403


class SettlementError(ShopError):
    status_code = 502

    def __init__(self, step: str, cause: Exception, compensated: bool):
        if compensated:
            tail = "earlier steps were rolled back"
        else:
            tail = "some earlier steps could not be rolled back"
        super().__init__(f"Settlement failed at step '{step}' ({cause}); {tail}")
        self.step = step
        self.cause = cause
        self.compensated = compensated
