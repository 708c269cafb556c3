class CasinoError(ValueError):
    """Business error reported to the caller as {"error": code, "message": ...}."""

    code = "bad_request"
    status = 400

    def __init__(self, message=None, code=None):
        super().__init__(message or self.code)
        if code:
            self.code = code

    @property
    def message(self):
        return str(self)


class ValidationError(CasinoError):
    code = "invalid_input"


class NotAuthenticated(CasinoError):
    code = "not_authenticated"
    status = 401


class InvalidCredentials(CasinoError):
    code = "invalid_credentials"
    status = 401


class UsernameTaken(CasinoError):
    code = "user_exists"
    status = 409


class InsufficientBalance(CasinoError):
    code = "insufficient_balance"


class GameNotFound(CasinoError):
    code = "game_not_found"
