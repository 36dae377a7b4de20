class PictoVaultError(Exception):
    """Base error; ``status`` is the HTTP status the API layer answers with."""

    status = 500

    def __init__(self, message=""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class BadRequest(PictoVaultError):
    status = 400


class NotFound(PictoVaultError):
    status = 404

    def __init__(self, message="Pictogram not found"):
        super().__init__(message)


class RateLimited(PictoVaultError):
    status = 429

    def __init__(self, message="ARASAAC rate limit reached. Please retry shortly."):
        super().__init__(message)


class InternalError(PictoVaultError):
    status = 502
