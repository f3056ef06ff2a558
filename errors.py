"""
Domain errors for Portfolio Hub.

Every error carries the HTTP status the API layer answers with, so the
routes in main.py never need to translate them one by one.
"""


class PortfolioHubError(Exception):
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class ValidationError(PortfolioHubError):
    status_code = 400


class InvalidSubdomain(ValidationError):
    pass


class InvalidLayoutReference(ValidationError):
    pass


class InvalidThemeReference(ValidationError):
    pass


class Forbidden(PortfolioHubError):
    status_code = 403


class NotFound(PortfolioHubError):
    status_code = 404


class AssetNotFound(NotFound):
    pass


class Conflict(PortfolioHubError):
    status_code = 409


class DuplicateSubdomain(Conflict):
    pass


class DuplicateCustomDomain(Conflict):
    pass


class DuplicateReview(Conflict):
    pass


class TemplateInUse(Conflict):
    pass


class StorageUnavailable(PortfolioHubError):
    status_code = 503


class PartialCleanupFailure(PortfolioHubError):
    """An old stored object could not be removed after its replacement was committed.

    Only ever logged: the record is already correct and the stale object is left behind.
    """

    def __init__(self, public_id: str, cause: Exception):
        super().__init__(f"Failed to delete stale object {public_id}: {cause}")
        self.public_id = public_id
        self.cause = cause
