class FinanceError(ValueError):
    """Base for failures the caller can recover from (4xx at the HTTP edge)."""

    status_code = 400


class NotFound(FinanceError):
    status_code = 404


class InvalidCardConfiguration(FinanceError):
    status_code = 422


class InvalidInstallmentCount(FinanceError):
    status_code = 422


class GroupNotFound(FinanceError):
    status_code = 404


class InconsistentGroupState(FinanceError):
    status_code = 409


class AmbiguousOccurrence(FinanceError):
    status_code = 409
