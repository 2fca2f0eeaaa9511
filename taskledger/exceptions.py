from typing import Optional


class LedgerError(Exception):
    """Base class for every error raised by the ledger.

    Carries a machine-readable ``error_code`` and optional ``details`` so the
    transports can turn it into a reply or a JSON body without string parsing.
    """

    def __init__(self, message: str, error_code: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class NotFoundError(LedgerError):
    pass


class AccountNotFoundError(NotFoundError):
    pass


class TaskNotFoundError(NotFoundError):
    pass


class WithdrawalNotFoundError(NotFoundError):
    pass


class InsufficientBalanceError(LedgerError):
    pass


class InvalidInputError(LedgerError):
    pass


class ConfigError(LedgerError):
    pass
