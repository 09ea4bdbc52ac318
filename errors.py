from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    not_found = "not_found"
    validation = "validation"
    limit_exceeded = "limit_exceeded"
    insufficient_funds = "insufficient_funds"
    conflict = "conflict"


class FinanceError(ValueError):
    """Base for every failure a service reports to its caller.

    The ``kind`` tag is what the HTTP layer dispatches on; the message is
    for humans only.
    """

    kind: ErrorKind = ErrorKind.validation

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def payload(self) -> dict[str, object]:
        return {"kind": self.kind.value, "message": self.message}


class NotFound(FinanceError):
    kind = ErrorKind.not_found


class ValidationFailure(FinanceError):
    kind = ErrorKind.validation


class Conflict(FinanceError):
    kind = ErrorKind.conflict


class InsufficientFunds(FinanceError):
    kind = ErrorKind.insufficient_funds


class LimitExceeded(FinanceError):
    kind = ErrorKind.limit_exceeded

    def __init__(
        self,
        message: str,
        *,
        budget_id: int,
        budget_amount_cents: int,
        spent_cents: int,
        remaining_cents: int,
        proposed_cents: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.budget_id = budget_id
        self.budget_amount_cents = budget_amount_cents
        self.spent_cents = spent_cents
        self.remaining_cents = remaining_cents
        self.proposed_cents = proposed_cents

    def payload(self) -> dict[str, object]:
        data = super().payload()
        data.update(
            {
                "budget_id": self.budget_id,
                "budget_amount_cents": self.budget_amount_cents,
                "current_spending_cents": self.spent_cents,
                "remaining_budget_cents": self.remaining_cents,
            }
        )
        return data
