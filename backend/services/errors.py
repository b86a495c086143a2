"""
Funil CRM - Error types raised by the lifecycle and reminder services.

Validation errors are always raised BEFORE any write.
Store write errors are propagated as-is (no retry here).
"""

from typing import Optional


class CRMError(Exception):
    """Base class for domain errors"""
    pass


class ValidationError(CRMError):
    """Invalid input (empty follow-up, non-positive amount, bad date...)"""
    pass


class NotFoundError(CRMError):
    """Referenced budget / reminder / prospect does not exist for this tenant"""

    def __init__(self, collection: str, record_id: str):
        self.collection = collection
        self.record_id = record_id
        super().__init__(f"{collection} {record_id} not found")


class InvalidTransitionError(CRMError):
    """Status change not allowed from the current status"""

    def __init__(self, budget_id: str, from_status: str, to_status: str, valid_next=None):
        self.budget_id = budget_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"INVALID TRANSITION: budget {budget_id} cannot go from '{from_status}' to '{to_status}'. "
            f"Valid transitions from '{from_status}': {sorted(valid_next or [])}"
        )


class PartialFailure(CRMError):
    """
    A partial-win split left the store inconsistent: the lost sibling exists
    but the original budget was not updated, and the compensating delete
    failed too. Manual reconciliation is needed.
    """

    def __init__(self, budget_id: str, sibling_id: str, cause: Optional[BaseException] = None):
        self.budget_id = budget_id
        self.sibling_id = sibling_id
        self.cause = cause
        super().__init__(
            f"PARTIAL FAILURE: lost sibling {sibling_id} was created but budget {budget_id} "
            f"could not be updated and the sibling could not be removed ({cause})"
        )
