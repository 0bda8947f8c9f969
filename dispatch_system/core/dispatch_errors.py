"""
dispatch_errors.py - Typed failures returned by repositories and workflows

Every error here is an expected, recoverable condition. Repositories raise
them straight to their caller; nothing in this module is ever routed through
ErrorHandler, which is reserved for infrastructure faults (store down,
corrupt data, failed publishes).
"""

from typing import Optional

from datashapes import ReferenceCounts


class DispatchError(Exception):
    """Base class for operator-facing dispatch failures."""

    code = "dispatch_error"

    def __init__(self, message: str, record_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.record_id = record_id

    def to_dict(self):
        return {"code": self.code, "message": self.message, "record_id": self.record_id}


class ValidationFailed(DispatchError):
    """Malformed or missing required field."""

    code = "validation_failed"

    def __init__(self, message: str, field_name: str = "", record_id: Optional[str] = None):
        super().__init__(message, record_id)
        self.field_name = field_name

    def to_dict(self):
        out = super().to_dict()
        out["field"] = self.field_name
        return out


class RecordNotFound(ValidationFailed):
    """An id passed to a repository does not resolve."""

    code = "record_not_found"

    def __init__(self, collection: str, record_id: str):
        super().__init__(f"No {collection} record with id {record_id}", "id", record_id)
        self.collection = collection


class PreconditionFailed(DispatchError):
    """A workflow precondition was not met."""

    code = "precondition_failed"


class InvalidAmount(ValidationFailed, PreconditionFailed):
    """Cost request amount is not a positive, finite number."""

    code = "invalid_amount"


class DuplicateOpenRequest(DispatchError):
    """A second open cost request was attempted for the same work order."""

    code = "duplicate_open_request"

    def __init__(self, work_order_id: str, existing_id: str):
        super().__init__(
            f"Work order {work_order_id} already has an open cost request ({existing_id})",
            existing_id
        )
        self.work_order_id = work_order_id
        self.existing_id = existing_id


class DuplicateTechnician(DispatchError):
    """Technician de-duplication matched an existing record."""

    code = "duplicate_technician"

    def __init__(self, existing_id: str, existing_name: str):
        super().__init__(f"Technician already exists: {existing_name} ({existing_id})", existing_id)
        self.existing_id = existing_id
        self.existing_name = existing_name


class ReferencedEntityExists(DispatchError):
    """Deletion refused because other records still reference the target."""

    code = "referenced_entity_exists"

    def __init__(self, record_id: str, counts: ReferenceCounts):
        super().__init__(
            f"Technician {record_id} is still referenced by "
            f"{counts.work_order_refs} work order(s), {counts.cost_request_refs} cost request(s) "
            f"and {counts.proposal_refs} proposal(s). Blacklist instead of deleting.",
            record_id
        )
        self.counts = counts

    def to_dict(self):
        out = super().to_dict()
        out["counts"] = self.counts.to_dict()
        return out


class ReasonRequired(DispatchError):
    """Blacklisting needs a non-empty reason."""

    code = "reason_required"


class TerminalStateViolation(DispatchError):
    """Attempted change to a record in a terminal workflow state."""

    code = "terminal_state_violation"
