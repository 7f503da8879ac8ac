from __future__ import annotations


class WardenError(Exception):
    """Base class for errors reported back to a caller."""

    code = "ERR_WARDEN"


class ValidationError(WardenError):
    """Malformed input. No state was changed."""

    code = "ERR_VALIDATION"


class CaseNotFound(ValidationError):
    code = "ERR_CASE_NOT_FOUND"

    def __init__(self, case_id: str) -> None:
        super().__init__(f"Case {case_id} not found")
        self.case_id = case_id


class InvalidTransition(ValidationError):
    code = "ERR_INVALID_TRANSITION"

    def __init__(self, entity: str, current: str, target: str) -> None:
        super().__init__(f"{entity} cannot move from {current} to {target}")
        self.current = current
        self.target = target


class NotAppealable(WardenError):
    code = "ERR_NOT_APPEALABLE"

    def __init__(self, case_id: str) -> None:
        super().__init__(f"Case {case_id} is not appealable")
        self.case_id = case_id


class AlreadyAppealed(WardenError):
    code = "ERR_ALREADY_APPEALED"

    def __init__(self, case_id: str) -> None:
        super().__init__(f"Case {case_id} has already been appealed")
        self.case_id = case_id


class AlreadyReviewed(WardenError):
    """Raised to the losing side when two reviewers decide the same appeal."""

    code = "ERR_ALREADY_REVIEWED"

    def __init__(self, case_id: str) -> None:
        super().__init__(f"Appeal for case {case_id} has already been reviewed")
        self.case_id = case_id


class ExternalActionFailure(WardenError):
    """The platform rejected (or timed out) a delete/timeout/ban/kick/DM call."""

    code = "ERR_EXTERNAL_ACTION"

    def __init__(self, action: str, detail: str) -> None:
        super().__init__(f"{action} failed: {detail}")
        self.action = action
        self.detail = detail


class PersistenceFailure(WardenError):
    """The store is unavailable. Fatal for the triggering event only."""

    code = "ERR_PERSISTENCE"
