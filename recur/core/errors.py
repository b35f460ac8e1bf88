class RecurError(Exception):
    pass


class NotFoundError(RecurError):
    pass


class ValidationError(RecurError):
    pass


class PersistenceError(RecurError):
    pass


class AmbiguousError(RecurError):
    def __init__(self, ref: str, count: int = 0, sample: list[str] | None = None):
        self.ref = ref
        self.count = count
        self.sample = sample or []
        count_note = f" ({count})" if count else ""
        note = f": {', '.join(self.sample)}" if self.sample else ""
        super().__init__(f"ambiguous ref '{ref}' matches multiple items{count_note}{note}")


class SchedulingError(RecurError):
    """A task could not be scheduled for recurrence. Expected control flow, not a crash."""

    reason = "scheduling"


class InvalidRecurrenceRule(SchedulingError):
    reason = "invalid-rule"


class NoRecurrenceRule(SchedulingError):
    reason = "no-rule"


class OccurrenceLimitReached(SchedulingError):
    reason = "limit-reached"


class NoNextOccurrence(SchedulingError):
    reason = "no-next-occurrence"


class IncompleteNotAllowed(SchedulingError):
    reason = "incomplete-not-allowed"


class AlreadyRecurred(SchedulingError):
    reason = "already-recurred"
