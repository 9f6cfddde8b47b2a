"""
Domain exceptions.

Raised by the goal store and the check-in submission path. The evaluators
never raise these: a vanished or archived goal at fire time is a silent no-op.
"""


class HabitPodsError(Exception):
    """Base for all domain errors"""

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self):
        return {
            "error": {
                "code": self.__class__.__name__,
                "message": self.message,
                "details": self.details
            }
        }


class GoalNotFound(HabitPodsError):
    def __init__(self, goal_id):
        super().__init__(
            message="Goal not found",
            details={"goal_id": goal_id}
        )


class GoalArchived(HabitPodsError):
    def __init__(self, goal_id):
        super().__init__(
            message="Cannot check in to an archived goal",
            details={"goal_id": goal_id}
        )


class InvalidTimezone(HabitPodsError):
    def __init__(self, tz_name):
        super().__init__(
            message="Invalid IANA timezone",
            details={"timezone": tz_name}
        )


class InvalidGoalConfig(HabitPodsError):
    def __init__(self, message: str, field: str):
        super().__init__(message=message, details={"field": field})


class ImmutableGoalField(HabitPodsError):
    """Timezone is a snapshot taken at creation"""

    def __init__(self, goal_id, field: str):
        super().__init__(
            message=f"Goal field '{field}' cannot be changed after creation",
            details={"goal_id": goal_id, "field": field}
        )


class InvalidCheckIn(HabitPodsError):
    def __init__(self, message: str, details: dict = None):
        super().__init__(message=message, details=details)


class CheckInConflict(HabitPodsError):
    def __init__(self, goal_id, date, existing_status: str):
        super().__init__(
            message="Already checked in for this date",
            details={
                "goal_id": goal_id,
                "date": str(date),
                "existing_status": existing_status
            }
        )


# Status codes for the HTTP layer that wraps this package
EXCEPTION_TO_STATUS = {
    GoalNotFound: 404,
    GoalArchived: 400,
    InvalidTimezone: 400,
    InvalidGoalConfig: 400,
    ImmutableGoalField: 400,
    InvalidCheckIn: 400,
    CheckInConflict: 409,
}
