from .organization import Organization, Patient
from .routine import Routine, ScheduleRule, RoutineStep, RoutineCompletion
from .reminder import ReminderInstance
from .followup import ClinicalEvent, FollowupItem, Escalation, Reminder
from .audit import AuditLog

__all__ = [
    "Organization", "Patient",
    "Routine", "ScheduleRule", "RoutineStep", "RoutineCompletion",
    "ReminderInstance",
    "ClinicalEvent", "FollowupItem", "Escalation", "Reminder",
    "AuditLog"
]
