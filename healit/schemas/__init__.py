"""
스키마 패키지 __init__.py
"""
from .routine import *
from .reminder import *
from .followup import *

__all__ = [
    # Routine schemas
    "ScheduleRuleCreate", "ScheduleRuleResponse",
    "RoutineStepCreate", "RoutineStepRename", "RoutineStepResponse",
    "RoutineCreate", "RoutineResponse", "DeactivationResult",

    # Reminder schemas
    "ReminderInstanceResponse", "ReminderRespondRequest",
    "TodayStats", "TodayViewResponse",
    "GateStepItem", "GateChecklistResponse", "GateStepConfirm", "CompletionResponse",

    # Followup schemas
    "ClinicalEventCreate", "ClinicalEventResponse",
    "FollowupCreate", "FollowupResponse", "FollowupStatusUpdate", "FollowupAssign",
    "ExtractionItem", "ExtractionRequest",
    "EscalationCreate", "EscalationResponse",
    "ReminderScheduleRequest", "OutboundReminderResponse",
    "SlipCheckResponse",
]
