"""
역할별 권한 정의 ({view, edit} x 리소스)
"""
from typing import Optional

RESOURCES = ("dashboard", "patients", "routines", "reminders", "followups", "escalations", "settings", "audit")

# 역할 → 허용된 권한 목록
ROLE_PERMISSIONS = {
    "admin": {f"{action}:{resource}" for action in ("view", "edit") for resource in RESOURCES},
    "editor": {
        "view:dashboard",
        "view:patients", "edit:patients",
        "view:routines", "edit:routines",
        "view:reminders", "edit:reminders",
        "view:followups", "edit:followups",
        "view:escalations", "edit:escalations",
        "view:settings",
    },
    "viewer": {
        "view:dashboard",
        "view:patients",
        "view:routines",
        "view:reminders",
        "view:followups",
        "view:settings",
    },
    # 환자 본인 - 자신의 리마인더 응답과 게이트 체크만 가능
    "patient": {
        "view:dashboard",
        "view:routines",
        "view:reminders", "edit:reminders",
    },
}

def has_permission(role: Optional[str], permission: str) -> bool:
    if not role:
        return False
    return permission in ROLE_PERMISSIONS.get(role, set())
