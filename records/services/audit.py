from typing import Optional, Any, Dict
from django.contrib.auth import get_user_model
from records.models import AuditEvent

User = get_user_model()


def log_action(*, user: Optional[User], action: str, object_type: Optional[str] = None,
               object_id: Optional[int] = None, detail: Optional[Dict[str, Any]] = None) -> AuditEvent:
    """Append one workflow decision (or login) to the audit trail."""
    actor = user if isinstance(user, User) and user.pk else None
    return AuditEvent.objects.create(
        user=actor,
        action=action,
        object_type=object_type, object_id=object_id,
        detail=detail or {},
    )


def history(object_type: str, object_id: int, limit: int = 50) -> list:
    qs = AuditEvent.objects.filter(object_type=object_type, object_id=object_id).select_related('user')
    return [{
        'action': e.action,
        'by': e.user.username if e.user else None,
        'detail': e.detail,
        'createdAt': e.created_at.isoformat(),
    } for e in qs.order_by('-created_at', '-id')[:limit]]
