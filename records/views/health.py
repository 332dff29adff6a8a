import logging

from django.db import DatabaseError, connections
from django.http import JsonResponse

from records.models import NotificationJob

logger = logging.getLogger(__name__)


def healthz(request):
    try:
        with connections['default'].cursor() as c:
            c.execute('SELECT 1')
            row = c.fetchone()
        backlog = NotificationJob.objects.filter(status=NotificationJob.STATUS_PENDING).count()
        failed = NotificationJob.objects.filter(status=NotificationJob.STATUS_FAILED).count()
        return JsonResponse({'ok': True, 'db': bool(row and row[0] == 1),
                             'outbox': {'pending': backlog, 'failed': failed}})
    except DatabaseError as e:
        logger.warning("Health check failed: %s", e)
        return JsonResponse({'ok': False, 'error': str(e)}, status=500)
