from django.core.management.base import BaseCommand

from records.services import outbox


class Command(BaseCommand):
    help = "Fan out pending notification jobs (retrying failed attempts)."

    def add_arguments(self, parser):
        parser.add_argument("--limit", type=int, default=None, help="Max jobs to process")
        parser.add_argument("--requeue-running", action="store_true",
                            help="Return jobs stuck in 'running' to pending first")

    def handle(self, *args, **opts):
        if opts["requeue_running"]:
            n = outbox.requeue_running()
            self.stdout.write(self.style.WARNING(f"requeued {n} running job(s)"))
        stats = outbox.drain(opts["limit"])
        style = self.style.SUCCESS if not stats["undelivered"] else self.style.WARNING
        self.stdout.write(style(
            f"processed={stats['processed']} delivered={stats['delivered']} undelivered={stats['undelivered']}"
        ))
