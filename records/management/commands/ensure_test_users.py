from django.core.management.base import BaseCommand
from django.contrib.auth.hashers import make_password
from records.models import User

TEST_SET = [
    ("admin1", "admin"),
    ("doctor1", "doctor"),
    ("supervisor1", "supervisor"),
    ("student1", "student"),
]


class Command(BaseCommand):
    help = "Ensure approved test users exist with a known password (idempotent)."

    def add_arguments(self, parser):
        parser.add_argument("--password", default="Clinic#2024", help="Password set on every test user")

    def handle(self, *args, **opts):
        password = make_password(opts["password"])
        for username, role in TEST_SET:
            u, created = User.objects.get_or_create(
                username=username,
                defaults={"role": role, "password": password, "is_active": True, "is_approved": True},
            )
            if not created:
                # reset password, activation, approval and role
                u.password = password
                u.role = role
                u.is_active = True
                u.is_approved = True
                u.save(update_fields=["password", "role", "is_active", "is_approved"])
            self.stdout.write(self.style.SUCCESS(f"ok: {username} ({role})"))
        self.stdout.write(self.style.SUCCESS("All test users ensured."))
