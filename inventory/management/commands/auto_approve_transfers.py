from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError

from inventory.approvals import auto_approve
from inventory.policy import load_policy


class Command(BaseCommand):
    help = "Approve every pending transfer request at or under the auto-approval threshold."

    def add_arguments(self, parser):
        parser.add_argument("--username", required=True, help="User recorded as the approver.")

    def handle(self, *args, **options):
        User = get_user_model()
        actor = User.objects.filter(username=options["username"], is_active=True).first()
        if actor is None:
            raise CommandError(f"Active user {options['username']!r} was not found.")

        policy = load_policy()
        results = auto_approve(actor, policy=policy)
        approved = sum(1 for result in results if result.ok and result.status == "approved")

        for result in results:
            if result.ok:
                continue
            self.stderr.write(f"Request {result.request_id}: {result.error_code} {result.message}")

        self.stdout.write(
            self.style.SUCCESS(
                f"Auto-approval complete (threshold {policy.auto_approve_below}). "
                f"Approved {approved} of {len(results)} eligible requests."
            )
        )
