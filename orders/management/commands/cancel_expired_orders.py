from django.core.management.base import BaseCommand

from orders.services import cancel_stale_orders


class Command(BaseCommand):
    help = "Cancel PENDING orders older than the configured expiration windows."

    def handle(self, *args, **options):
        result = cancel_stale_orders()
        self.stdout.write(self.style.SUCCESS(
            f"Expired: {result['expired']}, auto-cancelled: {result['autoCancelled']}"
        ))
