from django.core.management.base import BaseCommand

from siteconfig.services import ensure_default_settings


class Command(BaseCommand):
    help = "Create the default platform, payment and order settings rows if they are missing."

    def handle(self, *args, **options):
        created = ensure_default_settings()
        if created:
            self.stdout.write(self.style.SUCCESS(f"Created settings: {', '.join(created)}"))
        else:
            self.stdout.write("All settings already present.")
