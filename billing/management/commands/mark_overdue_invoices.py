from django.core.management.base import BaseCommand, CommandError
from django.utils.dateparse import parse_date

from billing.services import mark_overdue_invoices
from core.models import Garage


class Command(BaseCommand):
    help = "Flag sent invoices past their due date as OVERDUE for one garage or all active garages."

    def add_arguments(self, parser):
        parser.add_argument("--garage-id", dest="garage_id", help="Optional garage UUID.")
        parser.add_argument("--date", dest="date", help="Evaluate as of this date (YYYY-MM-DD). Defaults to today.")

    def handle(self, *args, **options):
        today = None
        if options.get("date"):
            today = parse_date(options["date"])
            if today is None:
                raise CommandError("--date must be formatted as YYYY-MM-DD.")

        garages = Garage.objects.filter(is_active=True)
        if options.get("garage_id"):
            garages = garages.filter(id=options["garage_id"])

        total = 0
        for garage in garages:
            updated = mark_overdue_invoices(garage=garage, today=today)
            total += updated
            self.stdout.write(self.style.SUCCESS(f"Garage {garage.code}: marked {updated} invoices overdue."))

        self.stdout.write(self.style.SUCCESS(f"Overdue sweep complete. Total invoices marked: {total}."))
