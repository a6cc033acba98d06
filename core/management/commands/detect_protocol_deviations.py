"""Scan visits for protocol deviations and print per-type counts."""

from __future__ import annotations

from datetime import datetime

from django.core.management.base import BaseCommand, CommandError

from core.models import choices
from core.tasks import scan_protocol_deviations


class Command(BaseCommand):
    help = "Detect protocol deviations for one or all active organizations (default: today)."

    def add_arguments(self, parser) -> None:
        parser.add_argument(
            "--organization",
            dest="organization_id",
            type=int,
            default=None,
            help="Only scan the given organization id.",
        )
        parser.add_argument(
            "--date",
            dest="scan_date",
            help="Evaluation date in YYYY-MM-DD format. Defaults to today.",
        )

    def handle(self, *args, **options) -> None:
        scan_date = None
        raw_date = options.get("scan_date")
        if raw_date:
            try:
                scan_date = datetime.strptime(raw_date, "%Y-%m-%d").date()
            except ValueError as exc:
                raise CommandError("Invalid --date, expected YYYY-MM-DD.") from exc

        organization_id = options.get("organization_id")
        organization_ids = [organization_id] if organization_id is not None else None

        results = scan_protocol_deviations(organization_ids, now=scan_date)

        totals = {value: 0 for value in choices.DeviationType.values}
        for counts in results.values():
            for deviation_type, count in counts.items():
                totals[deviation_type] += count

        for organization_id, counts in results.items():
            summary = ", ".join(f"{key}={counts.get(key, 0)}" for key in totals)
            self.stdout.write(f"organization {organization_id}: {summary}")

        self.stdout.write(
            self.style.SUCCESS(
                f"Detected {sum(totals.values())} protocol deviation(s) "
                f"across {len(results)} organization(s)."
            )
        )
