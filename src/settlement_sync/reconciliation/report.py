"""Report generation for reconciliation summaries."""

import json
import csv
import io
from datetime import datetime

from .models import ReconciliationSummary

REPORT_FORMATS = ("json", "csv", "text")


class ReportGenerator:
    """Generator for reconciliation summary reports in various formats."""

    def __init__(self, summary: ReconciliationSummary):
        """Initialize the report generator.

        Args:
            summary: The reconciliation summary to generate output from.
        """
        self.summary = summary

    def render(self, format: str = "json") -> str:
        """Render the summary in one of REPORT_FORMATS.

        Raises:
            ValueError: If the format is not supported.
        """
        if format == "json":
            return self.to_json()
        elif format == "csv":
            return self.to_csv()
        elif format == "text":
            return self.to_summary_text()
        raise ValueError(f"Unsupported report format: {format}")

    def to_json(self, indent: int = 2) -> str:
        """Generate JSON representation of the summary."""

        def json_serializer(obj):
            if isinstance(obj, datetime):
                return obj.isoformat()
            raise TypeError(f"Object of type {type(obj)} is not JSON serializable")

        return json.dumps(self.summary.to_dict(), indent=indent, default=json_serializer)

    def to_csv(self) -> str:
        """Generate CSV with one row per payment method plus a totals row.

        Returns:
            CSV string with columns payment_method, reconciled, pending, total.
        """
        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow(["payment_method", "reconciled", "pending", "total"])

        for method, breakdown in self.summary.by_payment_method.items():
            writer.writerow([method, breakdown.reconciled, breakdown.pending, breakdown.total])

        writer.writerow([
            "ALL",
            self.summary.total_reconciled,
            self.summary.total_pending,
            self.summary.total_reconciled + self.summary.total_pending,
        ])
        return output.getvalue()

    def to_summary_text(self) -> str:
        """Generate a human-readable text summary."""
        data = self.summary.to_dict()
        totals = data["totals"]
        counts = data["counts"]

        lines = [
            "=" * 60,
            "RECONCILIATION SUMMARY",
            "=" * 60,
            f"Organization: {data['organization_id']}",
            "",
            "Time Range:",
            f"  Start: {data['start']}",
            f"  End: {data['end']}",
            "",
            "Totals:",
            f"  Reconciled: {totals['reconciled']} ({counts['reconciled']} transactions)",
            f"  Pending: {totals['pending']} ({counts['pending']} transactions)",
            f"  Overdue: {totals['overdue']} ({counts['overdue']} transactions)",
            f"  Liquidated: {totals['liquidated']} ({counts['liquidations']} liquidations)",
            f"  Reconciliation Rate: {data['reconciliation_rate']}",
        ]

        if data["by_payment_method"]:
            lines.extend(["", "By Payment Method:"])
            for method, breakdown in data["by_payment_method"].items():
                lines.append(
                    f"  {method}: reconciled {breakdown['reconciled']}, "
                    f"pending {breakdown['pending']}"
                )

        lines.extend([
            "",
            f"Generated At: {data['generated_at']}",
            "=" * 60,
        ])
        return "\n".join(lines)
