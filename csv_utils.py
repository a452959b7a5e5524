import csv
import re
from io import StringIO
from typing import Sequence

from models import Transaction

EXPORT_HEADERS = ["Date", "Description", "Type", "Category", "Amount"]


def sanitize_csv_value(value: str) -> str:
    """
    Neutralise spreadsheet formula injection by prefixing risky cells with a tab.
    """
    if not value or value.strip() == "":
        return ""

    value = value.strip()

    formula_triggers = ("=", "+", "-", "@", "\t", "\r")

    if value.startswith(formula_triggers):
        return "\t" + value

    dangerous_patterns = [
        r"^cmd\s*",
        r"^powershell\s*",
        r"^http[s]?://",
    ]

    for pattern in dangerous_patterns:
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value

    return value


def export_transactions(transactions: Sequence[Transaction]) -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(EXPORT_HEADERS)
    for txn in transactions:
        writer.writerow(
            [
                txn.date.date().isoformat(),
                sanitize_csv_value(txn.description),
                txn.type.value,
                sanitize_csv_value(txn.category.name if txn.category else ""),
                f"{txn.amount_cents / 100:.2f}",
            ]
        )
    return output.getvalue()
