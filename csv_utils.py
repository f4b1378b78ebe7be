import csv
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from io import StringIO
from typing import Optional, Sequence

from models import Movement, MovementKind
from schemas import CSVRow

DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%d/%m/%Y", "%d-%m-%Y")

COLUMN_ALIASES: dict[str, tuple[str, ...]] = {
    "date": ("fecha", "date", "dia"),
    "description": ("descripcion", "description", "detalle", "concepto", "glosa"),
    "amount": ("monto", "amount", "valor", "importe"),
    "kind": ("tipo", "type", "movimiento", "kind"),
    "category": ("categoria", "category", "rubro"),
    "notes": ("nota", "note", "observacion", "comentario"),
}

INCOME_MARKERS = ("ingreso", "abono", "income")
TRANSFER_MARKERS = ("transfer", "traspaso")


def sanitize_csv_value(value: str) -> str:
    """
    Sanitize CSV values to prevent formula injection by prefixing dangerous patterns with tab.
    """
    if not value or value.strip() == "":
        return ""

    value = value.strip()

    if value.startswith(("=", "+", "-", "@", "\t", "\r")):
        return "\t" + value

    for pattern in (r"^cmd\s*", r"^powershell\s*", r"^http[s]?://"):
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value

    return value


def parse_date(value: str) -> date:
    value = value.strip().strip('"')
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Invalid date '{value}'")


def parse_amount(value: str) -> int:
    """Signed whole-unit amount; dots are thousands separators."""
    clean = value.strip().strip('"').replace("$", "").replace(" ", "")
    clean = clean.replace(".", "").replace(",", ".")
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError(f"Invalid amount '{value}'") from exc
    return int(amount.to_integral_value())


def detect_columns(headers: Sequence[str]) -> dict[str, int]:
    columns: dict[str, int] = {}
    for idx, header in enumerate(headers):
        name = header.strip().strip('"').lower()
        for field, aliases in COLUMN_ALIASES.items():
            if any(alias in name for alias in aliases):
                columns[field] = idx
    return columns


def _cell(values: Sequence[str], columns: dict[str, int], field: str) -> Optional[str]:
    idx = columns.get(field)
    if idx is None or idx >= len(values):
        return None
    cleaned = values[idx].strip()
    return cleaned or None


def parse_csv(content: str) -> tuple[list[CSVRow], list[str]]:
    lines = content.strip().splitlines()
    if len(lines) < 2:
        return [], ["File is empty or has no data rows"]

    delimiter = ";" if ";" in lines[0] else ","
    reader = csv.reader(StringIO("\n".join(lines)), delimiter=delimiter)
    headers = next(reader)
    columns = detect_columns(headers)
    missing = [f for f in ("date", "description", "amount") if f not in columns]
    if missing:
        found = ", ".join(h.strip().lower() for h in headers)
        return [], [f"Missing required columns: {', '.join(missing)}. Found: {found}"]

    rows: list[CSVRow] = []
    errors: list[str] = []
    for idx, values in enumerate(reader, start=2):
        if not any(v.strip() for v in values):
            continue
        try:
            raw_amount = parse_amount(_cell(values, columns, "amount") or "")
            if raw_amount == 0:
                raise ValueError("Amount must not be zero")
            kind_raw = (_cell(values, columns, "kind") or "").lower()
            if any(marker in kind_raw for marker in TRANSFER_MARKERS):
                raise ValueError("Transfer rows are not imported")
            if "kind" in columns:
                is_income = any(marker in kind_raw for marker in INCOME_MARKERS)
            else:
                is_income = raw_amount > 0
            description = _cell(values, columns, "description")
            if not description:
                raise ValueError("Description is required")
            rows.append(
                CSVRow(
                    date=parse_date(_cell(values, columns, "date") or ""),
                    description=description,
                    amount=abs(raw_amount),
                    kind=MovementKind.income if is_income else MovementKind.expense,
                    category=_cell(values, columns, "category"),
                    notes=_cell(values, columns, "notes"),
                )
            )
        except ValueError as exc:
            errors.append(f"Row {idx}: {exc}")
    return rows, errors


def export_movements(
    movements: Sequence[Movement], category_names: dict[int, str]
) -> str:
    """Transfer rows are exported but ``parse_csv`` rejects them on re-import."""
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(["Date", "Type", "Amount", "Category", "Description", "Notes"])
    for m in movements:
        writer.writerow(
            [
                m.date.isoformat(),
                m.kind.value,
                str(m.amount),
                sanitize_csv_value(category_names.get(m.category_id, "")),
                sanitize_csv_value(m.description),
                sanitize_csv_value(m.notes or ""),
            ]
        )
    return output.getvalue()
