"""Lead spreadsheet parsing and export with encoding detection."""

import csv
import io
import re
from collections.abc import Iterable
from dataclasses import dataclass, field

from campaign_dialer.models.lead import Lead, LeadStatus, has_valid_phone

# Outcome columns the dialer writes back; appended on export when missing.
OUTCOME_HEADERS = ("Status", "Ended Reason", "Success Evaluation", "Transcript")

_FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "first_name": ("first name", "firstname", "first_name"),
    "last_name": ("last name", "lastname", "last_name"),
    "address": ("address",),
    "city": ("city",),
    "zip_code": ("zip code", "zip", "postal code", "zipcode"),
    "phone": ("phone", "phone number", "phone_number"),
    "email": ("email",),
    "status": ("status",),
    "ended_reason": ("ended reason",),
    "success_evaluation": ("success evaluation",),
    "transcript": ("transcript",),
}

_ZIP_LIKE = re.compile(r"zip|postal", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")


class CSVFormatError(ValueError):
    """Raised when an uploaded spreadsheet cannot be read as leads."""


@dataclass
class ParsedLead:
    """Parsed lead from CSV."""

    phone: str
    first_name: str = ""
    last_name: str = ""
    address: str = ""
    city: str = ""
    zip_code: str = ""
    email: str = ""
    status: LeadStatus = LeadStatus.NOT_CALLED
    ended_reason: str = ""
    success_evaluation: str = ""
    transcript: str = ""
    extra: dict[str, str] = field(default_factory=dict)


@dataclass
class CSVParseResult:
    """Result of CSV parsing."""

    headers: list[str]
    leads: list[ParsedLead]
    errors: list[dict[str, str]]


def detect_encoding(content: bytes) -> str:
    """Detect encoding of CSV content."""
    # utf-8-sig strips the BOM spreadsheet tools like to write
    for encoding in ("utf-8-sig", "cp1252"):
        try:
            content.decode(encoding)
            return encoding
        except UnicodeDecodeError:
            continue
    return "utf-8"


def _norm_header(header: str) -> str:
    return _WHITESPACE.sub(" ", str(header or "").strip().lower())


def _map_columns(fieldnames: list[str]) -> dict[str, str]:
    """Map lead fields to the actual header names present in the file."""
    by_norm = {}
    for name in fieldnames:
        by_norm.setdefault(_norm_header(name), name)

    column_map: dict[str, str] = {}
    for field_name, aliases in _FIELD_ALIASES.items():
        for alias in aliases:
            if alias in by_norm:
                column_map[field_name] = by_norm[alias]
                break

    # Fall back to any header that looks like a postal code
    if "zip_code" not in column_map:
        for name in fieldnames:
            if _ZIP_LIKE.search(name or ""):
                column_map["zip_code"] = name
                break
    return column_map


def _cell(row: dict[str, str | None], column_map: dict[str, str], field_name: str) -> str:
    column = column_map.get(field_name)
    return (row.get(column) or "").strip() if column else ""


def parse_status(value: str | None) -> LeadStatus:
    """Blank or "not-called" means the row is still to be dialed; anything else counts as called."""
    normalized = _WHITESPACE.sub("-", str(value or "").strip().lower())
    if normalized in ("", LeadStatus.NOT_CALLED.value):
        return LeadStatus.NOT_CALLED
    return LeadStatus.CALLED


def parse_csv(content: bytes) -> CSVParseResult:
    """
    Parse a lead spreadsheet exported as CSV.

    Header names are matched case-insensitively; columns the dialer does not
    interpret are kept per row in ``extra``. Rows without a dialable phone
    are kept (they are simply never eligible) and reported in ``errors``.

    Args:
        content: Raw CSV bytes

    Returns:
        CSVParseResult with headers, parsed leads and any row warnings

    Raises:
        CSVFormatError: Empty file or no phone column
    """
    if not content or not content.strip():
        raise CSVFormatError("Empty CSV file")

    encoding = detect_encoding(content)
    text = content.decode(encoding, errors="replace")

    reader = csv.DictReader(io.StringIO(text))
    if not reader.fieldnames:
        raise CSVFormatError("Invalid CSV format")

    headers = [name.strip() for name in reader.fieldnames]
    reader.fieldnames = headers
    column_map = _map_columns(headers)
    if "phone" not in column_map:
        raise CSVFormatError("Missing required column: Phone")

    mapped = set(column_map.values())
    leads: list[ParsedLead] = []
    errors: list[dict[str, str]] = []

    for row_num, row in enumerate(reader, start=2):  # Start at 2 (1 is header)
        # Skip rows that are completely blank
        if not any((value or "").strip() for value in row.values() if isinstance(value, str)):
            continue

        phone = _cell(row, column_map, "phone")
        if not has_valid_phone(phone):
            errors.append({"row": str(row_num), "error": f"Phone not dialable: {phone!r}"})

        leads.append(
            ParsedLead(
                phone=phone,
                first_name=_cell(row, column_map, "first_name"),
                last_name=_cell(row, column_map, "last_name"),
                address=_cell(row, column_map, "address"),
                city=_cell(row, column_map, "city"),
                zip_code=_cell(row, column_map, "zip_code"),
                email=_cell(row, column_map, "email"),
                status=parse_status(_cell(row, column_map, "status")),
                ended_reason=_cell(row, column_map, "ended_reason"),
                success_evaluation=_cell(row, column_map, "success_evaluation"),
                transcript=_cell(row, column_map, "transcript"),
                extra={
                    name: (row.get(name) or "")
                    for name in headers
                    if name and name not in mapped
                },
            )
        )

    return CSVParseResult(headers=headers, leads=leads, errors=errors)


def export_headers(headers: Iterable[str]) -> list[str]:
    """Original header order with the outcome columns appended when missing."""
    out = [h for h in headers if h]
    present = {_norm_header(h) for h in out}
    for name in OUTCOME_HEADERS:
        if _norm_header(name) not in present:
            out.append(name)
    return out


def render_csv(headers: Iterable[str], leads: Iterable[Lead]) -> str:
    """Render leads back to CSV under the dataset's own headers."""
    columns = export_headers(headers)
    column_map = _map_columns(columns)
    field_by_column = {column: field_name for field_name, column in column_map.items()}

    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(columns)
    for lead in leads:
        values = lead.to_dict()
        line = []
        for column in columns:
            field_name = field_by_column.get(column)
            if field_name:
                line.append(values.get(field_name, ""))
            else:
                line.append(lead.extra.get(column, ""))
        writer.writerow(line)
    return buffer.getvalue()
