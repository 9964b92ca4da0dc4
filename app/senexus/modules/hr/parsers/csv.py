from __future__ import annotations

import csv
import io
import re
from dataclasses import dataclass


@dataclass(frozen=True)
class CsvRowError:
    row_number: int
    message: str


# Payload key -> accepted headers (already normalized: upper-case, single spaces)
_COLUMNS: dict[str, tuple[str, ...]] = {
    "firstName": ("PRENOM", "PRÉNOM"),
    "lastName": ("NOM",),
    "matricule": ("MATRICULE",),
    "dateOfBirth": ("DATE DE NAISSANCE",),
    "placeOfBirth": ("LIEU DE NAISSANCE",),
    "maritalStatus": ("SITUATION MATRIMONIALE",),
    "nationality": ("NATIONALITE", "NATIONALITÉ"),
    "cni": ("CNI",),
    "jobTitle": ("EMPLOI",),
    "category": ("CATEGORIE", "CATÉGORIE"),
    "hireDate": ("DATE ENTREE", "DATE ENTRÉE"),
    "contractEndDate": ("DATE SORTIE",),
}

REQUIRED_HEADERS = ("PRENOM", "NOM", "DATE ENTREE")

_WS = re.compile(r"\s+")


def normalize_header(h: str | None) -> str:
    """Spreadsheet exports carry stray spaces ("DATE DE NAISSANCE ", "SITUATION  MATRIMONIALE")."""
    return _WS.sub(" ", (h or "").strip()).upper()


def _delimiter(first_line: str) -> str:
    # French spreadsheet exports default to semicolons.
    return ";" if first_line.count(";") > first_line.count(",") else ","


def parse_employee_csv(file_bytes: bytes) -> tuple[list[dict], list[CsvRowError]]:
    """
    Parse an employee roster CSV.

    Headers (French, case and spacing insensitive):
    PRENOM, NOM, DATE ENTREE (required) and optionally MATRICULE,
    DATE DE NAISSANCE, LIEU DE NAISSANCE, SITUATION MATRIMONIALE, NATIONALITE,
    CNI, EMPLOI, CATEGORIE, DATE SORTIE.

    Returns (rows, errors). Rows are payload dicts for
    service.bulk_import_employees(), each carrying its CSV line as "_row".
    Values are left as strings; dates are parsed during validation.
    """
    text = file_bytes.decode("utf-8-sig", errors="replace")
    first_line = text.splitlines()[0] if text.strip() else ""
    reader = csv.reader(io.StringIO(text), delimiter=_delimiter(first_line))
    try:
        header = next(reader)
    except StopIteration:
        raise ValueError("CSV has no header row.") from None

    names = [normalize_header(h) for h in header]
    missing = [h for h in REQUIRED_HEADERS if not any(alias in names for alias in _COLUMNS[_key_for(h)])]
    if missing:
        raise ValueError(f"CSV is missing required columns: {', '.join(missing)}")

    index: dict[str, int] = {}
    for key, aliases in _COLUMNS.items():
        for alias in aliases:
            if alias in names:
                index[key] = names.index(alias)
                break

    rows: list[dict] = []
    errors: list[CsvRowError] = []
    for line_no, raw in enumerate(reader, start=2):  # 1 = header
        if not raw or all(not (v or "").strip() for v in raw):
            continue
        if len(raw) > len(names):
            errors.append(CsvRowError(line_no, f"Expected {len(names)} columns, got {len(raw)}."))
            continue
        d: dict = {"_row": line_no}
        for key, i in index.items():
            value = raw[i].strip() if i < len(raw) else ""
            d[key] = value or None
        rows.append(d)
    return rows, errors


def _key_for(header: str) -> str:
    for key, aliases in _COLUMNS.items():
        if header in aliases:
            return key
    raise KeyError(header)
