"""
Export helpers for cached analyses.

An export document is ``{"metadata": {...}, "analysis": {...}}``.
JSON is pretty-printed; CSV is a single flattened row with a header
line and a UTF-8 BOM so spreadsheet tools pick the right encoding.
"""

import csv
import io
import json
import os
import re
from datetime import date
from typing import Any, Dict, List, Optional

from models.enums import RESERVED_FILENAMES

CSV_BOM = "\ufeff"
MAX_FILENAME_LENGTH = 255
INVALID_FILENAME_CHARS = ["/", "\\", ":", "*", "?", '"', "<", ">", "|"]


def flatten_for_csv(data: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    """
    Flatten a nested document into dotted keys.

    Nested dicts recurse (``meta.title``); lists of scalars are joined
    with ``"; "``; lists of dicts get an index segment
    (``hreflang.0.lang``). Empty containers become empty strings.

    Args:
        data: Nested document
        prefix: Key prefix for recursion

    Returns:
        Ordered flat dict
    """
    flat: Dict[str, Any] = {}
    for key, value in data.items():
        name = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, dict):
            if value:
                flat.update(flatten_for_csv(value, name))
            else:
                flat[name] = ""
        elif isinstance(value, (list, tuple)):
            if value and all(isinstance(item, dict) for item in value):
                for index, item in enumerate(value):
                    flat.update(flatten_for_csv(item, f"{name}.{index}"))
            else:
                flat[name] = "; ".join("" if item is None else str(item) for item in value)
        elif value is None:
            flat[name] = ""
        else:
            flat[name] = value
    return flat


def to_csv(document: Dict[str, Any]) -> str:
    """Render an export document as a two-line CSV (header + values)."""
    flat = flatten_for_csv(document)
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(list(flat.keys()))
    writer.writerow(list(flat.values()))
    return CSV_BOM + buffer.getvalue()


def to_json(document: Dict[str, Any]) -> str:
    return json.dumps(document, indent=4, ensure_ascii=False, default=str)


def validate_export_filename(filename: Optional[str]) -> List[str]:
    """
    Validate a caller-supplied export filename.

    Returns:
        List of error messages (empty if valid)
    """
    if not filename:
        return ["Filename cannot be empty"]

    errors = []
    if len(filename) > MAX_FILENAME_LENGTH:
        errors.append(f"Filename too long (maximum {MAX_FILENAME_LENGTH} characters)")

    for char in INVALID_FILENAME_CHARS:
        if char in filename:
            errors.append(f"Filename contains invalid character: {char}")

    base_name = os.path.splitext(filename)[0]
    if base_name.upper() in RESERVED_FILENAMES:
        errors.append(f"Filename '{base_name}' is reserved and cannot be used")

    return errors


def strip_extension(filename: str) -> str:
    """Drop a caller-supplied extension; the export format adds its own."""
    return os.path.splitext(filename)[0] or filename


def default_export_filename(domain: Optional[str], today: Optional[date] = None) -> str:
    """``meta-analysis-<domain>-<YYYY-MM-DD>`` with non-alphanumerics replaced by ``-``."""
    today = today or date.today()
    safe_domain = re.sub(r"[^a-zA-Z0-9]", "-", domain or "unknown")
    return f"meta-analysis-{safe_domain}-{today.isoformat()}"
