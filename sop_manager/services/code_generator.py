"""
Document Code Generator

Format:  {PREFIX}-{DEPT3}-{TYPE}-{SEQ}[-{LANG}]
  - PREFIX  organisation prefix (config DOCUMENT_CODE_PREFIX, default SDG)
  - DEPT3   first 3 letters or digits of the department, uppercase;
            punctuation and spaces are skipped, so E-Commerce is ECO
  - TYPE    SOP, POL, WI, FORM; other types use their first 3 letters or digits
  - SEQ     2-digit, scoped to (department, type, language)
  - LANG    EN or AR when a language is given

Examples: SDG-FIN-SOP-01-EN, SDG-HUM-POL-04, SDG-OPE-GUI-12-AR

``generate_document_code`` is pure: the caller passes the codes that already
exist.  ``next_document_code`` is the DB-backed wrapper.
"""

import re

from sop_manager.core.exceptions import ValidationError

DEFAULT_PREFIX = "SDG"

TYPE_ABBREVIATIONS = {
    "SOP": "SOP",
    "Policy": "POL",
    "Work Instruction": "WI",
    "Form": "FORM",
}

_LANGUAGE_CODES = {
    "en": "EN", "english": "EN",
    "ar": "AR", "arabic": "AR",
}

_CODE_RE = re.compile(
    r"^(?P<prefix>[A-Z]+)-(?P<dept>[A-Z0-9]{1,3})-(?P<type>[A-Z0-9]+)-(?P<seq>\d{2,})(?:-(?P<lang>EN|AR))?$"
)
_NON_ALNUM_RE = re.compile(r"[^A-Za-z0-9]")


def _alnum(text: str) -> str:
    return _NON_ALNUM_RE.sub("", text).upper()


def department_code(department: str) -> str:
    if not (department or "").strip():
        raise ValidationError("Department is required", details={"department": "required"})
    dept = _alnum(department)
    if not dept:
        raise ValidationError(f"Invalid department '{department}'", details={"department": "needs a letter or digit"})
    return dept[:3]


def type_abbreviation(document_type: str) -> str:
    doc_type = (document_type or "").strip()
    if not doc_type:
        raise ValidationError("Document type is required", details={"document_type": "required"})
    abbr = TYPE_ABBREVIATIONS.get(doc_type) or _alnum(doc_type)[:3]
    if not abbr:
        raise ValidationError(f"Invalid document type '{document_type}'", details={"document_type": "needs a letter or digit"})
    return abbr


def language_code(language: str | None) -> str | None:
    if not language:
        return None
    code = _LANGUAGE_CODES.get(language.strip().lower())
    if code is None:
        raise ValidationError(
            f"Unsupported language '{language}'", details={"language": "must be en or ar"},
        )
    return code


def parse_document_code(code: str) -> dict | None:
    """Split a code into its parts, or None when it does not follow the format."""
    m = _CODE_RE.match((code or "").strip())
    if not m:
        return None
    parts = m.groupdict()
    parts["seq"] = int(parts["seq"])
    return parts


def generate_document_code(
    department: str,
    document_type: str,
    language: str | None = None,
    existing_codes=(),
    prefix: str = DEFAULT_PREFIX,
) -> str:
    """
    Next code for (department, document_type, language).

    SEQ is the highest sequence among ``existing_codes`` with the same
    prefix, department, type and language, plus one.  Codes that do not
    parse are ignored.
    """
    dept = department_code(department)
    abbr = type_abbreviation(document_type)
    lang = language_code(language)

    highest = 0
    for existing in existing_codes:
        parts = parse_document_code(existing)
        if not parts:
            continue
        if (parts["prefix"], parts["dept"], parts["type"], parts["lang"]) != (prefix, dept, abbr, lang):
            continue
        highest = max(highest, parts["seq"])

    code = f"{prefix}-{dept}-{abbr}-{highest + 1:02d}"
    if lang:
        code += f"-{lang}"
    return code


def next_document_code(department: str, document_type: str, language: str | None = None) -> str:
    """Generate the next code against the documents already stored."""
    from flask import current_app

    from sop_manager.models import db
    from sop_manager.models.document import Document

    prefix = current_app.config.get("DOCUMENT_CODE_PREFIX", DEFAULT_PREFIX)
    stem = f"{prefix}-{department_code(department)}-{type_abbreviation(document_type)}-"
    existing = [
        row[0] for row in
        db.session.query(Document.document_code)
        .filter(Document.document_code.like(f"{stem}%"))
        .all()
    ]
    return generate_document_code(department, document_type, language, existing, prefix=prefix)
