"""
Document version numbers.

Versions are ``major.minor`` strings compared numerically, so 2.10 is
higher than 2.9.  Minor bumps never carry into the major part.
"""

from sop_manager.core.exceptions import ValidationError
from sop_manager.models.change_request import CHANGE_TYPES


def parse_version(value) -> tuple[int, int] | None:
    """'2.3' → (2, 3).  Returns None for anything that is not major.minor."""
    text = str(value or "").strip()
    major, _, minor = text.partition(".")
    if not major.isdigit() or (minor and not minor.isdigit()):
        return None
    return int(major), int(minor or 0)


def normalize_version(value, field: str = "version_number") -> str:
    """Validated ``major.minor`` string; "4" becomes "4.0"."""
    parsed = parse_version(value)
    if parsed is None:
        raise ValidationError(
            f"Invalid version '{value}'",
            details={field: "expected major.minor, e.g. 2.3"},
        )
    return f"{parsed[0]}.{parsed[1]}"


def next_version_number(request_type: str, change_type: str | None = None, existing_versions=()) -> str:
    """
    Version a request will produce.

    new-request            → "1.0"
    change-request, major  → (highest major + 1).0
    change-request, minor  → highest major.(minor + 1), no carry: 2.9 → 2.10
    """
    if request_type == "new-request":
        return "1.0"
    if change_type not in CHANGE_TYPES:
        raise ValidationError("change_type must be major or minor", details={"change_type": "required"})
    parsed = [v for v in (parse_version(x) for x in existing_versions) if v is not None]
    if not parsed:
        return "1.0"
    major, minor = max(parsed)
    if change_type == "major":
        return f"{major + 1}.0"
    return f"{major}.{minor + 1}"
