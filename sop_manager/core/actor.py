"""
Acting user, passed explicitly into every capability and workflow call.

Built from the verified JWT claims in the request layer; core logic never
reads the role from ``flask.g`` or any other ambient state.
"""

from dataclasses import dataclass

from sop_manager.core.exceptions import ValidationError

ADMIN = "admin"
CONTROLLER = "document-controller"
CREATOR = "document-creator"
OWNER = "document-owner"
REVIEWER = "reviewer"
REQUESTER = "requester"

ROLES = (ADMIN, CONTROLLER, CREATOR, OWNER, REVIEWER, REQUESTER)

# pendingWith labels
PENDING_CONTROLLER = "Document Controller"
PENDING_CREATOR = "Document Creator"
PENDING_REQUESTER = "Document Requester"
PENDING_REVIEWER = "Document Reviewer"
PENDING_OWNER = "Document Owner"

ROLE_LABELS = {
    ADMIN: "Administrator",
    CONTROLLER: PENDING_CONTROLLER,
    CREATOR: PENDING_CREATOR,
    OWNER: PENDING_OWNER,
    REVIEWER: PENDING_REVIEWER,
    REQUESTER: PENDING_REQUESTER,
}


def normalize_role(role: str | None) -> str:
    """Canonical role name; accepts ``document_owner`` / ``Document Owner`` spellings."""
    key = (role or "").strip().lower().replace("_", "-").replace(" ", "-")
    if key not in ROLES:
        raise ValidationError(f"Unknown role '{role}'", details={"role": f"must be one of {list(ROLES)}"})
    return key


@dataclass(frozen=True)
class ActorContext:
    user_id: str | None
    role: str
    name: str = ""
    email: str = ""
    department: str | None = None
    country: str | None = None

    @classmethod
    def from_claims(cls, claims: dict) -> "ActorContext":
        return cls(
            user_id=claims.get("sub"),
            role=normalize_role(claims.get("role")),
            name=claims.get("name") or "",
            email=claims.get("email") or "",
            department=claims.get("department"),
            country=claims.get("country"),
        )

    @property
    def label(self) -> str:
        return ROLE_LABELS[self.role]

    @property
    def display_name(self) -> str:
        return self.name or self.email or self.role

    def as_person(self) -> dict:
        return {"id": self.user_id, "name": self.name, "email": self.email}

    def matches(self, person: dict | None) -> bool:
        """
        True when a stored {id, name, email} reference points at this actor.

        Id first, then email.  A reference carrying neither falls back to a
        case-insensitive name comparison.
        """
        if not person:
            return False
        if self.user_id and person.get("id") and str(person["id"]) == str(self.user_id):
            return True
        email = (person.get("email") or "").strip().lower()
        if email:
            return email == self.email.strip().lower()
        if person.get("id"):
            return False
        name = (person.get("name") or "").strip().lower()
        return bool(name) and name == self.name.strip().lower()
