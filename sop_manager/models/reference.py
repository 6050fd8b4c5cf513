"""
SOP Document Manager
Reference data — departments and countries.

Models:
    - Department: organisational unit; its registered approver is the
      fallback approver for change requests.
    - Country: jurisdiction a document applies to.
"""

from sop_manager.models import db


class Department(db.Model):
    __tablename__ = "departments"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    code = db.Column(db.String(10), nullable=True, comment="Short code; first 3 letters of name when empty")
    approver_name = db.Column(db.String(200), nullable=True)
    approver_email = db.Column(db.String(255), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "approver_name": self.approver_name,
            "approver_email": self.approver_email,
        }


class Country(db.Model):
    __tablename__ = "countries"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    code = db.Column(db.String(3), nullable=True)

    def to_dict(self):
        return {"id": self.id, "name": self.name, "code": self.code}
