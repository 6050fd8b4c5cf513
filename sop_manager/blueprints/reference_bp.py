"""
Reference data — departments and countries.

  GET/POST /api/v1/departments
  GET/POST /api/v1/countries
"""

import logging

from flask import Blueprint, jsonify

from sop_manager.blueprints import json_body
from sop_manager.core.actor import ADMIN, CONTROLLER
from sop_manager.core.exceptions import ConflictError
from sop_manager.middleware.permission_required import require_auth, require_role
from sop_manager.models import db
from sop_manager.models.reference import Country, Department
from sop_manager.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

reference_bp = Blueprint("reference_bp", __name__, url_prefix="/api/v1")
register_error_handlers(reference_bp)


# ── Departments ──────────────────────────────────────────────────────────

@reference_bp.route("/departments", methods=["GET"])
@require_auth
def list_departments():
    items = Department.query.order_by(Department.name).all()
    return jsonify([d.to_dict() for d in items]), 200


@reference_bp.route("/departments", methods=["POST"])
@require_role(ADMIN, CONTROLLER)
def create_department():
    """Body: { name, code?, approver_name?, approver_email? }"""
    data, err = json_body(required=("name",))
    if err:
        return err
    name = data["name"].strip()
    if Department.query.filter_by(name=name).first():
        raise ConflictError("Department", "name", name)
    dept = Department(
        name=name,
        code=(data.get("code") or name[:3]).upper(),
        approver_name=data.get("approver_name"),
        approver_email=data.get("approver_email"),
    )
    db.session.add(dept)
    db.session.commit()
    logger.info("Department created: %s", name)
    return jsonify(dept.to_dict()), 201


# ── Countries ────────────────────────────────────────────────────────────

@reference_bp.route("/countries", methods=["GET"])
@require_auth
def list_countries():
    items = Country.query.order_by(Country.name).all()
    return jsonify([c.to_dict() for c in items]), 200


@reference_bp.route("/countries", methods=["POST"])
@require_role(ADMIN, CONTROLLER)
def create_country():
    """Body: { name, code? }"""
    data, err = json_body(required=("name",))
    if err:
        return err
    name = data["name"].strip()
    if Country.query.filter_by(name=name).first():
        raise ConflictError("Country", "name", name)
    country = Country(name=name, code=(data.get("code") or "").upper() or None)
    db.session.add(country)
    db.session.commit()
    return jsonify(country.to_dict()), 201
