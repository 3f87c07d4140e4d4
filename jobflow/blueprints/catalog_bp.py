"""
Stage catalog & reporting API.

Blueprint: catalog_bp
Prefix: /api/v1

Endpoints:
    GET  /stages?tenant_id=                          -- Effective catalog with questions and rules
    POST /stages/<sid>/transitions                   -- Add a transition rule
    GET  /stages/validation?tenant_id=               -- Transition-table problems
    GET  /reports/stage-performance?tenant_id=&date_from=&date_to=
    GET  /reports/sla-violations?tenant_id=
    GET  /reports/stage-overstays?tenant_id=
"""

import logging
from datetime import date

from flask import Blueprint, jsonify, request

from jobflow.blueprints import int_field, register_error_handlers
from jobflow.core.exceptions import InvalidArgumentError
from jobflow.services.catalog_service import add_transition, list_catalog, validate_catalog
from jobflow.services.performance_report import (
    check_sla_violations,
    check_stage_overstays,
    get_stage_performance_report,
)

logger = logging.getLogger(__name__)

catalog_bp = Blueprint("catalog", __name__, url_prefix="/api/v1")
register_error_handlers(catalog_bp)


def _date_arg(name: str) -> date | None:
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError:
        raise InvalidArgumentError(name, f"{name} must be an ISO date (YYYY-MM-DD)")


# ═══════════════════════════════════════════════════════════════
# Catalog
# ═══════════════════════════════════════════════════════════════

@catalog_bp.route("/stages", methods=["GET"])
def list_stages_route():
    tenant_id = int_field(request.args, "tenant_id")
    stages = list_catalog(tenant_id)
    return jsonify({"tenant_id": tenant_id, "stages": stages, "total": len(stages)}), 200


@catalog_bp.route("/stages/<int:stage_id>/transitions", methods=["POST"])
def add_transition_route(stage_id):
    data = request.get_json(silent=True) or {}
    rule = add_transition(stage_id, data)
    return jsonify({"transition": rule.to_dict()}), 201


@catalog_bp.route("/stages/validation", methods=["GET"])
def validate_catalog_route():
    tenant_id = int_field(request.args, "tenant_id")
    return jsonify(validate_catalog(tenant_id)), 200


# ═══════════════════════════════════════════════════════════════
# Reports
# ═══════════════════════════════════════════════════════════════

@catalog_bp.route("/reports/stage-performance", methods=["GET"])
def stage_performance_route():
    tenant_id = int_field(request.args, "tenant_id")
    date_from = _date_arg("date_from")
    date_to = _date_arg("date_to")
    if date_from and date_to and date_from > date_to:
        raise InvalidArgumentError("date_from", "date_from must not be after date_to")
    rows = get_stage_performance_report(tenant_id, date_from=date_from, date_to=date_to)
    return jsonify({"tenant_id": tenant_id, "stages": rows}), 200


@catalog_bp.route("/reports/sla-violations", methods=["GET"])
def sla_violations_route():
    tenant_id = int_field(request.args, "tenant_id", required=False)
    violations = check_sla_violations(tenant_id)
    return jsonify({"tenant_id": tenant_id, "violations": violations, "total": len(violations)}), 200


@catalog_bp.route("/reports/stage-overstays", methods=["GET"])
def stage_overstays_route():
    tenant_id = int_field(request.args, "tenant_id")
    overstays = check_stage_overstays(tenant_id)
    return jsonify({"tenant_id": tenant_id, "overstays": overstays, "total": len(overstays)}), 200
