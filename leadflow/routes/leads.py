"""
Lead API — manual grading, deep research, email enrichment, eligibility.
"""
from flask import Blueprint, request, jsonify

from leadflow.pipeline.base import PolicyError
from leadflow.pipeline.controller import get_controller
from leadflow.routes.common import current_user_id, register_error_handlers

bp = Blueprint('leads', __name__, url_prefix='/api')
register_error_handlers(bp)


@bp.route('/leads/<int:lead_id>/grade', methods=['POST'])
def update_grade(lead_id):
    data = request.get_json(silent=True) or {}
    lead = get_controller().leads.set_grade(lead_id, current_user_id(), data.get('grade'))
    return jsonify({'success': True, 'lead': lead})


@bp.route('/leads/<int:lead_id>/deep-research', methods=['POST'])
def deep_research(lead_id):
    return jsonify(get_controller().leads.request_deep_research(lead_id, current_user_id())), 202


@bp.route('/leads/<int:lead_id>/emails/<provider>', methods=['POST'])
def search_emails(lead_id, provider):
    return jsonify(get_controller().search_lead_emails(lead_id, current_user_id(), provider))


@bp.route('/leads/<int:lead_id>/emails')
def list_emails(lead_id):
    emails = get_controller().emails.list_emails(
        lead_id, request.args.get('provider'), user_id=current_user_id(),
    )
    return jsonify({'emails': emails})


@bp.route('/leads/<int:lead_id>/eligibility')
def lead_eligibility(lead_id):
    return jsonify(get_controller().eligibility.check_lead_eligibility(lead_id, user_id=current_user_id()))


@bp.route('/eligibility', methods=['POST'])
def check_eligibility():
    current_user_id()
    data = request.get_json(silent=True) or {}
    email = (data.get('email') or '').strip()
    if not email:
        raise PolicyError("Email is required")
    return jsonify(get_controller().eligibility.check_eligibility(email).to_dict())


@bp.route('/suppressions/sync', methods=['POST'])
def sync_suppressions():
    current_user_id()
    counts = get_controller().sync_suppressions()
    return jsonify({'success': True, 'synced': counts})
