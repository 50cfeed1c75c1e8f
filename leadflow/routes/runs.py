"""
Run control API — create runs and drive their lifecycle.
"""
from flask import Blueprint, request, jsonify

from leadflow.pipeline.controller import get_controller
from leadflow.routes.common import current_user_id, register_error_handlers

bp = Blueprint('runs', __name__, url_prefix='/api/runs')
register_error_handlers(bp)


@bp.route('', methods=['POST'])
def create_run():
    """Create a run and start scraping."""
    data = request.get_json(silent=True) or {}
    run = get_controller().runs.create_run(
        user_id=current_user_id(),
        business_types=data.get('business_types') or data.get('business_type'),
        location=data.get('location'),
        target_count=data.get('target_count'),
    )
    return jsonify(run), 202


@bp.route('/<run_id>')
def get_run(run_id):
    return jsonify(get_controller().runs.get_run(run_id, current_user_id()))


@bp.route('/<run_id>/logs')
def run_logs(run_id):
    limit = request.args.get('limit', 100, type=int)
    logs = get_controller().runs.progress_logs(run_id, current_user_id(), limit=min(limit, 500))
    return jsonify({'logs': logs})


@bp.route('/<run_id>/research', methods=['POST'])
def start_research(run_id):
    return jsonify(get_controller().runs.start_research(run_id, current_user_id())), 202


@bp.route('/<run_id>/pause', methods=['POST'])
def pause_run(run_id):
    run = get_controller().runs.pause(run_id, current_user_id())
    return jsonify({'success': True, 'message': 'Research paused successfully', 'run': run})


@bp.route('/<run_id>/resume', methods=['POST'])
def resume_run(run_id):
    result = get_controller().runs.resume(run_id, current_user_id())
    return jsonify({
        'success': True,
        'message': 'Research resumed successfully',
        'run': result['run'],
        'pendingLeadsTriggered': result['pending_leads_triggered'],
    })


@bp.route('/<run_id>/restart-prescreen', methods=['POST'])
def restart_prescreen(run_id):
    return jsonify(get_controller().runs.restart_prescreen(run_id, current_user_id())), 202


@bp.route('/<run_id>/reset-prescreen', methods=['POST'])
def reset_prescreen(run_id):
    return jsonify(get_controller().runs.reset_prescreening(run_id, current_user_id())), 202


@bp.route('/<run_id>/clear-research', methods=['POST'])
def clear_research(run_id):
    return jsonify(get_controller().runs.clear_research(run_id, current_user_id()))


@bp.route('/<run_id>/mark-complete', methods=['POST'])
def mark_complete(run_id):
    return jsonify(get_controller().runs.mark_complete(run_id, current_user_id()))


@bp.route('/<run_id>/force-restart', methods=['POST'])
def force_restart(run_id):
    return jsonify(get_controller().runs.force_restart(run_id, current_user_id())), 202


@bp.route('/<run_id>/deep-research', methods=['POST'])
def deep_research(run_id):
    data = request.get_json(silent=True) or {}
    result = get_controller().runs.trigger_deep_research(
        run_id, current_user_id(),
        filter_grade=data.get('filterGrade'),
        lead_ids=data.get('leadIds'),
    )
    return jsonify(result), 202


@bp.route('/<run_id>/emails/<provider>', methods=['POST'])
def search_run_emails(run_id, provider):
    data = request.get_json(silent=True) or {}
    result = get_controller().search_run_emails(
        run_id, current_user_id(), provider,
        lead_ids=data.get('leadIds'),
        only_missing=data.get('onlyMissing', True),
    )
    return jsonify(result)
