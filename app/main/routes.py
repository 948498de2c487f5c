from dataclasses import asdict
from datetime import date, datetime, timedelta, timezone
from functools import wraps
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from flask import (
    Blueprint,
    abort,
    current_app,
    flash,
    jsonify,
    redirect,
    render_template,
    request,
    session,
    url_for,
)

from app.access import (
    can_change_admin_state,
    current_user_context,
    form_layout,
    prepare_record_for_save,
    rejection_access,
)
from app.ai import AIServiceError, historical_data_for_ai
from app.charts import render_pareto_chart, render_progress_chart
from app.constants import (
    AI_SECTIONS,
    ALL_PARTS,
    PARETO_RANGES,
    PART_NAMES,
    PART_SLUGS,
    REPORT_SHIFT_FILTERS,
    ROLE_ADMIN,
    ROLE_FINAL_INSPECTOR,
    ROLE_TPI_INSPECTOR,
    SHIFT_OPTIONS,
    SLUG_TO_PART_NAME,
    USER_ROLE_LABELS,
    USER_ROLES,
    USER_STATUSES,
)
from app.db import (
    add_defect_type,
    clear_inspection_records,
    delete_inspection_record,
    fetch_app_user,
    fetch_app_users,
    fetch_defect_types,
    fetch_inspection_records,
    fetch_monthly_targets,
    fetch_record_by_key,
    insert_inspection_record,
    update_app_user,
    update_inspection_record,
    update_monthly_target,
)
from app.metrics import carry_forward, cumulative_before, summarize
from app.pareto import defect_pareto, tpi_aggregate, tpi_part_pareto
from app.records import (
    check_inspection_invariants,
    clean_inspection_form,
    coerce_count,
    parse_record_date,
)
from app.reports import build_progress_report, part_report, pending_snapshot

main_bp = Blueprint('main', __name__)

EDITOR_ROLES = {ROLE_ADMIN, ROLE_TPI_INSPECTOR, ROLE_FINAL_INSPECTOR}


def _is_api_request() -> bool:
    return request.path.startswith('/api/')


def login_required(view):
    @wraps(view)
    def wrapped_view(*args, **kwargs):
        if 'username' not in session:
            if _is_api_request():
                return jsonify({'error': 'Authentication required.'}), 401
            return redirect(url_for('auth.login'))
        return view(*args, **kwargs)

    return wrapped_view


def _role_required(allowed_roles: set[str]):
    def decorator(view):
        @wraps(view)
        @login_required
        def wrapped_view(*args, **kwargs):
            if current_user_context().role not in allowed_roles:
                abort(403)
            return view(*args, **kwargs)

        return wrapped_view

    return decorator


admin_required = _role_required({ROLE_ADMIN})
editor_required = _role_required(EDITOR_ROLES)


def _report_timezone():
    """Return the timezone used to decide what "today" is.

    Prefers the configured ``LOCAL_TIMEZONE`` (defaulting to Asia/Kolkata)
    and falls back to UTC if the zone cannot be loaded.
    """

    tz_name = current_app.config.get("LOCAL_TIMEZONE") or "Asia/Kolkata"
    try:
        return ZoneInfo(tz_name)
    except ZoneInfoNotFoundError:
        current_app.logger.warning(
            "Timezone %s unavailable; falling back to UTC", tz_name
        )
    except Exception as exc:  # pragma: no cover - unexpected zoneinfo failures
        current_app.logger.warning(
            "Error loading timezone %s: %s; falling back to UTC", tz_name, exc
        )
    return timezone.utc


def _today() -> date:
    return datetime.now(_report_timezone()).date()


def _date_arg(source, name: str, default: date | None = None) -> tuple[date | None, str | None]:
    raw = source.get(name)
    if raw in (None, ''):
        return default, None
    parsed = parse_record_date(raw)
    if parsed is None:
        return None, f'{name} must be formatted as YYYY-MM-DD.'
    return parsed, None


def _part_arg(source, name: str = 'part', default: str = ALL_PARTS) -> str | None:
    part = source.get(name) or default
    if part != ALL_PARTS and part not in PART_NAMES:
        return None
    return part


def _load_records() -> tuple[list[dict], str | None]:
    records, error = fetch_inspection_records()
    if error:
        current_app.logger.warning("Unable to load inspection records: %s", error)
        return [], error
    return records or [], None


def _load_targets() -> dict[str, int]:
    targets, error = fetch_monthly_targets()
    if error:
        current_app.logger.warning("Unable to load monthly targets: %s", error)
    return targets


def _summary_payload(summary) -> dict:
    payload = asdict(summary)
    payload['overall_progress'] = round(summary.overall_progress, 2)
    return payload


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------


@main_bp.route('/dashboard')
@login_required
def dashboard():
    records, error = _load_records()
    if error:
        flash(error, 'error')
    targets = _load_targets()
    today = _today()
    part = _part_arg(request.args) or ALL_PARTS

    summary = summarize(records, targets, part, today)
    window = request.args.get('range') if request.args.get('range') in PARETO_RANGES else 'all_time'
    points = defect_pareto(records, window, today)
    return render_template(
        'dashboard.html',
        summary=summary,
        targets=targets,
        part=part,
        parts=PART_NAMES,
        pareto_points=points,
        pareto_range=window,
        pareto_ranges=PARETO_RANGES,
        pareto_chart=render_pareto_chart(points),
        shift_filters=REPORT_SHIFT_FILTERS,
        part_slugs=PART_SLUGS,
        today=today,
    )


@main_bp.route('/api/dashboard')
@login_required
def api_dashboard():
    part = _part_arg(request.args)
    if part is None:
        return jsonify({'errors': {'part': 'Unknown part.'}}), 400

    errors = {}
    today = _today()
    reference, error = _date_arg(request.args, 'date', today)
    if error:
        errors['date'] = error
    start, error = _date_arg(request.args, 'start_date')
    if error:
        errors['start_date'] = error
    end, error = _date_arg(request.args, 'end_date')
    if error:
        errors['end_date'] = error
    if errors:
        return jsonify({'errors': errors}), 400

    records, error = _load_records()
    if error:
        return jsonify({'error': error}), 503
    summary = summarize(records, _load_targets(), part, reference, start=start, end=end)
    return jsonify(_summary_payload(summary))


@main_bp.route('/api/dashboard/pareto')
@login_required
def api_dashboard_pareto():
    window = request.args.get('range') or 'all_time'
    if window not in PARETO_RANGES:
        return jsonify({'errors': {'range': f'Range must be one of {", ".join(PARETO_RANGES)}.'}}), 400
    include_tpi = (request.args.get('include_tpi') or '').lower() in ('1', 'true', 'yes')

    records, error = _load_records()
    if error:
        return jsonify({'error': error}), 503

    points = defect_pareto(records, window, _today(), include_tpi=include_tpi)
    payload = {
        'range': window,
        'include_tpi': include_tpi,
        'points': [asdict(point) for point in points],
    }
    if (request.args.get('chart') or '').lower() in ('1', 'true', 'yes'):
        payload['chart'] = render_pareto_chart(points)
    return jsonify(payload)


@main_bp.route('/api/dashboard/targets', methods=['POST'])
@admin_required
def api_update_target():
    payload = request.get_json(silent=True) or {}
    part_name = payload.get('part_name')
    target = coerce_count(payload.get('target'))

    errors = {}
    if part_name not in PART_NAMES:
        errors['part_name'] = 'Part name is required.'
    if target is None or payload.get('target') in (None, ''):
        errors['target'] = 'Target must be a whole number.'
    elif target < 0:
        errors['target'] = 'Target cannot be negative.'
    if errors:
        return jsonify({'errors': errors}), 400

    targets, error = update_monthly_target(part_name, target)
    if error:
        current_app.logger.warning("Failed to update target for %s: %s", part_name, error)
        return jsonify({'error': error}), 500
    return jsonify({'targets': targets})


@main_bp.route('/api/dashboard/report', methods=['POST'])
@login_required
def api_progress_report():
    payload = request.get_json(silent=True) or {}
    report_date, error = _date_arg(payload, 'date', _today())
    if error:
        return jsonify({'errors': {'date': error}}), 400
    shift_filter = payload.get('shift') or 'DayTotal'
    if shift_filter not in REPORT_SHIFT_FILTERS:
        return jsonify({'errors': {'shift': 'Shift must be DayTotal, A or B.'}}), 400

    records, error = _load_records()
    if error:
        return jsonify({'error': error}), 503

    text, parts_progress = build_progress_report(
        records, _load_targets(), report_date, shift_filter
    )
    response = {
        'text': text,
        'parts_progress': parts_progress,
        'image_data_uri': None,
        'image_prompt': None,
        'image_error': None,
    }
    try:
        image = current_app.config['AI_CLIENT'].generate_progress_report_image(
            parts_progress, report_date.isoformat()
        )
        response['image_data_uri'] = image.image_data_uri
        response['image_prompt'] = image.image_prompt
    except AIServiceError as exc:
        current_app.logger.warning("Progress image generation failed: %s", exc)
        response['image_error'] = str(exc)
        response['image_data_uri'] = render_progress_chart(
            parts_progress, report_date.isoformat()
        ) or None
    return jsonify(response)


# ---------------------------------------------------------------------------
# Data entry and history
# ---------------------------------------------------------------------------


@main_bp.route('/data-entry')
@login_required
def data_entry():
    user = current_user_context()
    defects, error = fetch_defect_types()
    if error:
        flash(error, 'error')
    return render_template(
        'data_entry.html',
        layout=form_layout(user.role),
        rejection_access=rejection_access(user.role),
        read_only=not user.can_edit_records,
        parts=PART_NAMES,
        shifts=SHIFT_OPTIONS,
        defect_types=defects,
        ai_sections=AI_SECTIONS,
        today=_today(),
        initial=request.args,
    )


def _record_key_args(source) -> tuple[tuple | None, dict]:
    errors = {}
    record_date, error = _date_arg(source, 'date')
    if error or record_date is None:
        errors['date'] = error or 'Date is required.'
    part_name = source.get('part_name')
    if part_name not in PART_NAMES:
        errors['part_name'] = 'Part name is required.'
    shift = source.get('shift')
    if shift not in SHIFT_OPTIONS:
        errors['shift'] = 'Shift is required.'
    if errors:
        return None, errors
    return (record_date, part_name, shift), {}


@main_bp.route('/api/records/lookup')
@login_required
def api_record_lookup():
    key, errors = _record_key_args(request.args)
    if errors:
        return jsonify({'errors': errors}), 400

    record, error = fetch_record_by_key(*key)
    if error:
        return jsonify({'error': error}), 503
    return jsonify({'record': record, 'is_editing': record is not None})


@main_bp.route('/api/records/cumulative')
@login_required
def api_record_cumulative():
    key, errors = _record_key_args(request.args)
    rfd_today = coerce_count(request.args.get('rfd_today'))
    dispatch_today = coerce_count(request.args.get('dispatch_today'))
    if rfd_today is None or rfd_today < 0:
        errors['rfd_today'] = 'Value must be a whole number.'
    if dispatch_today is None or dispatch_today < 0:
        errors['dispatch_today'] = 'Value must be a whole number.'
    if errors:
        return jsonify({'errors': errors}), 400

    records, error = _load_records()
    if error:
        return jsonify({'error': error}), 503
    record_date, part_name, shift = key
    seed = cumulative_before(records, part_name, record_date, shift)
    totals = carry_forward(records, part_name, record_date, shift, rfd_today, dispatch_today)
    return jsonify({'seed': asdict(seed), 'cumulative': asdict(totals)})


@main_bp.route('/api/records', methods=['GET'])
@login_required
def api_list_records():
    part = _part_arg(request.args)
    if part is None:
        return jsonify({'errors': {'part': 'Unknown part.'}}), 400
    start, start_error = _date_arg(request.args, 'start_date')
    end, end_error = _date_arg(request.args, 'end_date')
    if start_error or end_error:
        errors = {}
        if start_error:
            errors['start_date'] = start_error
        if end_error:
            errors['end_date'] = end_error
        return jsonify({'errors': errors}), 400

    records, error = _load_records()
    if error:
        return jsonify({'error': error}), 503
    return jsonify({'records': _filter_records(records, part, start, end)})


def _filter_records(records, part, start, end) -> list[dict]:
    selected = []
    for record in records:
        if part != ALL_PARTS and record.get('part_name') != part:
            continue
        record_date = parse_record_date(record.get('date'))
        if start and (record_date is None or record_date < start):
            continue
        if end and (record_date is None or record_date > end):
            continue
        selected.append(record)
    return selected


@main_bp.route('/api/records', methods=['POST'])
@editor_required
def api_save_record():
    user = current_user_context()
    submitted, errors = clean_inspection_form(request.get_json(silent=True) or {})
    if errors:
        return jsonify({'errors': errors}), 400

    records, error = _load_records()
    if error:
        return jsonify({'error': error}), 503

    existing, error = fetch_record_by_key(
        submitted['date'], submitted['part_name'], submitted['shift']
    )
    if error:
        return jsonify({'error': error}), 503

    seed = cumulative_before(records, submitted['part_name'], submitted['date'], submitted['shift'])
    record = prepare_record_for_save(user.role, submitted, existing, seed)
    errors = check_inspection_invariants(record)
    if errors:
        return jsonify({'errors': errors}), 400

    if existing:
        saved, error = update_inspection_record(existing['id'], record)
        status = 200
    else:
        saved, error = insert_inspection_record(record)
        status = 201
    if error:
        current_app.logger.warning(
            "Failed to save record %s/%s/%s: %s",
            record['date'], record['part_name'], record['shift'], error,
        )
        return jsonify({'errors': {'base': error}}), 500
    return jsonify({'record': saved, 'updated': bool(existing)}), status


@main_bp.route('/api/records/<record_id>', methods=['DELETE'])
@editor_required
def api_delete_record(record_id):
    _, error = delete_inspection_record(record_id)
    if error:
        current_app.logger.warning("Failed to delete record %s: %s", record_id, error)
        return jsonify({'error': error}), 500
    return jsonify({'deleted': record_id})


@main_bp.route('/history')
@login_required
def history():
    user = current_user_context()
    part = _part_arg(request.args) or ALL_PARTS
    start, start_error = _date_arg(request.args, 'start_date')
    end, end_error = _date_arg(request.args, 'end_date')
    for message in (start_error, end_error):
        if message:
            flash(message, 'error')

    records, error = _load_records()
    if error:
        flash(error, 'error')
    return render_template(
        'history.html',
        records=_filter_records(records, part, start, end),
        part=part,
        parts=PART_NAMES,
        start_date=start,
        end_date=end,
        can_delete=user.can_edit_records,
    )


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


def _pending_report(stage: str, template: str):
    records, error = _load_records()
    if error:
        flash(error, 'error')
    today = _today()
    return render_template(template, rows=pending_snapshot(records, stage, today), today=today)


@main_bp.route('/reports/material-inspection')
@login_required
def material_inspection_report():
    return _pending_report('material', 'reports/material_inspection.html')


@main_bp.route('/reports/final-inspection')
@login_required
def final_inspection_report():
    return _pending_report('final', 'reports/final_inspection.html')


def _tpi_range(source) -> tuple[date | None, date | None, str | None, dict]:
    today = _today()
    errors = {}
    start, error = _date_arg(source, 'start_date', today - timedelta(days=6))
    if error:
        errors['start_date'] = error
    end, error = _date_arg(source, 'end_date', today)
    if error:
        errors['end_date'] = error
    part = _part_arg(source)
    if part is None:
        errors['part'] = 'Unknown part.'
    if start and end and start > end:
        errors['start_date'] = 'Start date must be on or before the end date.'
    return start, end, part, errors


@main_bp.route('/reports/tpi-inspection')
@login_required
def tpi_inspection_report():
    records, error = _load_records()
    if error:
        flash(error, 'error')
    today = _today()
    start, end, part, errors = _tpi_range(request.args)
    for message in errors.values():
        flash(message, 'error')
    if errors:
        start, end, part = today - timedelta(days=6), today, ALL_PARTS

    points = tpi_part_pareto(records, start, end, part)
    return render_template(
        'reports/tpi_inspection.html',
        rows=pending_snapshot(records, 'tpi', today),
        today=today,
        start_date=start,
        end_date=end,
        part=part,
        parts=PART_NAMES,
        stats=tpi_aggregate(records, start, end, part),
        pareto_points=points,
        pareto_chart=render_pareto_chart(points, title='TPI Rejections by Part'),
    )


@main_bp.route('/api/reports/tpi')
@login_required
def api_tpi_report():
    start, end, part, errors = _tpi_range(request.args)
    if errors:
        return jsonify({'errors': errors}), 400
    records, error = _load_records()
    if error:
        return jsonify({'error': error}), 503
    return jsonify(
        {
            'start_date': start.isoformat(),
            'end_date': end.isoformat(),
            'part': part,
            'stats': tpi_aggregate(records, start, end, part),
            'pareto': [asdict(point) for point in tpi_part_pareto(records, start, end, part)],
        }
    )


@main_bp.route('/reports/part/<slug>')
@login_required
def part_report_page(slug):
    part_name = SLUG_TO_PART_NAME.get(slug)
    if part_name is None:
        flash('Unknown part report.', 'warning')
        return redirect(url_for('main.dashboard'))

    records, error = _load_records()
    if error:
        flash(error, 'error')
    return render_template(
        'reports/part.html',
        report=part_report(records, part_name, _today()),
        part_slugs=PART_SLUGS,
    )


# ---------------------------------------------------------------------------
# AI assistance
# ---------------------------------------------------------------------------


@main_bp.route('/api/ai/suggest-status', methods=['POST'])
@login_required
def api_suggest_status():
    payload = request.get_json(silent=True) or {}
    part_name = payload.get('part_name')
    section = payload.get('section')
    subsection = payload.get('subsection')

    errors = {}
    if part_name not in PART_NAMES:
        errors['part_name'] = 'Part name is required.'
    if section not in AI_SECTIONS:
        errors['section'] = 'Section is required.'
    elif subsection not in AI_SECTIONS[section]:
        errors['subsection'] = 'Subsection is not valid for the section.'
    if errors:
        return jsonify({'errors': errors}), 400

    records, error = _load_records()
    if error:
        return jsonify({'error': error}), 503

    try:
        suggestion = current_app.config['AI_CLIENT'].suggest_inspection_status(
            part_name, section, subsection, historical_data_for_ai(records, part_name)
        )
    except AIServiceError as exc:
        current_app.logger.warning("Status suggestion failed: %s", exc)
        return jsonify({'error': 'Could not fetch suggestion.', 'detail': str(exc)}), 502
    return jsonify(asdict(suggestion))


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------


@main_bp.route('/admin')
@admin_required
def admin_panel():
    users, error = fetch_app_users()
    if error:
        flash(error, 'error')
    defects, defects_error = fetch_defect_types()
    if defects_error:
        flash(defects_error, 'error')
    return render_template(
        'admin.html',
        users=sorted(users or [], key=lambda u: (u.get('username') or '').casefold()),
        roles=USER_ROLES,
        role_labels=USER_ROLE_LABELS,
        statuses=USER_STATUSES,
        defect_types=defects,
        targets=_load_targets(),
        parts=PART_NAMES,
        current_user_id=session.get('user_id'),
    )


def _update_user_field(user_id, field: str, value: str, allowed: list[str]):
    if value not in allowed:
        flash(f'Invalid {field}.', 'error')
        return redirect(url_for('main.admin_panel'))

    target, error = fetch_app_user(user_id)
    if error:
        flash(error, 'error')
        return redirect(url_for('main.admin_panel'))
    if target is None:
        abort(404)

    users, error = fetch_app_users()
    if error:
        flash(error, 'error')
        return redirect(url_for('main.admin_panel'))

    allowed_change, message = can_change_admin_state(
        users,
        session.get('user_id'),
        user_id,
        new_role=value if field == 'role' else None,
        new_status=value if field == 'status' else None,
    )
    if not allowed_change:
        flash(message, 'error')
        return redirect(url_for('main.admin_panel'))

    _, error = update_app_user(user_id, {field: value})
    if error:
        current_app.logger.warning("Failed to update %s for user %s: %s", field, user_id, error)
        flash(error, 'error')
    else:
        flash(f"Updated {target.get('username') or 'user'}.", 'success')
    return redirect(url_for('main.admin_panel'))


@main_bp.route('/admin/users/<user_id>/status', methods=['POST'])
@admin_required
def admin_update_user_status(user_id):
    return _update_user_field(user_id, 'status', request.form.get('status'), USER_STATUSES)


@main_bp.route('/admin/users/<user_id>/role', methods=['POST'])
@admin_required
def admin_update_user_role(user_id):
    role = (request.form.get('role') or '').upper()
    return _update_user_field(user_id, 'role', role, USER_ROLES)


@main_bp.route('/admin/defect-types', methods=['POST'])
@admin_required
def admin_add_defect_type():
    name = request.form.get('name') or ''
    _, error = add_defect_type(name)
    if error:
        flash(error, 'error')
    else:
        flash(f'"{name.strip()}" has been added.', 'success')
    return redirect(url_for('main.admin_panel'))


@main_bp.route('/admin/records/clear', methods=['POST'])
@admin_required
def admin_clear_records():
    if request.form.get('confirm') != 'DELETE':
        flash('Type DELETE to confirm clearing all inspection records.', 'error')
        return redirect(url_for('main.admin_panel'))
    message, error = clear_inspection_records()
    if error:
        current_app.logger.warning("Failed to clear inspection records: %s", error)
        flash(error, 'error')
    else:
        flash(message, 'success')
    return redirect(url_for('main.admin_panel'))
