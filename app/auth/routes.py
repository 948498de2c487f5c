import os

from flask import (
    Blueprint,
    current_app,
    flash,
    redirect,
    render_template,
    request,
    session,
    url_for,
)
from werkzeug.security import check_password_hash, generate_password_hash

from app import db as db_module
from app.constants import (
    DEFAULT_ROLE,
    ROLE_ADMIN,
    STATUS_ACTIVE,
    STATUS_PENDING,
    USER_ROLE_LABELS,
    USER_ROLES,
)

auth_bp = Blueprint('auth', __name__)

REQUIRED_USERS = {
    'ADMIN': 'ADMIN_PASSWORD',
}

SIGNUP_ROLES = [role for role in USER_ROLES if role != ROLE_ADMIN]


def _load_environment_users() -> dict[str, str]:
    return {
        role: generate_password_hash(os.environ[env_key])
        for role, env_key in REQUIRED_USERS.items()
        if os.environ.get(env_key)
    }


ENVIRONMENT_USERS = _load_environment_users()


def _fetch_supabase_user(username: str) -> tuple[dict | None, str | None]:
    supabase = current_app.config.get('SUPABASE')
    if not supabase or not hasattr(supabase, 'table'):
        return None, None

    try:
        return db_module.fetch_app_user_credentials(username)
    except Exception as exc:  # pragma: no cover - defensive guard
        current_app.logger.warning("Failed to fetch Supabase credentials: %s", exc)
        return None, str(exc)


def _start_session(user_id, username: str, role: str, status: str = STATUS_ACTIVE) -> None:
    session['user_id'] = user_id
    session['username'] = username
    session['role'] = role
    session['status'] = status


@auth_bp.route('/', methods=['GET', 'POST'])
@auth_bp.route('/login', methods=['GET', 'POST'])
def login():
    if request.method == 'POST':
        submitted_username = (request.form.get('username') or '').strip()
        password = request.form.get('password') or ''
        normalized_username = submitted_username.upper()

        supabase_user = None
        supabase_error = None
        if submitted_username:
            supabase_user, supabase_error = _fetch_supabase_user(submitted_username)

        if supabase_user and supabase_user.get('password_hash'):
            if check_password_hash(supabase_user['password_hash'], password):
                status = supabase_user.get('status') or STATUS_PENDING
                if status == STATUS_PENDING:
                    flash('Your account is pending approval by an administrator.', 'warning')
                    return render_template('login.html'), 403
                if status != STATUS_ACTIVE:
                    flash('Your account has been suspended.', 'warning')
                    return render_template('login.html'), 403
                _start_session(
                    supabase_user.get('id'),
                    supabase_user.get('display_name')
                    or supabase_user.get('username')
                    or submitted_username,
                    (supabase_user.get('role') or DEFAULT_ROLE).upper(),
                    status,
                )
                return redirect(url_for('main.dashboard'))
        elif supabase_error:
            current_app.logger.warning("Supabase user lookup failed: %s", supabase_error)
            flash(
                'User lookup failed; falling back to built-in credentials.',
                'warning',
            )

        if (
            normalized_username in ENVIRONMENT_USERS
            and check_password_hash(ENVIRONMENT_USERS[normalized_username], password)
        ):
            _start_session(None, submitted_username or normalized_username, normalized_username)
            return redirect(url_for('main.dashboard'))
        flash('Invalid credentials.')
    return render_template('login.html')


@auth_bp.route('/signup', methods=['GET', 'POST'])
def signup():
    form = request.form
    if request.method == 'POST':
        username = (form.get('username') or '').strip()
        display_name = (form.get('display_name') or '').strip()
        mobile = (form.get('mobile') or '').strip()
        password = form.get('password') or ''
        confirm = form.get('confirm_password') or ''
        role = (form.get('role') or DEFAULT_ROLE).upper()

        errors = []
        if not username:
            errors.append('Username is required.')
        if not display_name:
            errors.append('Name is required.')
        if not mobile:
            errors.append('Mobile number is required.')
        if len(password) < 6:
            errors.append('Password must be at least 6 characters.')
        elif password != confirm:
            errors.append('Passwords do not match.')
        if role not in SIGNUP_ROLES:
            errors.append('Select a valid role.')

        if not errors:
            existing, error = db_module.fetch_app_user_credentials(username)
            if error:
                errors.append(error)
            elif existing:
                errors.append('That username is already taken.')

        if not errors:
            _, error = db_module.insert_app_user(
                {
                    'username': username,
                    'display_name': display_name,
                    'mobile': mobile,
                    'password_hash': generate_password_hash(password),
                    'role': role,
                    'status': STATUS_PENDING,
                }
            )
            if error:
                current_app.logger.warning("Failed to create user %s: %s", username, error)
                errors.append(error)
            else:
                flash('Your account has been created and is pending approval.', 'success')
                return redirect(url_for('auth.login'))

        for message in errors:
            flash(message, 'error')
        return render_template(
            'signup.html', roles=SIGNUP_ROLES, role_labels=USER_ROLE_LABELS, form=form
        ), 400

    return render_template(
        'signup.html', roles=SIGNUP_ROLES, role_labels=USER_ROLE_LABELS, form=form
    )


@auth_bp.route('/logout')
def logout():
    for key in ('username', 'role', 'user_id', 'status'):
        session.pop(key, None)
    return redirect(url_for('auth.login'))
