"""
Flask REST API for Smart To-Do
Magic-link sessions, task CRUD and Google Calendar connection endpoints
"""

import logging
import secrets
from functools import wraps
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from flask import Blueprint, Flask, current_app, g, jsonify, redirect, request, session
from flask_cors import CORS

from analytics import Analytics
from config import Config, configure_logging
from database import Database, to_iso, utcnow
from email_notifier import EmailNotifier
from google_calendar_sync import GoogleCalendarSync
from task_manager import TaskAccessError, TaskManager, TaskNotFoundError, serialize_task
from user_manager import UserManager
from validations import TaskValidationError

logger = logging.getLogger(__name__)

api = Blueprint('api', __name__)


def services() -> Dict[str, Any]:
    return current_app.extensions['smart_todo']


def app_redirect(path: str, **params):
    """Redirect to a page of the web client, with optional query parameters."""
    url = f"{services()['config'].app_url.rstrip('/')}{path}"
    if params:
        url = f"{url}?{urlencode(params)}"
    return redirect(url)


def login_required(view):
    """Require a signed-in session; exposes the user record as g.user."""
    @wraps(view)
    def wrapped(*args, **kwargs):
        user_id = session.get('user_id')
        user = services()['users'].get_user(user_id) if user_id else None
        if not user:
            return jsonify({'error': 'Unauthorized'}), 401
        g.user = user
        return view(*args, **kwargs)
    return wrapped


def json_body() -> Optional[Any]:
    return request.get_json(silent=True)


# ==================== HEALTH CHECK ====================

@api.route('/api/health', methods=['GET'])
def health_check():
    """Health check endpoint"""
    stats = services()['db'].get_database_stats()
    return jsonify({
        'status': 'healthy',
        'timestamp': to_iso(utcnow()),
        'database_tables': stats,
    })


# ==================== AUTHENTICATION ENDPOINTS ====================

@api.route('/api/auth/magic-link', methods=['POST'])
def request_magic_link():
    """Email a one-time sign-in link"""
    data = json_body()
    if not isinstance(data, dict):
        return jsonify({'error': 'Invalid JSON in request body'}), 400

    try:
        email, token = services()['users'].create_magic_link_token(data.get('email'))
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    base_url = services()['config'].app_url.rstrip('/')
    url = f"{base_url}/api/auth/verify?{urlencode({'token': token, 'email': email})}"
    try:
        services()['notifier'].send_magic_link(email, url)
    except Exception:
        logger.exception("[!] Failed to send magic link email to %s", email)
        return jsonify({'error': 'Unable to send sign-in email. Please try again.'}), 500

    return jsonify({'status': 'sent', 'email': email}), 200


@api.route('/api/auth/verify', methods=['GET'])
def verify_magic_link():
    """Consume a magic link and start a session"""
    user = services()['users'].verify_magic_link(
        request.args.get('email'), request.args.get('token')
    )
    if not user:
        return app_redirect('/login', error='invalid_token')

    session.clear()
    session['user_id'] = user['id']
    session['email'] = user['email']
    return app_redirect('/tasks')


@api.route('/api/auth/session', methods=['GET'])
def get_session():
    """Current session's user"""
    user_id = session.get('user_id')
    user = services()['users'].get_user(user_id) if user_id else None
    if not user:
        return jsonify({'status': 'not_authenticated'}), 401
    return jsonify({
        'status': 'authenticated',
        'user': UserManager.public_profile(user),
    })


@api.route('/api/auth/logout', methods=['POST'])
def logout():
    """Logout user and clear session"""
    session.clear()
    return jsonify({'status': 'success', 'message': 'Logged out successfully'})


# ==================== GOOGLE CALENDAR CONNECTION ====================

@api.route('/api/auth/google', methods=['GET'])
@login_required
def google_auth_start():
    """Send the user to Google's consent screen"""
    calendar = services()['calendar']
    if not calendar.is_configured:
        return jsonify({'error': 'Google OAuth not configured'}), 500

    state = secrets.token_urlsafe(24)
    session['google_oauth_state'] = state
    url = calendar.authorization_url(services()['config'].google_redirect_uri, state)
    return redirect(url)


@api.route('/api/auth/google/callback', methods=['GET'])
def google_auth_callback():
    """Store the refresh token returned by Google"""
    user_id = session.get('user_id')
    if not user_id:
        return app_redirect('/login', error='unauthorized')

    if request.args.get('error'):
        return app_redirect('/tasks', error='google_auth_failed')

    code = request.args.get('code')
    state = request.args.get('state')
    expected_state = session.pop('google_oauth_state', None)
    if not code or not state or not expected_state or not secrets.compare_digest(state, expected_state):
        return app_redirect('/tasks', error='invalid_callback')

    calendar = services()['calendar']
    if not calendar.is_configured:
        return app_redirect('/tasks', error='not_configured')

    users = services()['users']
    try:
        refresh_token = calendar.exchange_code(code, services()['config'].google_redirect_uri, state)
    except Exception:
        logger.exception("[!] Google OAuth code exchange failed for user %s", user_id)
        return app_redirect('/tasks', error='google_auth_failed')

    if refresh_token:
        users.store_google_refresh_token(user_id, refresh_token, 'primary')
    elif not users.get_calendar_status(user_id)['connected']:
        return app_redirect('/tasks', error='no_refresh_token')

    return app_redirect('/tasks', google_connected='true')


@api.route('/api/user/calendar-status', methods=['GET'])
@login_required
def calendar_status():
    """Whether the user has connected Google Calendar"""
    return jsonify(services()['users'].get_calendar_status(g.user['id']))


@api.route('/api/user/disconnect-calendar', methods=['POST'])
@login_required
def disconnect_calendar():
    """Forget the user's Google Calendar credentials"""
    services()['users'].disconnect_calendar(g.user['id'])
    return jsonify({'success': True})


# ==================== TASK ENDPOINTS ====================

@api.route('/api/tasks', methods=['GET'])
@login_required
def list_tasks():
    """Get the user's tasks with optional filtering"""
    tasks = services()['tasks'].list_tasks(g.user['id'], request.args)
    return jsonify({'data': [serialize_task(t) for t in tasks]})


@api.route('/api/tasks', methods=['POST'])
@login_required
def create_task():
    """Create new task"""
    data = json_body()
    if data is None:
        return jsonify({'error': 'Invalid JSON in request body'}), 400
    task = services()['tasks'].create_task(g.user, data)
    return jsonify({'data': serialize_task(task)}), 201


@api.route('/api/tasks/summary', methods=['GET'])
@login_required
def task_summary():
    """Dashboard counters"""
    return jsonify({'data': services()['analytics'].get_task_summary(g.user['id'])})


@api.route('/api/tasks/<int:task_id>', methods=['GET'])
@login_required
def get_task(task_id):
    """Get single task"""
    task = services()['tasks'].get_task(g.user['id'], task_id)
    return jsonify({'data': serialize_task(task)})


@api.route('/api/tasks/<int:task_id>', methods=['PATCH'])
@login_required
def update_task(task_id):
    """Partially update a task"""
    data = json_body()
    if data is None:
        return jsonify({'error': 'Invalid JSON in request body'}), 400
    task = services()['tasks'].update_task(g.user, task_id, data)
    return jsonify({'data': serialize_task(task)})


@api.route('/api/tasks/<int:task_id>/toggle', methods=['POST'])
@login_required
def toggle_task(task_id):
    """Complete a task, or restore it to its status before completion"""
    task = services()['tasks'].toggle_task_status(g.user, task_id)
    return jsonify({'data': serialize_task(task)})


@api.route('/api/tasks/<int:task_id>', methods=['DELETE'])
@login_required
def delete_task(task_id):
    """Delete task"""
    task = services()['tasks'].delete_task(g.user, task_id)
    return jsonify({'data': serialize_task(task)})


# ==================== ERROR HANDLERS ====================

def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(TaskValidationError)
    def handle_validation_error(error):
        return jsonify({'error': str(error), 'details': error.issues}), 400

    @app.errorhandler(TaskNotFoundError)
    def handle_not_found(error):
        return jsonify({'error': str(error)}), 404

    @app.errorhandler(TaskAccessError)
    def handle_forbidden(error):
        return jsonify({'error': str(error)}), 403

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'error': 'Endpoint not found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'error': 'Method not allowed'}), 405

    @app.errorhandler(500)
    def internal_error(error):
        logger.error("500 ERROR: %s", getattr(error, 'original_exception', error))
        return jsonify({'error': 'Internal server error'}), 500


# ==================== APP FACTORY ====================

def create_app(overrides: Dict[str, Any] = None, notifier: EmailNotifier = None,
               calendar: GoogleCalendarSync = None) -> Flask:
    """
    Build the Flask application.

    Args:
        overrides: Config values that take precedence over the environment
        notifier: Email notifier (built from config when omitted)
        calendar: Calendar sync client (built from config when omitted)
    """
    config = Config.from_env(overrides)
    configure_logging(config.log_level)

    app = Flask(__name__)
    app.secret_key = config.secret_key
    app.config.update(
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_SAMESITE='Lax',
        SESSION_COOKIE_SECURE=not config.is_development,
    )
    CORS(app, supports_credentials=True, origins=[config.app_url])

    db = Database(config.database_path)
    notifier = notifier or EmailNotifier.from_config(config)
    calendar = calendar or GoogleCalendarSync.from_config(config)

    app.extensions['smart_todo'] = {
        'config': config,
        'db': db,
        'notifier': notifier,
        'calendar': calendar,
        'users': UserManager(db),
        'tasks': TaskManager(db, notifier=notifier, calendar=calendar),
        'analytics': Analytics(db),
    }

    app.register_blueprint(api)
    register_error_handlers(app)
    return app
