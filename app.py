"""
Proof Attendance System - Main Application

This module is the HTTP entry point of the proof attendance service. It wires
the token codec, generator, validator, session manager and commit protocol
together and exposes them as a small JSON API:

- instructors start and end sessions and fetch the live token to display
- students submit a scanned QR payload or a typed OTP code

Authentication is handled upstream; the routes trust the ``staff_id`` or
``student_id`` already present in the Flask session.
"""

import logging
import os
from dataclasses import asdict
from functools import wraps

from flask import Flask, current_app, jsonify, request, session

from config import get_subjects_for_cohort, init_config
from proof_attendance.modules.attendance_manager import AttendanceManager, CommitOutcome
from proof_attendance.modules.database_manager import DatabaseManager, StorageError
from proof_attendance.modules.proof_token import OtpToken
from proof_attendance.modules.qr_generator import QRGenerator
from proof_attendance.modules.session_manager import SessionError, SessionManager
from proof_attendance.modules.token_codec import DecodeError, TokenCodec
from proof_attendance.modules.token_generator import TokenGenerator
from proof_attendance.modules.token_validator import TokenValidator

# Configure logging
logging.basicConfig(
    level=os.environ.get('LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
)
logger = logging.getLogger(__name__)

# Message and HTTP status returned for each submission outcome
OUTCOME_RESPONSES = {
    CommitOutcome.MARKED: ('Attendance marked successfully', 201),
    CommitOutcome.INVALID_PROOF: ('Invalid QR code or OTP', 400),
    CommitOutcome.SESSION_NOT_FOUND: ('No running session matches this code', 404),
    CommitOutcome.EXPIRED_PROOF: ('This code has expired. Use the one currently displayed', 400),
    CommitOutcome.SESSION_INACTIVE: ('This session has already ended', 409),
    CommitOutcome.SUBJECT_MISMATCH: ('Code does not match the session subject', 400),
    CommitOutcome.COHORT_MISMATCH: ('Code does not match the session year/semester', 400),
    CommitOutcome.NOT_ELIGIBLE: ('This session is not for your year/semester', 403),
    CommitOutcome.ALREADY_MARKED: ('Attendance already marked for this session', 409),
    CommitOutcome.STORAGE_ERROR: ('Failed to mark attendance. Please try again', 500),
}

SESSION_ERROR_STATUS = {
    'invalid_request': 400,
    'forbidden': 403,
    'not_found': 404,
    'conflict': 409,
}


def staff_required(f):
    """Decorator to require an instructor identity"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if 'staff_id' not in session:
            return jsonify({'success': False, 'message': 'Unauthorized'}), 401
        return f(*args, **kwargs)
    return decorated_function


def student_required(f):
    """Decorator to require a student identity"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if 'student_id' not in session:
            return jsonify({'success': False, 'message': 'Only students can mark attendance'}), 401
        return f(*args, **kwargs)
    return decorated_function


def _component(name):
    return current_app.extensions['proof_attendance'][name]


def _session_to_dict(attendance_session):
    data = asdict(attendance_session)
    data.pop('current_token', None)
    return data


def _json_object():
    """Request body as a dict, or None when it is not a JSON object"""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    return data if isinstance(data, dict) else None


def _bad_body():
    return jsonify({'success': False, 'message': 'Request body must be a JSON object'}), 400


def _commit_response(result):
    message, status = OUTCOME_RESPONSES[result.outcome]
    body = result.to_dict()
    body['message'] = message
    return jsonify(body), status


def create_app(config_name=None, overrides=None):
    """
    Application factory.

    Args:
        config_name (str): Key into ``config.config``; FLASK_ENV when None
        overrides (dict): Values applied on top of the configuration class

    Returns:
        Flask: Configured application
    """
    app = Flask(__name__)
    init_config(app, config_name)
    if overrides:
        app.config.update(overrides)

    db_manager = DatabaseManager(
        app.config['DATABASE_PATH'],
        timeout=app.config['DATABASE_TIMEOUT'],
        journal_mode=app.config['DATABASE_JOURNAL_MODE']
    )
    codec = TokenCodec(app.config['PROOF_TOKEN_SECRET'])
    generator = TokenGenerator()
    validator = TokenValidator(
        qr_window_ms=app.config['QR_TOKEN_WINDOW_MS'],
        otp_window_ms=app.config['OTP_TOKEN_WINDOW_MS']
    )
    session_manager = SessionManager(
        db_manager,
        codec,
        generator,
        rotation_period_seconds=app.config['ROTATION_PERIOD_SECONDS'],
        year_range=app.config['COHORT_YEAR_RANGE'],
        semester_range=app.config['COHORT_SEMESTER_RANGE']
    )

    app.extensions['proof_attendance'] = {
        'db_manager': db_manager,
        'codec': codec,
        'validator': validator,
        'session_manager': session_manager,
        'attendance_manager': AttendanceManager(db_manager, codec, validator),
        'qr_generator': QRGenerator(
            box_size=app.config['QR_CODE_BOX_SIZE'],
            border=app.config['QR_CODE_BORDER']
        ),
    }

    session_manager.resume_active_sessions()
    register_routes(app)
    return app


def register_routes(app):
    """Attach the JSON API to an application"""

    @app.route('/api/subjects')
    def list_subjects():
        """Subjects offered to a cohort"""
        year = request.args.get('year', type=int)
        semester = request.args.get('semester', type=int)
        if year is None or semester is None:
            return jsonify({'success': False, 'message': 'year and semester are required'}), 400
        return jsonify({'success': True, 'subjects': get_subjects_for_cohort(year, semester)})

    @app.route('/api/sessions', methods=['GET'])
    @staff_required
    def list_sessions():
        """Sessions run by the current instructor"""
        try:
            sessions = _component('session_manager').get_sessions_for_staff(session['staff_id'])
            return jsonify({'success': True, 'sessions': [_session_to_dict(s) for s in sessions]})
        except StorageError as e:
            logger.error(f"Session listing error: {str(e)}")
            return jsonify({'success': False, 'message': 'Failed to fetch sessions'}), 500

    @app.route('/api/sessions', methods=['POST'])
    @staff_required
    def start_session():
        """Start a session and its token rotation"""
        data = _json_object()
        if data is None:
            return _bad_body()
        try:
            new_session = _component('session_manager').start_session(
                session['staff_id'],
                data.get('subject'),
                data.get('year'),
                data.get('semester'),
                data.get('token_mode', 'qr')
            )
            return jsonify({'success': True, 'session': _session_to_dict(new_session)}), 201

        except SessionError as e:
            return jsonify({'success': False, 'message': e.message}), SESSION_ERROR_STATUS.get(e.error_type, 400)
        except StorageError as e:
            logger.error(f"Session creation error: {str(e)}")
            return jsonify({'success': False, 'message': 'Failed to create session'}), 500

    @app.route('/api/sessions/<session_id>', methods=['PATCH'])
    @staff_required
    def update_session(session_id):
        """End a session (``{"is_active": false}``)"""
        data = _json_object()
        if data is None:
            return _bad_body()
        if data.get('is_active') is not False:
            return jsonify({'success': False, 'message': 'Only ending a session is supported'}), 400

        try:
            ended = _component('session_manager').end_session(session_id, session['staff_id'])
            return jsonify({'success': True, 'session': _session_to_dict(ended)})

        except SessionError as e:
            return jsonify({'success': False, 'message': e.message}), SESSION_ERROR_STATUS.get(e.error_type, 400)
        except StorageError as e:
            logger.error(f"Session update error: {str(e)}")
            return jsonify({'success': False, 'message': 'Failed to update session'}), 500

    @app.route('/api/sessions/<session_id>', methods=['DELETE'])
    @staff_required
    def delete_session(session_id):
        """Delete a session and its attendance"""
        try:
            _component('session_manager').delete_session(session_id, session['staff_id'])
            return jsonify({'success': True, 'message': 'Session deleted successfully'})

        except SessionError as e:
            return jsonify({'success': False, 'message': e.message}), SESSION_ERROR_STATUS.get(e.error_type, 400)
        except StorageError as e:
            logger.error(f"Session deletion error: {str(e)}")
            return jsonify({'success': False, 'message': 'Failed to delete session'}), 500

    @app.route('/api/sessions/<session_id>/display')
    @staff_required
    def session_display(session_id):
        """Live token for the instructor's screen"""
        try:
            live = _component('db_manager').get_session(session_id)
            if live is None or live.staff_id != session['staff_id']:
                return jsonify({'success': False, 'message': 'Session not found or access denied'}), 404
            if not live.is_active:
                return jsonify({'success': False, 'message': 'Session is not active'}), 409
            if not live.current_token:
                return jsonify({'success': False, 'message': 'Token not published yet'}), 503

            scheduler = _component('session_manager').get_scheduler(session_id)
            payload = {
                'success': True,
                'session_id': live.id,
                'token_mode': live.token_mode,
                'token': live.current_token,
                'seconds_until_rotation': scheduler.seconds_until_next_rotation() if scheduler else None,
            }

            if live.token_mode == 'otp':
                token = _component('codec').decode(live.current_token)
                if isinstance(token, OtpToken):
                    payload['otp_code'] = token.code
            else:
                caption = f"{live.subject} - Year {live.cohort_year} - Sem {live.cohort_semester}"
                payload['qr'] = _component('qr_generator').render_base64(live.current_token, caption)['image_base64']

            return jsonify(payload)

        except (StorageError, DecodeError) as e:
            logger.error(f"Display error for session {session_id}: {str(e)}")
            return jsonify({'success': False, 'message': 'Failed to load the live token'}), 500

    @app.route('/api/sessions/<session_id>/attendance')
    @staff_required
    def session_attendance(session_id):
        """Students marked present in a session"""
        try:
            live = _component('db_manager').get_session(session_id)
            if live is None or live.staff_id != session['staff_id']:
                return jsonify({'success': False, 'message': 'Access denied'}), 403

            attendance = _component('attendance_manager').get_session_attendance(session_id)
            return jsonify({
                'success': True,
                'attendance': attendance,
                'total_students': live.total_students
            })
        except StorageError as e:
            logger.error(f"Attendance listing error: {str(e)}")
            return jsonify({'success': False, 'message': 'Failed to fetch attendance'}), 500

    @app.route('/api/attendance/scan', methods=['POST'])
    @student_required
    def scan_token():
        """Submit a scanned QR payload"""
        data = _json_object()
        if data is None:
            return _bad_body()
        raw_token = data.get('token')
        if not isinstance(raw_token, str) or not raw_token.strip():
            return jsonify({'success': False, 'message': 'No QR code data provided'}), 400

        result = _component('attendance_manager').process_token_submission(raw_token.strip(), session['student_id'])
        return _commit_response(result)

    @app.route('/api/attendance/otp', methods=['POST'])
    @student_required
    def submit_otp():
        """Submit a typed OTP code"""
        data = _json_object()
        if data is None:
            return _bad_body()
        otp_code = data.get('otp_code') or data.get('otpCode')
        if not otp_code:
            return jsonify({'success': False, 'message': 'OTP code is required'}), 400

        session_id = data.get('session_id')
        if session_id is not None and not isinstance(session_id, str):
            return jsonify({'success': False, 'message': 'session_id must be a string'}), 400

        result = _component('attendance_manager').process_otp_submission(
            str(otp_code), session['student_id'], session_id
        )
        return _commit_response(result)

    @app.route('/api/attendance/history')
    @student_required
    def attendance_history():
        """The current student's attendance and summary"""
        try:
            manager = _component('attendance_manager')
            stats = manager.get_student_attendance_stats(session['student_id'])
            if stats is None:
                return jsonify({'success': False, 'message': 'Student not found'}), 404

            return jsonify({
                'success': True,
                'attendance': manager.get_student_attendance_history(session['student_id']),
                'stats': stats
            })
        except StorageError as e:
            logger.error(f"Attendance history error: {str(e)}")
            return jsonify({'success': False, 'message': 'Failed to fetch attendance'}), 500


if __name__ == '__main__':
    application = create_app()
    try:
        application.run(host='0.0.0.0', port=int(os.environ.get('PORT', 5000)),
                        debug=application.config['DEBUG'], use_reloader=False)
    finally:
        application.extensions['proof_attendance']['session_manager'].shutdown()
