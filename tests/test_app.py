import base64
import time

import pytest

from app import create_app
from proof_attendance.modules.proof_token import QrToken


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def app(tmp_path):
    application = create_app('testing', overrides={
        'DATABASE_PATH': str(tmp_path / 'app.db'),
        'ROTATION_PERIOD_SECONDS': 5.0,
    })
    yield application
    application.extensions['proof_attendance']['session_manager'].shutdown()


@pytest.fixture
def components(app):
    return app.extensions['proof_attendance']


@pytest.fixture
def people(components):
    db = components['db_manager']
    return {
        'staff': db.add_staff('Dr. Rao', subjects=['DSA']),
        'asha': db.add_student('1001', 'Asha', 2, 3),
        'dev': db.add_student('1004', 'Dev', 2, 4),
    }


def client_as(app, **identity):
    client = app.test_client()
    with client.session_transaction() as flask_session:
        flask_session.update(identity)
    return client


def start(app, people, mode='otp'):
    staff = client_as(app, staff_id=people['staff'])
    response = staff.post('/api/sessions', json={'subject': 'DSA', 'year': 2, 'semester': 3,
                                                 'token_mode': mode})
    assert response.status_code == 201
    return staff, response.get_json()['session']['id']


def test_subjects_for_cohort(app):
    response = app.test_client().get('/api/subjects?year=2&semester=3')

    assert response.status_code == 200
    assert 'DSA' in response.get_json()['subjects']
    assert app.test_client().get('/api/subjects').status_code == 400


def test_routes_require_identity(app):
    client = app.test_client()

    assert client.post('/api/sessions', json={}).status_code == 401
    assert client.post('/api/attendance/otp', json={'otp_code': '123456'}).status_code == 401


def test_session_start_validation_maps_to_status(app, people):
    staff = client_as(app, staff_id=people['staff'])

    assert staff.post('/api/sessions', json={'subject': 'DSA', 'year': 9, 'semester': 3}).status_code == 400
    assert staff.post('/api/sessions', json={'subject': 'TOC', 'year': 2, 'semester': 4}).status_code == 403

    start(app, people)
    conflict = staff.post('/api/sessions', json={'subject': 'DSA', 'year': 2, 'semester': 3})
    assert conflict.status_code == 409


def test_otp_display_and_submission(app, people, components):
    staff, session_id = start(app, people, mode='otp')
    db = components['db_manager']
    assert wait_for(lambda: db.get_session(session_id).current_token is not None)

    display = staff.get(f'/api/sessions/{session_id}/display').get_json()
    assert display['token_mode'] == 'otp'
    assert len(display['otp_code']) == 6

    student = client_as(app, student_id=people['asha'])
    response = student.post('/api/attendance/otp', json={'otpCode': display['otp_code']})

    assert response.status_code == 201
    assert response.get_json()['outcome'] == 'marked'

    history = student.get('/api/attendance/history').get_json()
    assert history['stats']['attended_sessions'] == 1
    assert history['attendance'][0]['session_id'] == session_id


def test_qr_display_renders_png(app, people, components):
    staff, session_id = start(app, people, mode='qr')
    assert wait_for(lambda: components['db_manager'].get_session(session_id).current_token is not None)

    display = staff.get(f'/api/sessions/{session_id}/display').get_json()

    assert base64.b64decode(display['qr']).startswith(b'\x89PNG')
    assert display['seconds_until_rotation'] is not None


def test_scan_outcomes_map_to_status(app, people, components):
    _, session_id = start(app, people, mode='qr')
    codec = components['codec']
    fresh = codec.encode(QrToken(session_id, int(time.time() * 1000), 'DSA', 2, 3))

    asha = client_as(app, student_id=people['asha'])
    dev = client_as(app, student_id=people['dev'])

    assert asha.post('/api/attendance/scan', json={'token': 'garbage'}).status_code == 400
    assert asha.post('/api/attendance/scan', json={}).status_code == 400
    assert dev.post('/api/attendance/scan', json={'token': fresh}).status_code == 403
    assert asha.post('/api/attendance/scan', json={'token': fresh}).status_code == 201
    repeat = asha.post('/api/attendance/scan', json={'token': fresh})
    assert repeat.status_code == 409
    assert repeat.get_json()['outcome'] == 'already_marked'


def test_end_session_then_submission_is_inactive(app, people, components):
    staff, session_id = start(app, people, mode='qr')
    fresh = components['codec'].encode(QrToken(session_id, int(time.time() * 1000), 'DSA', 2, 3))

    ended = staff.patch(f'/api/sessions/{session_id}', json={'is_active': False})
    assert ended.status_code == 200
    assert ended.get_json()['session']['is_active'] is False

    response = client_as(app, student_id=people['asha']).post('/api/attendance/scan', json={'token': fresh})
    assert response.get_json()['outcome'] == 'session_inactive'
    assert staff.get(f'/api/sessions/{session_id}/display').status_code == 409


def test_session_attendance_and_delete(app, people, components):
    staff, session_id = start(app, people, mode='qr')
    fresh = components['codec'].encode(QrToken(session_id, int(time.time() * 1000), 'DSA', 2, 3))
    client_as(app, student_id=people['asha']).post('/api/attendance/scan', json={'token': fresh})

    listing = staff.get(f'/api/sessions/{session_id}/attendance').get_json()
    assert [row['student_id'] for row in listing['attendance']] == [people['asha']]
    assert listing['total_students'] == 1

    assert staff.delete(f'/api/sessions/{session_id}').status_code == 200
    assert components['db_manager'].get_session(session_id) is None
    assert staff.delete(f'/api/sessions/{session_id}').status_code == 404


def test_list_sessions_hides_live_token(app, people):
    staff, session_id = start(app, people, mode='qr')

    sessions = staff.get('/api/sessions').get_json()['sessions']

    assert [s['id'] for s in sessions] == [session_id]
    assert 'current_token' not in sessions[0]


@pytest.mark.parametrize('body', [['token'], 'token', 42])
def test_non_object_json_bodies_are_rejected(app, people, body):
    student = client_as(app, student_id=people['asha'])
    staff = client_as(app, staff_id=people['staff'])

    assert student.post('/api/attendance/scan', json=body).status_code == 400
    assert student.post('/api/attendance/otp', json=body).status_code == 400
    assert staff.post('/api/sessions', json=body).status_code == 400


def test_otp_session_id_must_be_a_string(app, people):
    student = client_as(app, student_id=people['asha'])

    response = student.post('/api/attendance/otp', json={'otp_code': '123456', 'session_id': ['s-1']})

    assert response.status_code == 400
    assert response.get_json()['success'] is False
