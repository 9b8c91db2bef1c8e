import uuid
from datetime import date

import pytest
from fastapi.testclient import TestClient

from coaching import models, repositories, services
from coaching.main import app

client = TestClient(app)


def _login(role, org):
    username = f'{role}-{uuid.uuid4().hex[:8]}'
    r = client.post('/auth/register', json={'username': username, 'password': 'pw', 'organizationId': org, 'role': role})
    token = client.post('/auth/login', json={'username': username, 'password': 'pw'}).json()['access_token']
    return r.json()['id'], {'Authorization': f'Bearer {token}'}


def _enroll_individual(coach, client_id):
    program_id = client.post('/programs', headers=coach, json={'name': '1:1 Coaching', 'lengthDays': 5}).json()['id']
    r = client.post(f'/programs/{program_id}/enrollments', headers=coach, json={'userId': client_id})
    assert r.status_code == 201


def test_first_update_creates_document_with_normalised_items():
    org = f'org-{uuid.uuid4().hex[:6]}'
    coach_id, coach = _login('coach', org)
    client_id, client_headers = _login('client', org)
    _enroll_individual(coach, client_id)

    assert client.get(f'/coaching/clients/{client_id}', headers=coach).status_code == 404

    r = client.patch(f'/coaching/clients/{client_id}', headers=coach, json={
        'focusAreas': ['sleep'],
        'actionItems': [{'text': 'Walk daily'}],
        'privateNotes': [{'notes': 'shy at first'}],
    })
    assert r.status_code == 200, r.text
    doc = r.json()
    assert doc['id'] == f'{org}_{client_id}'
    assert doc['coachId'] == coach_id
    assert doc['focusAreas'] == ['sleep']
    item = doc['actionItems'][0]
    assert item['id'].startswith('action_')
    assert item['completed'] is False
    assert item['createdAt']
    assert doc['privateNotes'][0]['sessionId'].startswith('note_')

    own = client.get(f'/coaching/clients/{client_id}', headers=client_headers)
    assert own.status_code == 200
    assert 'privateNotes' not in own.json()


def test_update_without_individual_enrollment_is_not_found():
    org = f'org-{uuid.uuid4().hex[:6]}'
    _, coach = _login('coach', org)
    client_id, _ = _login('client', org)
    r = client.patch(f'/coaching/clients/{client_id}', headers=coach, json={'focusAreas': ['x']})
    assert r.status_code == 404


def test_other_coach_is_refused_unless_super_coach():
    org = f'org-{uuid.uuid4().hex[:6]}'
    _, coach = _login('coach', org)
    _, other = _login('coach', org)
    _, super_coach = _login('super_coach', org)
    client_id, _ = _login('client', org)
    _enroll_individual(coach, client_id)
    client.patch(f'/coaching/clients/{client_id}', headers=coach, json={'focusAreas': ['a']})

    assert client.patch(f'/coaching/clients/{client_id}', headers=other, json={'focusAreas': ['b']}).status_code == 403
    r = client.patch(f'/coaching/clients/{client_id}', headers=super_coach, json={'focusAreas': ['c']})
    assert r.status_code == 200
    assert r.json()['focusAreas'] == ['c']


def test_legacy_key_fallback_and_cross_org_check(session):
    user = services.AuthService(session).register(f'legacy-{uuid.uuid4().hex[:8]}', 'pw', 'org-legacy')
    repo = repositories.CoachingDataRepository(session)
    repo.save(models.ClientCoachingData(id=str(user.id), user_id=user.id, start_date=date(2024, 5, 1),
                                        focus_areas=['old']))
    svc = services.CoachingDataService(session)
    found = svc.get(user.id, 'org-legacy')
    assert found.id == str(user.id)
    assert found.focus_areas == ['old']

    repo.save(models.ClientCoachingData(id=f'org-a_{user.id}', user_id=user.id, organization_id='org-b'))
    with pytest.raises(services.AccessDenied):
        svc.get(user.id, 'org-a')


def test_client_cannot_read_someone_else():
    org = f'org-{uuid.uuid4().hex[:6]}'
    _, first = _login('client', org)
    second_id, _ = _login('client', org)
    assert client.get(f'/coaching/clients/{second_id}', headers=first).status_code == 403


def test_legacy_document_is_claimed_by_first_org_write(session):
    org = f'org-{uuid.uuid4().hex[:6]}'
    coach = services.AuthService(session).register(f'coach-{uuid.uuid4().hex[:8]}', 'pw', org, role='coach')
    user = services.AuthService(session).register(f'legacy-{uuid.uuid4().hex[:8]}', 'pw', org)
    repositories.CoachingDataRepository(session).save(
        models.ClientCoachingData(id=str(user.id), user_id=user.id, focus_areas=['old']))

    svc = services.CoachingDataService(session)
    updated = svc.update(user.id, org, coach.id, {'focus_areas': ['new']})
    assert updated.id == str(user.id)
    assert updated.organization_id == org
    assert svc.get(user.id, org).focus_areas == ['new']
    with pytest.raises(services.AccessDenied):
        svc.get(user.id, 'org-other')
