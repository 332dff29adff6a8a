from datetime import timedelta

import pytest
from django.urls import reverse
from django.utils import timezone
from rest_framework.authtoken.models import Token
from rest_framework.test import APIClient

from conftest import PASSWORD, make_account
from records.auth_views import LoginRateThrottle
from records.models import AuditEvent, User


def login(client, username, password=PASSWORD):
    return client.post(reverse('login_view'), {'username': username, 'password': password}, format='json')


def test_login_issues_token_and_jwt(db):
    make_account('s1', 'student')
    c = APIClient()
    r = login(c, 's1')
    assert r.status_code == 200 and r.data['ok'] is True
    assert r.data['token'] and r.data['jwt_access'] and r.data['jwt_refresh']
    assert r.data['user']['isApproved'] is True

    c.credentials(HTTP_AUTHORIZATION=f"Token {r.data['token']}")
    assert c.get('/api/patients').status_code == 200

    jwt_client = APIClient()
    jwt_client.credentials(HTTP_AUTHORIZATION=f"Bearer {r.data['jwt_access']}")
    assert jwt_client.get('/api/patients').status_code == 200


def test_bad_password_is_rejected_and_audited(db):
    make_account('s1', 'student')
    r = login(APIClient(), 's1', 'wrong-password')
    assert r.status_code == 400
    assert r.data['error']['code'] == 'invalid_credentials'
    assert AuditEvent.objects.filter(action='login', detail__result='fail').exists()


def test_login_requires_fields(db):
    r = APIClient().post(reverse('login_view'), {'username': 's1'}, format='json')
    assert r.status_code == 400 and r.data['ok'] is False


def test_login_is_rate_limited(db, monkeypatch):
    monkeypatch.setattr(LoginRateThrottle, 'rate', '2/min', raising=False)
    c = APIClient()
    codes = [login(c, 'nobody', 'x').status_code for _ in range(3)]
    assert codes == [400, 400, 429]


def test_expired_login_token_is_refused(db):
    user = make_account('s1', 'student')
    token = Token.objects.create(user=user)
    Token.objects.filter(pk=token.pk).update(created=timezone.now() - timedelta(hours=1000))
    c = APIClient()
    c.credentials(HTTP_AUTHORIZATION=f"Token {token.key}")
    assert c.get('/api/patients').status_code == 401
    assert not Token.objects.filter(pk=token.pk).exists()


def test_signup_waits_for_approval(db):
    c = APIClient()
    r = c.post(reverse('signup_view'), {
        'username': 'fresh', 'password': PASSWORD, 'role': 'student', 'university': 'Cairo Dental',
    }, format='json')
    assert r.status_code == 201
    assert r.data['user']['isApproved'] is False
    user = User.objects.get(username='fresh')
    assert user.role == 'student' and user.university == 'Cairo Dental'

    r = login(c, 'fresh')
    assert r.status_code == 200 and r.data['user']['isApproved'] is False
    c.credentials(HTTP_AUTHORIZATION=f"Token {r.data['token']}")
    assert c.get('/api/patients').status_code == 403
    assert c.get('/api/user/profile').status_code == 200


@pytest.mark.parametrize('role', ['doctor', 'admin'])
def test_signup_cannot_claim_privileged_roles(db, role):
    r = APIClient().post(reverse('signup_view'), {'username': 'sneaky', 'password': PASSWORD, 'role': role},
                         format='json')
    assert r.status_code == 400
    assert not User.objects.filter(username='sneaky').exists()


def test_signup_enforces_password_policy(db):
    r = APIClient().post(reverse('signup_view'), {'username': 'weak', 'password': '1234'}, format='json')
    assert r.status_code == 400
    assert not User.objects.filter(username='weak').exists()


def test_logout_blacklists_refresh_token(db):
    make_account('s1', 'student')
    c = APIClient()
    r = login(c, 's1')
    refresh = r.data['jwt_refresh']
    c.credentials(HTTP_AUTHORIZATION=f"Bearer {r.data['jwt_access']}")
    out = c.post(reverse('jwt_logout_view'), {'refresh': refresh}, format='json')
    assert out.status_code == 200 and out.data['blacklisted'] == 1
    assert not Token.objects.filter(user__username='s1').exists()

    again = APIClient().post(reverse('jwt_refresh_view'), {'refresh': refresh}, format='json')
    assert again.status_code == 401


def test_refresh_returns_new_access_token(db):
    make_account('s1', 'student')
    r = login(APIClient(), 's1')
    out = APIClient().post(reverse('jwt_refresh_view'), {'refresh': r.data['jwt_refresh']}, format='json')
    assert out.status_code == 200 and out.data['jwt_access']


def test_anonymous_requests_are_refused(db):
    c = APIClient()
    assert c.get('/api/patients').status_code in (401, 403)
    assert c.get('/api/notifications').status_code in (401, 403)


def test_patient_creation_is_rate_limited(db, monkeypatch):
    from records.views.patients import PatientWriteThrottle
    monkeypatch.setattr(PatientWriteThrottle, 'rate', '1/min', raising=False)
    c = APIClient()
    c.force_authenticate(make_account('s1', 'student'))
    body = {'firstName': 'Jane', 'lastName': 'Roe', 'medicalHistory': 'asthma'}
    assert c.post('/api/patients/create', body, format='json').status_code == 201
    assert c.post('/api/patients/create', body, format='json').status_code == 429
