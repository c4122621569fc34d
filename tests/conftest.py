import os

os.environ['RATELIMIT_ENABLED'] = 'false'
os.environ['SECRET_KEY'] = 'test-secret-key'
os.environ.pop('TURNSTILE_SECRET_KEY', None)

import pytest

import main
from fakes import FakePocketBase


@pytest.fixture
def store(monkeypatch):
    fake = FakePocketBase()
    monkeypatch.setattr(main, 'pocketbase_service', fake)
    return fake


@pytest.fixture
def app(store):
    main.app.config.update(
        TESTING=True,
        TURNSTILE_SECRET_KEY=None,
        BLOCKED_IP_REDIRECT_URL='https://example.com/blocked',
    )
    return main.app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def exec_member(store):
    return store.seed('club_members', {
        'name': 'Riya Exec',
        'email': 'riya@nodex.club',
        'member_type': 'exec',
        'position': 'Secretary',
        'status': 'active',
        'teams': [],
        'skills': [],
    })


@pytest.fixture
def recruiter(store, exec_member):
    return store.seed('recruiters', {
        'auth_key': 'exec-key',
        'assignee': exec_member['id'],
        'team_mgmt': True,
    })


@pytest.fixture
def exec_client(client, recruiter):
    client.set_cookie('auth-key', 'exec-key')
    return client


@pytest.fixture
def team(store):
    return store.seed('teams', {
        'name': 'Web Team',
        'description': 'Builds the club site',
        'category': 'development',
        'status': 'active',
    })


@pytest.fixture
def legacy_member(store):
    return store.seed('nodex_team', {
        'name': 'Arjun Lead',
        'email': 'arjun@nodex.club',
        'category': 'direc',
        'title': 'Director',
        'description': 'Runs the club',
        'skills': 'python, go ,  ',
        'pos': 1,
    })
