import pytest

import main


def join_form(**overrides):
    form = {
        'name': 'Meera Shah',
        'email': 'Meera@Example.com',
        'phone': '9876543210',
        'batch': '2027',
        'rollNumber': '21CS042',
        'registrationNumber': 'REG2021042',
        'department': 'Computer Science',
        'interestedTracks': ['Web Development', 'AI/ML'],
        'whyJoin': 'I want to build real projects with other students and learn from the seniors in the club.',
        'experience': 'Built a college fest website',
        'turnstileToken': 'token',
    }
    form.update(overrides)
    return form


class TestJoin:
    def test_successful_submission(self, client, store):
        response = client.post('/api/join', json=join_form())
        assert response.status_code == 200
        body = response.get_json()
        assert body['message'] == "Application submitted successfully! We'll get back to you soon."

        record = store.find('nodex_apps', body['applicationId'])
        assert record['interestedTracks'] == 'Web Development, AI/ML'
        assert record['email'] == 'meera@example.com'
        assert record['marked'] is False
        assert record['submittedAt']

    def test_blocked_ip_is_redirected(self, client, store):
        store.seed('blocked_ips', {'ip': '203.0.113.9'})
        response = client.post('/api/join', json=join_form(), headers={'X-Forwarded-For': '203.0.113.9, 10.0.0.1'})
        assert response.status_code == 303
        assert response.get_json()['redirect'] == 'https://example.com/blocked'
        assert store.records('nodex_apps') == []

    def test_validation_errors(self, client, store):
        response = client.post('/api/join', json=join_form(whyJoin='Too short', interestedTracks=[], phone='123'))
        assert response.status_code == 400
        fields = {error['field'] for error in response.get_json()['errors']}
        assert fields == {'whyJoin', 'interestedTracks', 'phone'}
        assert store.records('nodex_apps') == []

    def test_profanity_rejected(self, client, store):
        response = client.post('/api/join', json=join_form(experience='this is shit'))
        assert response.status_code == 400
        assert store.records('nodex_apps') == []

    def test_closed_applications(self, client, store):
        store.seed('web_metadata', {'maintenance': False, 'accepting': False})
        response = client.post('/api/join', json=join_form())
        assert response.status_code == 403

    def test_get_not_allowed(self, client):
        assert client.get('/api/join').status_code == 405

    def test_captcha_failure(self, client, store, app, monkeypatch):
        app.config['TURNSTILE_SECRET_KEY'] = 'secret'
        monkeypatch.setattr(main, 'verify_turnstile_token', lambda token, remote_ip=None: False)
        try:
            response = client.post('/api/join', json=join_form())
        finally:
            app.config['TURNSTILE_SECRET_KEY'] = None
        assert response.status_code == 400
        assert store.records('nodex_apps') == []


class TestSiteSettings:
    def test_defaults_without_record(self, client):
        assert client.get('/api/web-metadata').get_json()['accepting'] is True

    def test_newest_record_wins(self, client, store):
        store.seed('web_metadata', {'maintenance': True, 'accepting': True})
        store.seed('web_metadata', {'maintenance': False, 'accepting': False})
        body = client.get('/api/web-metadata').get_json()
        assert body['maintenance'] is False
        assert body['accepting'] is False

    def test_update_requires_recruiter(self, client):
        assert client.post('/api/web-metadata', json={'maintenance': True}).status_code == 401

    def test_update_settings(self, exec_client, store):
        response = exec_client.post('/api/web-metadata', json={'maintenance': True})
        assert response.status_code == 200
        assert response.get_json()['maintenance'] is True
        assert response.get_json()['accepting'] is True

    def test_maintenance_blocks_public_routes(self, client, store):
        store.seed('web_metadata', {'maintenance': True, 'accepting': True})
        response = client.get('/api/team')
        assert response.status_code == 503
        assert response.get_json()['maintenance'] is True

    def test_recruiters_pass_maintenance(self, exec_client, store):
        store.seed('web_metadata', {'maintenance': True, 'accepting': True})
        assert exec_client.get('/api/team').status_code == 200


class TestPublicTeam:
    def test_grouped_by_category(self, client, store, legacy_member):
        store.seed('nodex_team', {'name': 'Prof', 'category': 'faculty', 'pos': 1})
        store.seed('nodex_team', {'name': 'Lead', 'category': 'lead', 'pos': 1})
        body = client.get('/api/team').get_json()
        assert body['totalMembers'] == 3
        assert [member['name'] for member in body['team']['direc']] == ['Arjun Lead']
        assert [member['name'] for member in body['team']['leads']] == ['Lead']
        assert body['team']['exec'] == []


def test_activity_log(client, store):
    response = client.post('/api/activity-log', json={'action': 'page_view', 'page_url': 'https://nodex.club/join'},
                           headers={'User-Agent': 'pytest'})
    assert response.get_json() == {'success': True}
    entry = store.records('activity_log')[0]
    assert entry['page_url'] == 'https://nodex.club/join'
    assert entry['user_agent'] == 'pytest'


def test_unknown_route_is_json(client):
    response = client.get('/api/does-not-exist')
    assert response.status_code == 404
    assert 'message' in response.get_json()


@pytest.mark.parametrize('text, expected', [
    ('hello world', False),
    ('what the fuck', True),
])
def test_contains_profanity(text, expected):
    assert main.contains_profanity(text) is expected
