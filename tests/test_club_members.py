def member_payload(**overrides):
    payload = {
        'name': 'Neha Rao',
        'email': 'neha@nodex.club',
        'member_type': 'member',
        'department': 'CS',
        'year': '2',
        'skills': 'react, figma',
        'github_url': 'https://github.com/neha',
        'linkedin_url': 'javascript:alert(1)',
    }
    payload.update(overrides)
    return payload


class TestDirectory:
    def test_first_page_merges_legacy(self, exec_client, store, legacy_member):
        body = exec_client.get('/api/dashboard/club-members').get_json()
        ids = {member['id'] for member in body['members']}
        assert f"nodex_{legacy_member['id']}" in ids
        assert body['totalItems'] == 2

        legacy_view = next(member for member in body['members'] if member['id'].startswith('nodex_'))
        assert legacy_view['readonly'] is True
        assert legacy_view['member_type'] == 'bos'

    def test_later_pages_skip_legacy(self, exec_client, store, legacy_member):
        body = exec_client.get('/api/dashboard/club-members?page=2&limit=1').get_json()
        assert all(not member['id'].startswith('nodex_') for member in body['members'])

    def test_search_filters_both_sources(self, exec_client, store, legacy_member):
        body = exec_client.get('/api/dashboard/club-members?search=arjun').get_json()
        assert [member['name'] for member in body['members']] == ['Arjun Lead']

    def test_team_filter_excludes_legacy(self, exec_client, store, legacy_member, team, exec_member):
        store.collections['club_members'][exec_member['id']]['teams'] = [team['id']]
        body = exec_client.get(f"/api/dashboard/club-members?team={team['id']}").get_json()
        assert [member['id'] for member in body['members']] == [exec_member['id']]

    def test_bad_page_argument(self, exec_client):
        assert exec_client.get('/api/dashboard/club-members?page=abc').status_code == 400


class TestMemberCrud:
    def test_create_update_delete(self, exec_client, store):
        response = exec_client.post('/api/dashboard/club-members', json=member_payload())
        assert response.status_code == 201
        member = response.get_json()['member']
        assert member['year'] == 2
        assert member['skills'] == ['react', 'figma']
        assert member['linkedin_url'] == ''

        response = exec_client.put(f"/api/dashboard/club-members/{member['id']}",
                                   json=member_payload(position='Designer'))
        assert response.get_json()['member']['position'] == 'Designer'

        assert exec_client.delete(f"/api/dashboard/club-members/{member['id']}").status_code == 200
        assert store.find('club_members', member['id']) is None

    def test_create_requires_fields(self, exec_client):
        response = exec_client.post('/api/dashboard/club-members', json={'name': 'No Email'})
        assert response.status_code == 400
        assert response.get_json()['message'] == 'Missing required fields: name, email, member_type'

    def test_legacy_members_not_edited_here(self, exec_client, legacy_member):
        response = exec_client.put(f"/api/dashboard/club-members/nodex_{legacy_member['id']}", json=member_payload())
        assert response.status_code == 400
        assert exec_client.delete(f"/api/dashboard/club-members/nodex_{legacy_member['id']}").status_code == 400

    def test_get_legacy_member(self, exec_client, legacy_member):
        body = exec_client.get(f"/api/dashboard/club-members/nodex_{legacy_member['id']}").get_json()
        assert body['member']['bio'] == 'Runs the club'

    def test_get_unknown_member(self, exec_client):
        response = exec_client.get('/api/dashboard/club-members/missing')
        assert response.status_code == 404
        assert response.get_json() == {'message': 'Club member not found'}


class TestMigrateRoute:
    def test_migrate_twice(self, exec_client, store, legacy_member):
        first = exec_client.post(f"/api/dashboard/club-members/nodex_{legacy_member['id']}/migrate")
        assert first.status_code == 201
        second = exec_client.post(f"/api/dashboard/club-members/nodex_{legacy_member['id']}/migrate")
        assert second.status_code == 200
        assert second.get_json()['created'] is False
        assert first.get_json()['member']['id'] == second.get_json()['member']['id']

    def test_migrate_rejects_canonical_id(self, exec_client, exec_member):
        response = exec_client.post(f"/api/dashboard/club-members/{exec_member['id']}/migrate")
        assert response.status_code == 400


def test_migrate_script(store, legacy_member):
    import migrate_legacy_members

    created, existing, failed = migrate_legacy_members.migrate_all(store)
    assert len(created) == 1 and not existing and not failed

    created, existing, failed = migrate_legacy_members.migrate_all(store)
    assert not created and len(existing) == 1


class TestMemberTeams:
    def plain_recruiter(self, client, store, exec_member):
        store.seed('recruiters', {'auth_key': 'plain-key', 'assignee': exec_member['id'], 'team_mgmt': False})
        client.set_cookie('auth-key', 'plain-key')
        return client

    def test_teams_change_needs_team_mgmt(self, client, store, team, exec_member):
        plain = self.plain_recruiter(client, store, exec_member)
        assert plain.post(f"/api/dashboard/teams/{team['id']}/members",
                          json={'member_id': exec_member['id']}).status_code == 403

        response = plain.put(f"/api/dashboard/club-members/{exec_member['id']}",
                             json=member_payload(teams=[team['id']]))
        assert response.status_code == 403
        assert store.find('club_members', exec_member['id'])['teams'] == []

    def test_create_with_teams_needs_team_mgmt(self, client, store, team, exec_member):
        plain = self.plain_recruiter(client, store, exec_member)
        response = plain.post('/api/dashboard/club-members', json=member_payload(teams=[team['id']]))
        assert response.status_code == 403
        assert len(store.records('club_members')) == 1

    def test_unchanged_teams_need_no_team_mgmt(self, client, store, team, exec_member):
        store.collections['club_members'][exec_member['id']]['teams'] = [team['id']]
        plain = self.plain_recruiter(client, store, exec_member)
        response = plain.put(f"/api/dashboard/club-members/{exec_member['id']}",
                             json=member_payload(teams=[team['id']]))
        assert response.status_code == 200

    def test_update_without_teams_keeps_membership(self, exec_client, store, team, exec_member):
        store.collections['club_members'][exec_member['id']]['teams'] = [team['id']]
        response = exec_client.put(f"/api/dashboard/club-members/{exec_member['id']}", json=member_payload())
        assert response.status_code == 200
        assert store.find('club_members', exec_member['id'])['teams'] == [team['id']]

    def test_unknown_team_ids_rejected(self, exec_client, store, team, exec_member):
        response = exec_client.put(f"/api/dashboard/club-members/{exec_member['id']}",
                                   json=member_payload(teams=[team['id'], 'deletedteam1234']))
        assert response.status_code == 400
        body = response.get_json()
        assert body['errors'] == [{'field': 'teams', 'message': 'Team not found: deletedteam1234'}]
        assert store.find('club_members', exec_member['id'])['teams'] == []

    def test_team_mgmt_sets_existing_teams(self, exec_client, store, team, exec_member):
        response = exec_client.put(f"/api/dashboard/club-members/{exec_member['id']}",
                                   json=member_payload(teams=[team['id'], team['id']]))
        assert response.status_code == 200
        assert store.find('club_members', exec_member['id'])['teams'] == [team['id']]


def test_team_filter_needs_exact_id(exec_client, store, team, exec_member):
    store.collections['club_members'][exec_member['id']]['teams'] = [team['id']]

    body = exec_client.get(f"/api/dashboard/club-members?team={team['id'][:5]}").get_json()
    assert body['members'] == []
    assert body['totalItems'] == 0

    body = exec_client.get(f"/api/dashboard/club-members?team={team['id']}").get_json()
    assert [member['id'] for member in body['members']] == [exec_member['id']]
