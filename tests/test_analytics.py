from datetime import datetime, timezone

from main import build_member_analytics


NOW = datetime(2024, 6, 30, 12, 0, tzinfo=timezone.utc)


def member(record_id, department=None, created='2024-06-20 10:00:00.000Z', **extra):
    data = {'id': record_id, 'name': record_id, 'email': f"{record_id}@nodex.club", 'member_type': 'member',
            'status': 'active', 'teams': [], 'skills': [], 'created': created}
    if department:
        data['department'] = department
    data.update(extra)
    return data


def test_departments_skip_missing_values():
    members = [member('a', 'CS'), member('b', 'CS'), member('c', 'EE'), member('d')]
    result = build_member_analytics(members, [], [], now=NOW)
    assert result['membersByDepartment'] == {'CS': 2, 'EE': 1}


def test_legacy_members_are_folded_in():
    legacy = [{'id': 'old1', 'name': 'Old', 'email': 'old@nodex.club', 'category': 'direc',
               'skills': 'python, rust', 'created': '2023-01-01 00:00:00.000Z'}]
    result = build_member_analytics([member('a', skills=['python'])], legacy, [], now=NOW)

    assert result['overview']['totalMembers'] == 2
    assert result['overview']['activeMembers'] == 2
    assert result['membersByType'] == {'member': 1, 'bos': 1}
    assert result['topSkills'][0] == {'skill': 'python', 'count': 2}
    assert result['overview']['membersWithoutTeams'] == 1


def test_team_stats_and_recent_members():
    teams = [{'id': 't1', 'name': 'Web'}, {'id': 't2', 'name': 'Empty'}]
    members = [
        member('a', teams=['t1'], created='2024-06-29 09:00:00.000Z'),
        member('b', teams=['t1'], status='inactive', created='2024-05-01 09:00:00.000Z'),
        member('c', year=2, created='2024-06-25 09:00:00.000Z'),
    ]
    result = build_member_analytics(members, [], teams, now=NOW)

    assert result['teamMembershipStats'][0] == {'teamId': 't1', 'teamName': 'Web', 'memberCount': 2, 'activeMembers': 1}
    assert result['overview']['teamsWithoutMembers'] == 1
    assert result['overview']['inactiveMembers'] == 1
    assert result['overview']['recentMembers'] == 2
    assert [entry['id'] for entry in result['recentMembersList']] == ['a', 'c']
    assert result['membersByYear'] == {'2': 1}


def test_top_skills_capped_at_ten():
    members = [member(f"m{index}", skills=[f"skill{index}"]) for index in range(15)]
    result = build_member_analytics(members, [], [], now=NOW)
    assert len(result['topSkills']) == 10


def test_analytics_route(exec_client, store):
    store.seed('club_members', {'name': 'Dev', 'email': 'dev@nodex.club', 'member_type': 'member',
                                'status': 'active', 'department': 'CS', 'teams': [], 'skills': ['go']})
    response = exec_client.get('/api/dashboard/club-members/analytics')
    assert response.status_code == 200
    body = response.get_json()
    assert body['membersByDepartment'] == {'CS': 1}
    # the exec member fixture counts too
    assert body['overview']['totalMembers'] == 2
