import pytest

import create_recruiter_key
import init_db


def test_init_db_creates_settings_once(store):
    init_db.init_database(store)
    init_db.init_database(store)
    records = store.records('web_metadata')
    assert len(records) == 1
    assert records[0]['accepting'] is True


def test_create_recruiter_key(store, exec_member):
    recruiter, auth_key = create_recruiter_key.create_recruiter_key(exec_member['id'], team_mgmt=True, store=store)
    saved = store.find('recruiters', recruiter['id'])
    assert saved['auth_key'] == auth_key
    assert saved['team_mgmt'] is True
    assert len(auth_key) >= 32


def test_create_recruiter_key_exits_for_unknown_member(store, monkeypatch):
    monkeypatch.setattr(create_recruiter_key, 'pocketbase_service', store)
    with pytest.raises(SystemExit):
        create_recruiter_key.main(['nobody'])
