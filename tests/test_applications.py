import pytest

from main import ApplicationService, Conflict, NotFound, ValidationFailed, format_mark_remark


@pytest.fixture
def application(store):
    return store.seed('nodex_apps', {
        'name': 'Applicant', 'email': 'applicant@example.com', 'marked': False, 'modRemarks': '',
    })


class TestApplicationService:
    def test_mark_then_rollback(self, store, application, recruiter):
        service = ApplicationService(store)

        service.mark(application['id'], 'approved', 'Strong profile', recruiter)
        marked = store.find('nodex_apps', application['id'])
        assert marked['marked'] is True
        assert marked['modRemarks'].startswith('**Approved Action** ✅')
        assert '• Remarks: *Strong profile*' in marked['modRemarks']
        assert service.pending_applications() == []

        previous, remarks = service.rollback(application['id'], 'Marked by mistake', recruiter)
        assert previous == 'approved'

        rolled_back = store.find('nodex_apps', application['id'])
        assert rolled_back['marked'] is False
        assert store.records('marked_apps') == []
        assert [app['id'] for app in service.pending_applications()] == [application['id']]

        approve_at = rolled_back['modRemarks'].index('**Approved Action**')
        rollback_at = rolled_back['modRemarks'].index('**Rollback Action**')
        assert approve_at < rollback_at
        assert 'Rolled back from **approved**' in rolled_back['modRemarks']
        assert '• Reason: Marked by mistake' in rolled_back['modRemarks']
        assert rolled_back['modRemarks'] == remarks

    def test_remarks_accumulate(self, store, application, recruiter):
        service = ApplicationService(store)
        service.mark(application['id'], 'rejected', '', recruiter)
        service.rollback(application['id'], 'Second look', recruiter)
        service.mark(application['id'], 'approved', 'Better now', recruiter)

        remarks = store.find('nodex_apps', application['id'])['modRemarks']
        assert remarks.count('\n\n---') == 3
        assert '**Rejected Action** ❌' in remarks
        assert '• Remarks: *No remarks*' in remarks

    def test_double_mark_conflicts(self, store, application, recruiter):
        service = ApplicationService(store)
        service.mark(application['id'], 'approved', '', recruiter)
        with pytest.raises(Conflict):
            service.mark(application['id'], 'rejected', '', recruiter)
        assert len(store.records('marked_apps')) == 1

    def test_mark_unknown_application(self, store, recruiter):
        with pytest.raises(NotFound, match='Application not found'):
            ApplicationService(store).mark('nope', 'approved', '', recruiter)
        assert store.records('marked_apps') == []

    def test_mark_rejects_bad_status(self, store, application, recruiter):
        with pytest.raises(ValidationFailed):
            ApplicationService(store).mark(application['id'], 'maybe', '', recruiter)

    def test_rollback_requires_mark(self, store, application, recruiter):
        with pytest.raises(NotFound):
            ApplicationService(store).rollback(application['id'], 'why not', recruiter)

    def test_rollback_requires_reason(self, store, application, recruiter):
        with pytest.raises(ValidationFailed):
            ApplicationService(store).rollback(application['id'], '', recruiter)

    def test_list_marked_applications(self, store, application, recruiter):
        service = ApplicationService(store)
        service.mark(application['id'], 'approved', 'ok', recruiter)

        approved = service.list_applications('approved')
        assert [app['id'] for app in approved] == [application['id']]
        assert approved[0]['markedData']['status'] == 'approved'
        assert '<strong>Approved Action</strong>' in approved[0]['modRemarksHtml']
        assert service.list_applications('rejected') == []


def test_remark_format():
    remark = format_mark_remark('approved', 'Riya', 'Good', '2024-01-01 00:00:00 UTC')
    assert remark == ('**Approved Action** ✅\n'
                      '• Status: **APPROVED**\n'
                      '• Recruiter: Riya\n'
                      '• Date: 2024-01-01 00:00:00 UTC\n'
                      '• Remarks: *Good*\n'
                      '\n---')


class TestApplicationRoutes:
    def test_mark_and_rollback_routes(self, exec_client, store, application):
        response = exec_client.post('/api/mark-application', json={
            'applicationId': application['id'], 'status': 'rejected', 'remarks': 'Not yet',
        })
        assert response.status_code == 200
        assert exec_client.get('/api/dashboard/stats/applications').get_json() == {'pending': 0}

        response = exec_client.post('/api/mark-application', json={
            'applicationId': application['id'], 'status': 'approved',
        })
        assert response.status_code == 409

        response = exec_client.post('/api/rollback-application', json={
            'applicationId': application['id'], 'reason': 'Reconsider',
        })
        assert response.status_code == 200
        assert response.get_json()['message'] == 'Application successfully rolled back from rejected'
        assert exec_client.get('/api/dashboard/stats/applications').get_json() == {'pending': 1}

    def test_list_pending(self, exec_client, application):
        response = exec_client.get('/api/applications')
        body = response.get_json()
        assert body['count'] == 1
        assert body['applications'][0]['id'] == application['id']

    def test_list_bad_type(self, exec_client):
        assert exec_client.get('/api/applications?type=unknown').status_code == 400

    def test_mark_requires_application_id(self, exec_client):
        response = exec_client.post('/api/mark-application', json={'status': 'approved'})
        assert response.status_code == 400
        assert response.get_json()['errors'][0]['field'] == 'applicationId'

    def test_applications_require_login(self, client):
        assert client.get('/api/applications').status_code == 401
