from helpers import quota_of, run_tick


def test_requests_need_a_token(client):
    response = client.get('/vms/')
    assert response.status_code == 401
    assert response.get_json()['error_code'] == 'TOKEN_MISSING'

    response = client.get('/vms/', headers={'Authorization': 'Bearer not-a-token'})
    assert response.status_code == 401
    assert response.get_json()['error_code'] == 'INVALID_TOKEN'


def test_expired_token_is_rejected(client, app):
    from datetime import timedelta

    from portal.db.models import User
    from portal.middleware.auth import AuthService

    secret = app.config['JWT_SECRET_KEY']
    user = User(id=1, email='student@example.com')
    assert AuthService.verify_token(AuthService.create_access_token(user, secret), secret)['user_id'] == 1

    token = AuthService.create_access_token(user, secret, expires=timedelta(seconds=-5))
    response = client.get('/vms/', headers={'Authorization': f'Bearer {token}'})
    assert response.status_code == 401
    assert response.get_json()['error_code'] == 'TOKEN_EXPIRED'


def test_enqueue_vm(client, services, auth_header, make_user):
    user_id = make_user(vms=3, ips=1)

    response = client.post(
        '/vms/',
        json={'name': 'alpha', 'resources': 'small', 'public': True},
        headers=auth_header(user_id)
    )

    assert response.status_code == 201
    body = response.get_json()
    assert body['message'] == 'request is being deployed'
    assert body['request_id']
    assert body['vm']['state'] == 'in_progress'
    assert quota_of(services, user_id) == (2, 0)


def test_enqueue_errors(client, auth_header, make_user):
    user_id = make_user(vms=1, ips=0)
    headers = auth_header(user_id)

    response = client.post('/vms/', json={'name': 'alpha', 'resources': 'huge'}, headers=headers)
    assert response.status_code == 400
    assert response.get_json()['error_code'] == 'InvalidSizeClass'

    response = client.post('/vms/', json={'name': 'alpha'}, headers=headers)
    assert response.status_code == 400
    assert response.get_json()['error_code'] == 'MISSING_REQUIRED_FIELDS'

    response = client.post('/vms/', json={'name': 'alpha', 'resources': 'small', 'public': True}, headers=headers)
    assert response.status_code == 400
    body = response.get_json()
    assert body['error_code'] == 'InsufficientQuota'
    assert body['kind'] == 'ip'

    response = client.post(
        '/k8s/',
        json={'master_name': 'kone', 'resources': 'medium', 'workers': [{'name': 'wone', 'resources': 'small'}]},
        headers=headers
    )
    assert response.status_code == 400
    assert response.get_json()['kind'] == 'vm'


def test_name_conflict(client, auth_header, make_user):
    user_id = make_user(vms=3, ips=0)
    headers = auth_header(user_id)

    first = client.post('/vms/', json={'name': 'gamma', 'resources': 'small'}, headers=headers)
    second = client.post('/vms/', json={'name': 'gamma', 'resources': 'small'}, headers=headers)

    assert first.status_code == 201
    assert second.status_code == 400
    assert second.get_json()['error_code'] == 'NameConflict'


def test_unknown_user(client, app):
    from portal.db.models import User
    from portal.middleware.auth import AuthService

    token = AuthService.create_access_token(User(id=404, email='ghost@example.com'), app.config['JWT_SECRET_KEY'])
    response = client.post(
        '/vms/',
        json={'name': 'alpha', 'resources': 'small'},
        headers={'Authorization': f'Bearer {token}'}
    )

    assert response.status_code == 404
    assert response.get_json()['error_code'] == 'USER_NOT_FOUND'


def test_pending_vm_cannot_be_fetched_or_deleted(client, auth_header, make_user):
    user_id = make_user()
    headers = auth_header(user_id)
    client.post('/vms/', json={'name': 'alpha', 'resources': 'small'}, headers=headers)

    vms = client.get('/vms/', headers=headers).get_json()['vms']
    assert [vm['name'] for vm in vms] == ['alpha']

    assert client.get(f"/vms/{vms[0]['id']}", headers=headers).status_code == 404
    assert client.delete(f"/vms/{vms[0]['id']}", headers=headers).status_code == 404


def test_deploy_list_and_delete_all(client, services, grid, auth_header, make_user):
    user_id = make_user(vms=6, ips=0)
    headers = auth_header(user_id)
    client.post('/vms/', json={'name': 'alpha', 'resources': 'small'}, headers=headers)
    client.post('/k8s/', json={'master_name': 'kone', 'resources': 'small'}, headers=headers)

    run_tick(services)

    clusters = client.get('/k8s/', headers=headers).get_json()['clusters']
    assert clusters[0]['state'] == 'created'
    assert client.get(f"/k8s/{clusters[0]['id']}", headers=headers).status_code == 200

    response = client.delete('/vms/', headers=headers)
    assert response.get_json()['deleted'] == ['alpha']
    response = client.delete('/k8s/', headers=headers)
    assert response.get_json()['deleted'] == ['kone']

    assert len(grid.backend.cancelled) == 4
    assert client.get('/vms/', headers=headers).get_json()['vms'] == []


def test_notifications_and_quota(client, services, auth_header, make_user):
    user_id = make_user(vms=3, ips=1)
    headers = auth_header(user_id)
    client.post('/vms/', json={'name': 'alpha', 'resources': 'small', 'public': True}, headers=headers)

    run_tick(services)

    notifications = client.get('/notifications/', headers=headers).get_json()['notifications']
    assert [n['msg'] for n in notifications] == ["Your vm 'alpha' is deployed successfully"]
    assert notifications[0]['seen'] is False

    response = client.put(f"/notifications/{notifications[0]['id']}/seen", headers=headers)
    assert response.get_json()['notification']['seen'] is True

    assert client.get('/quota/', headers=headers).get_json() == {'quota': {'vms': 2, 'public_ips': 0}}
