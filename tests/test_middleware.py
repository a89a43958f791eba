import pytest
from flask import g, jsonify

from core.database_models import SellerRole, UserRole
from middleware.security import (
    authenticate, manager_only, manager_or_accountant, manager_or_inventory, require_ownership, seller_only
)


@pytest.fixture
def guarded(app):
    def ok():
        return jsonify({'userId': g.current_user.id})

    routes = {
        'seller': seller_only,
        'manager': manager_only,
        'finance': manager_or_accountant,
        'inventory': manager_or_inventory,
    }
    for name, guard in routes.items():
        app.add_url_rule(f'/guarded/{name}', f'guarded_{name}', authenticate(guard(ok)))

    @app.route('/guarded/users/<user_id>')
    @authenticate
    @require_ownership('user_id')
    def own_resource(user_id):
        return jsonify({'userId': user_id})

    return app.test_client()


def _status(client, path, headers):
    return client.get(path, headers=headers).status_code


def test_seller_role_guards(guarded, make_user, admin, buyer, auth_headers):
    manager = auth_headers(make_user(UserRole.SELLER, SellerRole.MANAGER))
    accountant = auth_headers(make_user(UserRole.SELLER, SellerRole.ACCOUNTANT))
    staff = auth_headers(make_user(UserRole.SELLER, SellerRole.INVENTORY_STAFF))
    admin_headers = auth_headers(admin)
    buyer_headers = auth_headers(buyer)

    assert [_status(guarded, '/guarded/manager', h) for h in (manager, accountant, staff, admin_headers)] == \
        [200, 403, 403, 200]
    assert [_status(guarded, '/guarded/finance', h) for h in (manager, accountant, staff)] == [200, 200, 403]
    assert [_status(guarded, '/guarded/inventory', h) for h in (manager, accountant, staff)] == [200, 403, 200]
    assert _status(guarded, '/guarded/manager', buyer_headers) == 403
    assert _status(guarded, '/guarded/seller', staff) == 200
    assert _status(guarded, '/guarded/seller', admin_headers) == 403


def test_seller_role_denial_message(guarded, buyer, make_user, auth_headers):
    accountant = make_user(UserRole.SELLER, SellerRole.ACCOUNTANT)

    buyer_body = guarded.get('/guarded/manager', headers=auth_headers(buyer)).get_json()
    seller_body = guarded.get('/guarded/manager', headers=auth_headers(accountant)).get_json()

    assert buyer_body['message'] == 'Seller access required'
    assert seller_body['message'] == 'Insufficient seller permissions'
    assert seller_body['error']['code'] == 'FORBIDDEN'


def test_require_ownership(guarded, buyer, make_user, admin, auth_headers):
    other = make_user()

    assert _status(guarded, f'/guarded/users/{buyer.id}', auth_headers(buyer)) == 200
    assert _status(guarded, f'/guarded/users/{other.id}', auth_headers(buyer)) == 403
    assert _status(guarded, f'/guarded/users/{buyer.id}', auth_headers(admin)) == 200


def test_guards_need_a_token(guarded):
    response = guarded.get('/guarded/manager')
    assert response.status_code == 401
    assert response.get_json()['error']['code'] == 'UNAUTHORIZED'
