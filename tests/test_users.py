from core.database_models import db, CartItem, Notification, NotificationType
from services.notifications import create_notification


def test_get_profile(client, buyer, auth_headers):
    response = client.get('/api/users/profile', headers=auth_headers(buyer))
    assert response.status_code == 200
    assert response.get_json()['data']['user']['email'] == buyer.email


def test_update_profile_ignores_business_fields_for_buyers(client, buyer, auth_headers):
    response = client.put('/api/users/profile', headers=auth_headers(buyer), json={
        'name': '  New Name  ',
        'businessName': 'Not a shop',
    })
    user = response.get_json()['data']['user']

    assert response.status_code == 200
    assert user['name'] == 'New Name'
    assert user['businessName'] is None


def test_update_profile_seller_business_fields(client, seller, auth_headers):
    response = client.put('/api/users/profile', headers=auth_headers(seller), json={
        'businessName': 'Renamed Shop',
        'businessPhone': '01912345678',
    })
    user = response.get_json()['data']['user']

    assert user['businessName'] == 'Renamed Shop'
    assert user['businessPhone'] == '01912345678'
    assert user['businessAddress'] == 'Dhaka'


def test_update_profile_rejects_bad_avatar_url(client, buyer, auth_headers):
    response = client.put('/api/users/profile', headers=auth_headers(buyer), json={'avatar': 'not a url'})
    assert response.status_code == 400


def test_update_profile_rejects_null_name(client, buyer, auth_headers):
    response = client.put('/api/users/profile', headers=auth_headers(buyer), json={'name': None})
    error = response.get_json()['error']

    assert response.status_code == 400
    assert error['code'] == 'VALIDATION_ERROR'
    assert error['validation'][0]['field'] == 'name'
    db.session.refresh(buyer)
    assert buyer.name


def test_cart_add_merges_lines(client, buyer, seller, make_product, auth_headers):
    product = make_product(seller, price='250.00', stock=5)
    headers = auth_headers(buyer)

    client.post('/api/users/cart', headers=headers, json={'productId': product.id, 'quantity': 2})
    response = client.post('/api/users/cart', headers=headers, json={'productId': product.id, 'quantity': 1})
    body = response.get_json()['data']

    assert response.status_code == 201
    assert len(body['items']) == 1
    assert body['items'][0]['quantity'] == 3
    assert body['summary'] == {'itemCount': 1, 'totalQuantity': 3, 'subtotal': 750.0}


def test_cart_add_beyond_stock(client, buyer, seller, make_product, auth_headers):
    product = make_product(seller, stock=2)
    response = client.post('/api/users/cart', headers=auth_headers(buyer),
                           json={'productId': product.id, 'quantity': 3})

    assert response.status_code == 409
    assert response.get_json()['error']['code'] == 'INSUFFICIENT_STOCK'


def test_cart_add_inactive_product(client, buyer, seller, make_product, auth_headers):
    product = make_product(seller, is_active=False)
    response = client.post('/api/users/cart', headers=auth_headers(buyer), json={'productId': product.id})

    assert response.status_code == 409
    assert response.get_json()['error']['code'] == 'PRODUCT_UNAVAILABLE'


def test_cart_add_unknown_product(client, buyer, auth_headers):
    response = client.post('/api/users/cart', headers=auth_headers(buyer),
                           json={'productId': '5b0a3a34-8f0e-4f5e-9d0a-1c2b3d4e5f60'})
    assert response.status_code == 404


def test_cart_is_buyer_only(client, seller, auth_headers):
    response = client.get('/api/users/cart', headers=auth_headers(seller))
    assert response.status_code == 403


def test_cart_update_and_remove(client, buyer, seller, make_product, auth_headers):
    product = make_product(seller, stock=10)
    headers = auth_headers(buyer)
    added = client.post('/api/users/cart', headers=headers, json={'productId': product.id})
    item_id = added.get_json()['data']['items'][0]['id']

    updated = client.put(f'/api/users/cart/{item_id}', headers=headers, json={'quantity': 4})
    assert updated.get_json()['data']['items'][0]['quantity'] == 4

    removed = client.delete(f'/api/users/cart/{item_id}', headers=headers)
    assert removed.get_json()['data']['items'] == []


def test_cart_item_of_other_buyer_is_not_found(client, buyer, make_user, seller, make_product, auth_headers):
    product = make_product(seller)
    other = make_user()
    item = CartItem(user_id=other.id, product_id=product.id, quantity=1)
    db.session.add(item)
    db.session.commit()

    response = client.delete(f'/api/users/cart/{item.id}', headers=auth_headers(buyer))
    assert response.status_code == 404


def test_clear_cart(client, buyer, seller, make_product, auth_headers):
    headers = auth_headers(buyer)
    for product in (make_product(seller), make_product(seller)):
        client.post('/api/users/cart', headers=headers, json={'productId': product.id})

    response = client.delete('/api/users/cart', headers=headers)

    assert response.get_json()['data']['removed'] == 2
    assert CartItem.query.filter_by(user_id=buyer.id).count() == 0


def test_notifications_list_and_read(client, buyer, auth_headers):
    first = create_notification(buyer.id, 'Hello', 'First message')
    create_notification(buyer.id, 'Order', 'Second message', NotificationType.ORDER_STATUS)
    headers = auth_headers(buyer)

    listing = client.get('/api/users/notifications?limit=1', headers=headers).get_json()
    assert listing['data']['unreadCount'] == 2
    assert len(listing['data']['notifications']) == 1
    assert listing['meta']['total'] == 2
    assert listing['meta']['hasNext'] is True

    read = client.patch(f'/api/users/notifications/{first.id}/read', headers=headers)
    assert read.get_json()['data']['notification']['isRead'] is True

    unread = client.get('/api/users/notifications?unreadOnly=true', headers=headers).get_json()
    assert [n['title'] for n in unread['data']['notifications']] == ['Order']


def test_mark_all_notifications_read(client, buyer, auth_headers):
    create_notification(buyer.id, 'One', 'message')
    create_notification(buyer.id, 'Two', 'message')

    response = client.patch('/api/users/notifications/read-all', headers=auth_headers(buyer))

    assert response.get_json()['data']['updated'] == 2
    assert Notification.query.filter_by(user_id=buyer.id, is_read=False).count() == 0


def test_notification_of_other_user_is_not_found(client, buyer, seller, auth_headers):
    notification = create_notification(seller.id, 'Private', 'message')
    response = client.patch(f'/api/users/notifications/{notification.id}/read', headers=auth_headers(buyer))
    assert response.status_code == 404
