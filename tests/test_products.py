from datetime import timedelta

import pytest

from core.database_models import db, OrderStatus, Product, Review, SellerRole, UserRole
from core.utils import utcnow


@pytest.fixture
def product_payload(category):
    return {
        'title': 'Wireless Earbuds',
        'description': 'Noise cancelling earbuds',
        'price': 3500,
        'discountPrice': 2999.5,
        'stock': 40,
        'categoryId': category.id,
        'images': ['https://cdn.example.com/earbuds.jpg'],
    }


def test_list_products_is_public_with_stats(client, seller, buyer, make_product, make_order):
    product = make_product(seller, title='Desk Lamp')
    make_order(buyer, seller, product, status=OrderStatus.COMPLETED)
    db.session.add(Review(rating=4, product_id=product.id, user_id=buyer.id, images=[]))
    db.session.commit()

    response = client.get('/api/products')
    body = response.get_json()

    assert response.status_code == 200
    listed = body['data']['products'][0]
    assert listed['title'] == 'Desk Lamp'
    assert listed['avgRating'] == 4.0
    assert listed['totalReviews'] == 1
    assert listed['totalSales'] == 1
    assert body['meta']['total'] == 1


def test_list_products_filters(client, seller, make_user, make_product):
    other_seller = make_user(UserRole.SELLER)
    make_product(seller, title='Cheap Mug', price='50.00')
    make_product(seller, title='Fancy Mug', price='900.00', stock=0)
    make_product(other_seller, title='Teapot', price='400.00')
    make_product(seller, title='Hidden Mug', is_active=False)

    def titles(query):
        products = client.get(f'/api/products?{query}').get_json()['data']['products']
        return sorted(p['title'] for p in products)

    assert titles('search=mug') == ['Cheap Mug', 'Fancy Mug']
    assert titles('minPrice=100&maxPrice=500') == ['Teapot']
    assert titles(f'sellerId={other_seller.id}') == ['Teapot']
    assert titles('inStock=true') == ['Cheap Mug', 'Teapot']
    assert titles('isActive=false') == ['Hidden Mug']
    assert titles('category=electronics') == ['Cheap Mug', 'Fancy Mug', 'Teapot']


def test_list_products_sorting(client, seller, make_product):
    make_product(seller, title='B', price='20.00')
    make_product(seller, title='A', price='10.00')
    make_product(seller, title='C', price='30.00')

    products = client.get('/api/products?sort=price&order=asc').get_json()['data']['products']
    assert [p['title'] for p in products] == ['A', 'B', 'C']


def test_list_products_rejects_unknown_sort(client):
    assert client.get('/api/products?sort=passwordHash').status_code == 400


@pytest.mark.parametrize('query', ['limit=101', 'limit=0', 'page=0', 'page=-1', 'order=sideways'])
def test_list_products_pagination_bounds(client, query):
    response = client.get(f'/api/products?{query}')

    assert response.status_code == 400
    assert response.get_json()['error']['code'] == 'VALIDATION_ERROR'


def test_list_products_pagination_meta(client, seller, make_product):
    for _ in range(3):
        make_product(seller)

    body = client.get('/api/products?page=2&limit=2').get_json()

    assert len(body['data']['products']) == 1
    assert body['meta'] == {'page': 2, 'limit': 2, 'total': 3, 'totalPages': 2,
                            'hasNext': False, 'hasPrev': True}


def test_search_products(client, seller, buyer, make_product, make_order):
    loved = make_product(seller, title='Cotton Shirt', price='800.00')
    make_product(seller, title='Silk Shirt', price='2500.00')
    make_product(seller, title='Sold Out Shirt', stock=0)
    make_order(buyer, seller, loved, status=OrderStatus.COMPLETED)
    db.session.add(Review(rating=5, product_id=loved.id, user_id=buyer.id, images=[]))
    db.session.commit()

    response = client.get('/api/products/search?q=shirt&sortBy=price_desc')
    body = response.get_json()

    assert response.status_code == 200
    assert body['data']['query'] == 'shirt'
    assert [p['title'] for p in body['data']['products']] == ['Silk Shirt', 'Cotton Shirt']

    rated = client.get('/api/products/search?q=shirt&rating=4').get_json()['data']['products']
    assert [p['title'] for p in rated] == ['Cotton Shirt']


def test_search_requires_query(client):
    assert client.get('/api/products/search').status_code == 400


def test_get_product_detail(client, seller, make_product):
    product = make_product(seller)
    response = client.get(f'/api/products/{product.id}')
    data = response.get_json()['data']['product']

    assert response.status_code == 200
    assert data['id'] == product.id
    assert data['seller']['businessPhone'] == seller.business_phone
    assert data['reviews'] == []


def test_get_missing_product(client):
    response = client.get('/api/products/5b0a3a34-8f0e-4f5e-9d0a-1c2b3d4e5f60')
    assert response.status_code == 404
    assert response.get_json()['error']['code'] == 'NOT_FOUND'


def test_create_product_as_inventory_staff(client, make_user, auth_headers, product_payload):
    staff = make_user(UserRole.SELLER, SellerRole.INVENTORY_STAFF)
    response = client.post('/api/products', headers=auth_headers(staff), json=product_payload)
    product = response.get_json()['data']['product']

    assert response.status_code == 201
    assert product['sellerId'] == staff.id
    assert product['price'] == 3500.0
    assert product['discountPrice'] == 2999.5
    assert product['sku'].startswith('WIREL-')


@pytest.mark.parametrize('role,seller_role', [
    (UserRole.BUYER, None),
    (UserRole.SELLER, SellerRole.ACCOUNTANT),
])
def test_create_product_forbidden(client, make_user, auth_headers, product_payload, role, seller_role):
    user = make_user(role, seller_role)
    response = client.post('/api/products', headers=auth_headers(user), json=product_payload)
    assert response.status_code == 403


def test_create_product_discount_must_be_below_price(client, seller, auth_headers, product_payload):
    product_payload['discountPrice'] = 3500
    response = client.post('/api/products', headers=auth_headers(seller), json=product_payload)

    assert response.status_code == 400
    assert response.get_json()['error']['validation'][0]['field'] == 'discountPrice'


def test_create_product_discount_end_date_in_past(client, seller, auth_headers, product_payload):
    product_payload['discountEndDate'] = (utcnow() - timedelta(days=1)).isoformat()
    response = client.post('/api/products', headers=auth_headers(seller), json=product_payload)
    assert response.status_code == 400


def test_create_product_unknown_category(client, seller, auth_headers, product_payload):
    product_payload['categoryId'] = '5b0a3a34-8f0e-4f5e-9d0a-1c2b3d4e5f60'
    response = client.post('/api/products', headers=auth_headers(seller), json=product_payload)
    assert response.status_code == 404


def test_create_product_requires_images(client, seller, auth_headers, product_payload):
    product_payload['images'] = []
    response = client.post('/api/products', headers=auth_headers(seller), json=product_payload)
    assert response.status_code == 400


def test_update_own_product(client, seller, make_product, auth_headers):
    product = make_product(seller, price='500.00')
    response = client.put(f'/api/products/{product.id}', headers=auth_headers(seller),
                          json={'stock': 3, 'discountPrice': 450})
    data = response.get_json()['data']['product']

    assert response.status_code == 200
    assert data['stock'] == 3
    assert data['discountPrice'] == 450.0
    assert data['effectivePrice'] == 450.0


def test_update_discount_checked_against_stored_price(client, seller, make_product, auth_headers):
    product = make_product(seller, price='500.00')
    response = client.put(f'/api/products/{product.id}', headers=auth_headers(seller),
                          json={'discountPrice': 600})
    assert response.status_code == 400


def test_update_clears_discount(client, seller, make_product, auth_headers):
    product = make_product(seller, price='500.00', discount_price=400)
    response = client.put(f'/api/products/{product.id}', headers=auth_headers(seller),
                          json={'discountPrice': None})
    assert response.get_json()['data']['product']['discountPrice'] is None


def test_update_other_sellers_product_forbidden(client, seller, make_user, make_product, auth_headers):
    product = make_product(seller)
    rival = make_user(UserRole.SELLER)
    response = client.put(f'/api/products/{product.id}', headers=auth_headers(rival), json={'stock': 0})
    assert response.status_code == 403


def test_admin_can_update_any_product(client, seller, admin, make_product, auth_headers):
    product = make_product(seller)
    response = client.put(f'/api/products/{product.id}', headers=auth_headers(admin), json={'isActive': False})
    assert response.get_json()['data']['product']['isActive'] is False


def test_delete_product_without_orders(client, seller, make_product, auth_headers):
    product = make_product(seller)
    product_id = product.id
    response = client.delete(f'/api/products/{product_id}', headers=auth_headers(seller))

    assert response.status_code == 200
    assert db.session.get(Product, product_id) is None


def test_delete_product_with_orders_deactivates(client, seller, buyer, make_product, make_order, auth_headers):
    product = make_product(seller)
    make_order(buyer, seller, product)

    response = client.delete(f'/api/products/{product.id}', headers=auth_headers(seller))

    assert response.status_code == 200
    assert 'deactivated' in response.get_json()['message']
    assert db.session.get(Product, product.id).is_active is False


def test_seller_my_products_includes_inactive(client, seller, make_user, make_product, auth_headers):
    make_product(seller, title='Live')
    make_product(seller, title='Paused', is_active=False)
    make_product(make_user(UserRole.SELLER), title='Not Mine')
    headers = auth_headers(seller)

    everything = client.get('/api/products/seller/my-products', headers=headers).get_json()
    assert sorted(p['title'] for p in everything['data']['products']) == ['Live', 'Paused']

    paused = client.get('/api/products/seller/my-products?isActive=false', headers=headers).get_json()
    assert [p['title'] for p in paused['data']['products']] == ['Paused']


def test_review_requires_completed_order(client, buyer, seller, make_product, make_order, auth_headers):
    product = make_product(seller)
    make_order(buyer, seller, product, status=OrderStatus.PROCESSING)

    response = client.post(f'/api/products/{product.id}/reviews', headers=auth_headers(buyer),
                           json={'rating': 5, 'comment': 'Great'})
    assert response.status_code == 403


def test_review_once_per_product(client, buyer, seller, make_product, make_order, auth_headers):
    product = make_product(seller)
    make_order(buyer, seller, product, status=OrderStatus.COMPLETED)
    headers = auth_headers(buyer)

    first = client.post(f'/api/products/{product.id}/reviews', headers=headers,
                        json={'rating': 4, 'comment': '  Solid   value '})
    second = client.post(f'/api/products/{product.id}/reviews', headers=headers, json={'rating': 1})

    assert first.status_code == 201
    assert first.get_json()['data']['review']['comment'] == 'Solid value'
    assert second.status_code == 409
    assert second.get_json()['error']['code'] == 'REVIEW_EXISTS'


def test_review_rating_bounds(client, buyer, seller, make_product, auth_headers):
    product = make_product(seller)
    response = client.post(f'/api/products/{product.id}/reviews', headers=auth_headers(buyer), json={'rating': 6})
    assert response.status_code == 400


def test_list_reviews_filters_by_rating(client, seller, make_user, make_product):
    product = make_product(seller)
    for rating in (5, 3, 5):
        db.session.add(Review(rating=rating, product_id=product.id, user_id=make_user().id, images=[]))
    db.session.commit()

    response = client.get(f'/api/products/{product.id}/reviews?rating=5')
    body = response.get_json()

    assert body['meta']['total'] == 2
    assert all(review['rating'] == 5 for review in body['data']['reviews'])
