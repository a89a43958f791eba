import pytest

from core.database_models import db, Category


def test_list_categories_hides_inactive(client, category):
    db.session.add(Category(name='Archived', slug='archived', is_active=False))
    db.session.commit()

    response = client.get('/api/categories')
    names = [c['name'] for c in response.get_json()['data']['categories']]

    assert response.status_code == 200
    assert names == ['Electronics']


def test_admin_can_include_inactive(client, admin, category, auth_headers):
    db.session.add(Category(name='Archived', slug='archived', is_active=False))
    db.session.commit()

    response = client.get('/api/categories?includeInactive=true', headers=auth_headers(admin))
    names = [c['name'] for c in response.get_json()['data']['categories']]
    assert names == ['Archived', 'Electronics']


def test_include_inactive_ignored_for_non_admins(client, buyer, category, auth_headers):
    db.session.add(Category(name='Archived', slug='archived', is_active=False))
    db.session.commit()

    response = client.get('/api/categories?includeInactive=true', headers=auth_headers(buyer))
    assert len(response.get_json()['data']['categories']) == 1


def test_product_count_counts_active_products(client, seller, category, make_product):
    make_product(seller)
    make_product(seller)
    make_product(seller, is_active=False)

    categories = client.get('/api/categories').get_json()['data']['categories']
    assert categories[0]['productCount'] == 2


def test_get_category_by_slug_or_id(client, category):
    by_slug = client.get('/api/categories/electronics').get_json()['data']['category']
    by_id = client.get(f'/api/categories/{category.id}').get_json()['data']['category']

    assert by_slug['id'] == by_id['id'] == category.id
    assert client.get('/api/categories/nothing-here').status_code == 404


def test_create_category(client, admin, auth_headers):
    response = client.post('/api/categories', headers=auth_headers(admin), json={
        'name': 'Home & Garden',
        'description': 'Things for the house',
    })
    category = response.get_json()['data']['category']

    assert response.status_code == 201
    assert category['slug'] == 'home-garden'
    assert category['isActive'] is True


@pytest.mark.parametrize('name', ['!!!', ' & '])
def test_create_category_needs_a_sluggable_name(client, admin, auth_headers, name):
    response = client.post('/api/categories', headers=auth_headers(admin), json={'name': name})
    error = response.get_json()['error']

    assert response.status_code == 400
    assert error['validation'][0]['field'] == 'name'
    assert Category.query.count() == 0


def test_update_category_needs_a_sluggable_name(client, admin, category, auth_headers):
    response = client.put(f'/api/categories/{category.id}', headers=auth_headers(admin), json={'name': '???'})

    assert response.status_code == 400
    db.session.refresh(category)
    assert category.slug == 'electronics'


def test_create_category_duplicate_name(client, admin, category, auth_headers):
    response = client.post('/api/categories', headers=auth_headers(admin), json={'name': 'electronics'})

    assert response.status_code == 409
    assert response.get_json()['error']['code'] == 'CATEGORY_EXISTS'


def test_create_category_admin_only(client, seller, auth_headers):
    response = client.post('/api/categories', headers=auth_headers(seller), json={'name': 'Toys'})
    assert response.status_code == 403


def test_update_category_regenerates_slug(client, admin, category, auth_headers):
    response = client.put(f'/api/categories/{category.id}', headers=auth_headers(admin),
                          json={'name': 'Consumer Electronics', 'description': None})
    data = response.get_json()['data']['category']

    assert data['slug'] == 'consumer-electronics'
    assert data['description'] is None


def test_update_category_name_clash(client, admin, category, auth_headers):
    other = Category(name='Books', slug='books')
    db.session.add(other)
    db.session.commit()

    response = client.put(f'/api/categories/{other.id}', headers=auth_headers(admin),
                          json={'name': 'Electronics'})
    assert response.status_code == 409


def test_delete_category_in_use(client, admin, seller, category, make_product, auth_headers):
    make_product(seller)
    response = client.delete(f'/api/categories/{category.id}', headers=auth_headers(admin))

    assert response.status_code == 409
    body = response.get_json()
    assert body['error']['code'] == 'CATEGORY_IN_USE'
    assert body['error']['productCount'] == 1


def test_delete_empty_category(client, admin, category, auth_headers):
    category_id = category.id
    response = client.delete(f'/api/categories/{category_id}', headers=auth_headers(admin))

    assert response.status_code == 200
    assert db.session.get(Category, category_id) is None
