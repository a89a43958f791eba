from datetime import timedelta

from core.database_models import db, Category, Product, RefreshToken, User, UserRole
from core.seed import SEED_PRODUCTS, seed_database
from core.utils import utcnow


def test_seed_is_idempotent(app):
    created = seed_database()
    again = seed_database()

    assert created == len(SEED_PRODUCTS)
    assert again == 0
    assert Product.query.count() == len(SEED_PRODUCTS)
    assert Category.query.count() == 5
    assert User.query.filter_by(role=UserRole.ADMIN).count() == 1
    assert User.query.filter_by(role=UserRole.BUYER).count() == 5


def test_seed_command(app):
    result = app.test_cli_runner().invoke(args=['seed-db'])

    assert result.exit_code == 0
    assert 'Database seeded' in result.output


def test_purge_tokens_command(app, buyer):
    db.session.add(RefreshToken(token='stale', user_id=buyer.id, expires_at=utcnow() - timedelta(days=1)))
    db.session.add(RefreshToken(token='fresh', user_id=buyer.id, expires_at=utcnow() + timedelta(days=1)))
    db.session.commit()

    result = app.test_cli_runner().invoke(args=['purge-tokens'])

    assert 'Purged 1 expired refresh token(s).' in result.output
    assert [token.token for token in RefreshToken.query.all()] == ['fresh']
