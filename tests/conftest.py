from datetime import date

import pytest

from dairytrack import create_app, db
from dairytrack.models import Farm, User, UserRole, Animal


@pytest.fixture
def app():
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'LOG_LEVEL': 'WARNING',
    })
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def auth(token):
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def seed(app):
    """Two farms, users with different roles, and one cow on each farm."""
    with app.app_context():
        farm = Farm(name='Green Pastures')
        other_farm = Farm(name='Hill Top')
        db.session.add_all([farm, other_farm])
        db.session.flush()

        owner = User(email='owner@example.com', api_token='owner-token')
        worker = User(email='worker@example.com', api_token='worker-token')
        outsider = User(email='outsider@example.com', api_token='outsider-token')
        newcomer = User(email='new@example.com', api_token='new-token')
        db.session.add_all([owner, worker, outsider, newcomer])
        db.session.flush()

        db.session.add_all([
            UserRole(user_id=owner.id, farm_id=farm.id, role_type='farm_owner'),
            UserRole(user_id=worker.id, farm_id=farm.id, role_type='worker'),
            UserRole(user_id=outsider.id, farm_id=other_farm.id, role_type='farm_owner'),
        ])

        cow = Animal(farm_id=farm.id, tag_number='C001', name='Daisy', gender='female',
                     production_status='lactating', birth_date=date(2021, 3, 1), days_in_milk=45,
                     lactation_number=1)
        foreign_cow = Animal(farm_id=other_farm.id, tag_number='H001', name='Bella', gender='female',
                             production_status='heifer', birth_date=date(2022, 5, 10))
        db.session.add_all([cow, foreign_cow])
        db.session.commit()

        return {
            'farm_id': farm.id,
            'other_farm_id': other_farm.id,
            'owner_id': owner.id,
            'cow_id': cow.id,
            'foreign_cow_id': foreign_cow.id,
        }
