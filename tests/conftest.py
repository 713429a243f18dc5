import pytest

from app import create_app, tracker
from models import db


@pytest.fixture
def app():
    app = create_app('testing')
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield


@pytest.fixture
def operator(client):
    response = client.post('/admin/login', data={'username': 'operator', 'password': 'secret'})
    assert response.status_code == 200
    return client


def france(**overrides):
    payload = {
        'country': 'France',
        'countryCode': 'FR',
        'region': 'Ile-de-France',
        'city': 'Paris',
        'timezone': 'Europe/Paris',
        'org': 'Orange',
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def register(ctx):
    def _register(ip, payload=None, user_agent='pytest'):
        return tracker.register_visit(ip, payload or france(), user_agent)
    return _register


@pytest.fixture
def location():
    return france
