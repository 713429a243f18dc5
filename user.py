import hmac
from flask import current_app
from flask_login import UserMixin


class Operator(UserMixin):
    """The single operator allowed to run administrative actions."""

    def __init__(self, username):
        self.id = username
        self.username = username

    @staticmethod
    def get(username):
        if username and username == current_app.config['OPERATOR_USERNAME']:
            return Operator(username)
        return None

    @staticmethod
    def authenticate(username, password):
        expected_password = current_app.config['OPERATOR_PASSWORD']
        # No configured password means operator login is switched off
        if not expected_password:
            return None

        if username == current_app.config['OPERATOR_USERNAME'] and \
                hmac.compare_digest(password.encode(), expected_password.encode()):
            return Operator(username)
        return None
