"""
Visitor Counter - Application Factory

Serves the visit-registration and statistics API consumed by the counter
widget, plus an operator-only reset.
"""
import os
from datetime import datetime, timezone

import click
from flask import Flask, jsonify, request, current_app
from flask_cors import CORS
from flask_login import LoginManager, login_user, logout_user, login_required
from flask_wtf.csrf import generate_csrf
from sqlalchemy.exc import SQLAlchemyError

from config import config
from forms import LoginForm, ResetStatsForm
from models import db, GlobalStat
from user import Operator
from visit_tracker import VisitTracker

tracker = VisitTracker()
login_manager = LoginManager()


@login_manager.user_loader
def load_user(user_id):
    return Operator.get(user_id)


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({'success': False, 'error': 'Operator login required'}), 401


def error_response(message, status):
    return jsonify({'success': False, 'error': message}), status


def create_app(config_name=None):
    """Application factory pattern"""

    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'development')

    app = Flask(__name__)
    app.config.from_object(config[config_name])
    config[config_name].init_app(app)

    db.init_app(app)
    tracker.init_app(app)
    login_manager.init_app(app)
    CORS(app, resources={r'/api/*': {'origins': app.config['CORS_ORIGINS']}})

    register_routes(app)
    register_commands(app)

    # Create database tables on startup
    with app.app_context():
        init_db()

    return app


def init_db():
    db.create_all()
    GlobalStat.ensure()
    db.session.commit()


def register_routes(app):

    @app.route('/api/visit', methods=['POST'])
    def register_visit():
        payload = request.get_json(silent=True) or {}
        ip = tracker.get_real_ip()

        try:
            visitor, is_new = tracker.register_visit(
                ip, payload, request.headers.get('User-Agent', '')
            )
            response = {
                'success': True,
                'visitor': visitor.to_dict(),
                'isNewVisitor': is_new,
            }
        except SQLAlchemyError:
            current_app.logger.exception('Error registering visit')
            return error_response('Internal server error', 500)

        current_app.logger.info('Visit registered (new=%s, country=%s)', is_new, response['visitor']['countryCode'])

        # The visit is committed at this point; totals are only a convenience
        try:
            response.update(tracker.get_stats())
        except SQLAlchemyError:
            current_app.logger.exception('Error fetching statistics after registering visit')

        return jsonify(response)

    @app.route('/api/stats')
    def stats():
        try:
            data = tracker.get_stats()
        except SQLAlchemyError:
            current_app.logger.exception('Error fetching statistics')
            return error_response('Internal server error', 500)

        return jsonify({'success': True, 'data': data})

    @app.route('/api/reset', methods=['POST'])
    @login_required
    def reset():
        if not current_app.config['ALLOW_RESET']:
            return error_response('Reset is disabled on this deployment', 403)

        form = ResetStatsForm()
        if not form.validate_on_submit():
            return error_response('Reset must be confirmed', 400)

        try:
            tracker.reset_stats()
        except SQLAlchemyError:
            current_app.logger.exception('Error resetting statistics')
            return error_response('Internal server error', 500)

        current_app.logger.warning('Visitor statistics reset by operator')
        return jsonify({'success': True, 'message': 'Statistics reset'})

    # Operator session
    @app.route('/admin/login', methods=['GET', 'POST'])
    def admin_login():
        if request.method == 'GET':
            return jsonify({'csrfToken': generate_csrf()})

        form = LoginForm()
        if form.validate_on_submit():
            operator = Operator.authenticate(form.username.data, form.password.data)
            if operator:
                login_user(operator)
                return jsonify({'success': True})

        return error_response('Invalid username or password', 401)

    @app.route('/admin/logout', methods=['POST'])
    @login_required
    def admin_logout():
        logout_user()
        return jsonify({'success': True})

    @app.route('/health')
    def health_check():
        return {'status': 'healthy', 'timestamp': datetime.now(timezone.utc).isoformat()}


def register_commands(app):

    @app.cli.command('init-db')
    def init_db_command():
        """Create the tables and the global statistics row."""
        init_db()
        click.echo('Database initialized')

    @app.cli.command('reset-stats')
    @click.option('--yes', is_flag=True, help='Skip the confirmation prompt.')
    def reset_stats_command(yes):
        """Delete every visitor and country row and zero the totals."""
        if not yes:
            click.confirm('This deletes all visitor statistics. Continue?', abort=True)
        tracker.reset_stats()
        click.echo('Statistics reset')


if __name__ == '__main__':
    create_app().run(debug=True)
