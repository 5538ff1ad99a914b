import logging
from flask import Flask, jsonify, redirect, url_for
from flask_login import LoginManager
from werkzeug.exceptions import HTTPException
from werkzeug.security import generate_password_hash

from config import Config
from models import db, User
from routes.auth import auth_bp
from routes.users import users_bp
from routes.audit_logs import audit_logs_bp
from routes.properties import properties_bp
from routes.tenants import tenants_bp
from routes.pdc import pdc_bp
from routes.notices import notices_bp
from routes.reports import reports_bp
from routes.dashboard import dashboard_bp


def create_app(test_config=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    app.logger.setLevel(getattr(logging, str(app.config['LOG_LEVEL']).upper(), logging.INFO))

    db.init_app(app)

    login_manager = LoginManager()
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'status': 'error', 'message': 'Authentication required'}), 401

    # Register Blueprints
    app.register_blueprint(auth_bp)
    app.register_blueprint(users_bp, url_prefix='/users')
    app.register_blueprint(audit_logs_bp, url_prefix='/audit-logs')
    app.register_blueprint(properties_bp, url_prefix='/properties')
    app.register_blueprint(tenants_bp, url_prefix='/tenants')
    app.register_blueprint(pdc_bp, url_prefix='/pdc')
    app.register_blueprint(notices_bp, url_prefix='/tenant-notices')
    app.register_blueprint(reports_bp, url_prefix='/reports')
    app.register_blueprint(dashboard_bp)

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        # Routing redirects (trailing slash) pass through untouched
        if e.code and e.code < 400:
            return e
        return jsonify({'status': 'error', 'message': e.description}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        db.session.rollback()
        app.logger.exception("Unhandled error: %s", e)
        return jsonify({'status': 'error', 'message': 'Internal server error'}), 500

    @app.route('/')
    def index():
        return redirect(url_for('dashboard.index'))

    with app.app_context():
        db.create_all()
        seed_admin(app)

    return app


def seed_admin(app):
    """Creates the first admin account on an empty user table."""
    if User.query.filter_by(role='ADMIN').first():
        return None
    admin = User(
        email=app.config['SEED_ADMIN_EMAIL'],
        first_name='System',
        last_name='Administrator',
        password_hash=generate_password_hash(app.config['SEED_ADMIN_PASSWORD']),
        role='ADMIN'
    )
    db.session.add(admin)
    db.session.commit()
    app.logger.info("Created default admin user %s", admin.email)
    return admin


if __name__ == '__main__':
    app = create_app()
    app.run(debug=True)
