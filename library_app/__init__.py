from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager
from flask_migrate import Migrate

from library_app.config import Config

db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    # Register blueprints
    from library_app.routes.books import bp as books_bp
    from library_app.routes.authors import bp as authors_bp
    from library_app.routes.loans import bp as loans_bp
    from library_app.routes.reservations import bp as reservations_bp
    from library_app.routes.admin import bp as admin_bp
    from library_app.routes.users import bp as users_bp
    from library_app.routes.health import bp as health_bp

    app.register_blueprint(books_bp, url_prefix="/books")
    app.register_blueprint(authors_bp, url_prefix="/authors")
    app.register_blueprint(loans_bp, url_prefix="/loans")
    app.register_blueprint(reservations_bp, url_prefix="/reservations")
    app.register_blueprint(admin_bp, url_prefix="/admin")
    app.register_blueprint(users_bp, url_prefix="/users")
    app.register_blueprint(health_bp, url_prefix="/health")

    _register_error_handlers(app)

    # Make sure the models are registered with the metadata
    with app.app_context():
        from library_app.models import User, Author, Book, BookAuthor, Reservation, Loan  # noqa: F401

    # Start the sweep scheduler (no-op unless SCHEDULER_ENABLED)
    from library_app.services.scheduler import init_app as init_scheduler
    init_scheduler(app)

    return app


def _register_error_handlers(app):
    from library_app.errors import LibraryError

    @app.errorhandler(LibraryError)
    def handle_library_error(error):
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(401)
    def handle_unauthorized(error):
        return jsonify({"detail": "Authentication required", "code": "not_authenticated"}), 401

    @app.errorhandler(403)
    def handle_forbidden(error):
        return jsonify({"detail": "Admin access required", "code": "forbidden"}), 403

    @app.errorhandler(404)
    def handle_not_found(error):
        return jsonify({"detail": "Resource not found", "code": "not_found"}), 404
