from functools import wraps

from flask import abort, current_app
from flask_login import UserMixin, current_user

from library_app import db, login_manager
from library_app.utils import isoformat, parse_int


class UserRole:
    """User role constants."""
    USER = "user"
    ADMIN = "admin"

    CHOICES = [
        (USER, "Reader"),
        (ADMIN, "Administrator"),
    ]


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(100), unique=True, nullable=False, index=True)
    role = db.Column(db.String(20), default=UserRole.USER, nullable=False)
    created_at = db.Column(db.DateTime, server_default=db.func.now())

    @property
    def is_admin(self):
        return self.role == UserRole.ADMIN

    @property
    def role_display(self):
        for value, label in UserRole.CHOICES:
            if value == self.role:
                return label
        return self.role

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "role_display": self.role_display,
            "created_at": isoformat(self.created_at),
        }

    def __repr__(self):
        return f"<User {self.email}>"


def admin_required(f):
    """Decorator to require admin role for a route."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user.is_authenticated:
            abort(401)
        if not current_user.is_admin:
            abort(403)
        return f(*args, **kwargs)
    return decorated_function


@login_manager.request_loader
def load_user_from_request(req):
    """Resolve the caller from the header set by the upstream identity proxy."""
    header = current_app.config.get("IDENTITY_HEADER", "X-User-Id")
    user_id = parse_int(req.headers.get(header))
    if user_id is None:
        return None
    return db.session.get(User, user_id)


@login_manager.unauthorized_handler
def unauthorized():
    abort(401)
