from functools import wraps

from flask import Blueprint
from flask_login import current_user, login_required

from .. import policy

admin_bp = Blueprint("admin", __name__, url_prefix="/api/users")


def admin_required(f):
    @wraps(f)
    @login_required
    def decorated_function(*args, **kwargs):
        policy.authorize(current_user, policy.USER_MANAGE)
        return f(*args, **kwargs)

    return decorated_function
