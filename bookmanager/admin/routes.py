from . import routes_users  # noqa: F401  (registers the user endpoints)
from .common import admin_bp

__all__ = ["admin_bp"]
