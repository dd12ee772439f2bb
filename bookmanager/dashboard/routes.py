from datetime import UTC, datetime

from flask import Blueprint, jsonify
from flask_login import current_user, login_required
from sqlalchemy import func

from .. import policy
from ..constants import BOOK_AVAILABLE, BOOK_ISSUED, ISSUE_ISSUED
from ..models import Book, Issue, User, db

dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/api/dashboard")


def _staff_stats():
    now = datetime.now(UTC)
    recent = Issue.query.order_by(Issue.issue_date.desc()).limit(5).all()
    popular = (
        db.session.query(Book, func.count(Issue.id).label("issue_count"))
        .join(Issue, Issue.book_id == Book.id)
        .group_by(Book.id)
        .order_by(func.count(Issue.id).desc(), Book.title)
        .limit(5)
        .all()
    )
    return {
        "total_users": User.query.count(),
        "total_issues": Issue.query.count(),
        "overdue_issues": Issue.query.filter(Issue.status == ISSUE_ISSUED, Issue.due_date < now).count(),
        "recent_issues": [issue.to_dict(include_book=True, include_user=True) for issue in recent],
        "popular_books": [
            {"book": book.to_dict(include_owner=False), "issue_count": count} for book, count in popular
        ],
    }


@dashboard_bp.route("/stats", methods=["GET"])
@login_required
def stats():
    data = {
        "total_books": Book.query.count(),
        "available_books": Book.query.filter_by(status=BOOK_AVAILABLE).count(),
        "issued_books": Book.query.filter_by(status=BOOK_ISSUED).count(),
        "user_issued_books": 0,
    }
    if policy.is_allowed(current_user, policy.DASHBOARD_STAFF):
        data.update(_staff_stats())
    else:
        data["user_issued_books"] = Issue.query.filter_by(user_id=current_user.id, status=ISSUE_ISSUED).count()
    return jsonify(data)
