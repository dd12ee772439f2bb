from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from .. import limiter
from ..api_utils import load_form, page_args, pagination_meta
from .forms import IssueForm, ReturnForm
from .service import issue_book, list_issues, return_book

circulation_bp = Blueprint("circulation", __name__, url_prefix="/api/issues")


@circulation_bp.route("", methods=["GET"])
@login_required
def index():
    page, limit = page_args()
    pagination = list_issues(
        current_user,
        status=(request.args.get("status") or "").strip().upper() or None,
        user_id=request.args.get("user_id") or None,
        page=page,
        limit=limit,
    )
    return jsonify(
        {
            "issues": [issue.to_dict(include_book=True, include_user=True) for issue in pagination.items],
            "pagination": pagination_meta(pagination),
        }
    )


@circulation_bp.route("", methods=["POST"])
@login_required
@limiter.limit("30 per minute")
def issue():
    form = load_form(IssueForm)
    issue, code = issue_book(current_user, form.book_id.data, form.user_id.data, form.due_date.data)

    body = {
        "message": "Book issued successfully",
        "issue": issue.to_dict(include_book=True, include_user=True),
    }
    if current_app.config.get("ISSUE_CODE_IN_RESPONSE"):
        body["otp_code"] = code
    return jsonify(body), 201


@circulation_bp.route("", methods=["PUT"])
@login_required
@limiter.limit("10 per minute")
def return_():
    form = load_form(ReturnForm)
    issue = return_book(current_user, form.book_id.data, form.user_id.data, form.otp_code.data)
    return jsonify({"message": "Book returned successfully", "issue": issue.to_dict(include_book=True)})
