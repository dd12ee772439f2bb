from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from .. import limiter, policy
from ..api_utils import json_body, load_form, page_args, pagination_meta, supplied_data
from ..models import Issue
from .forms import BookForm, BookUpdateForm
from .service import UPDATABLE_FIELDS, create_book, delete_book, get_book, list_books, update_book

catalog_bp = Blueprint("catalog", __name__, url_prefix="/api/books")


@catalog_bp.route("", methods=["GET"])
@login_required
def index():
    page, limit = page_args()
    pagination = list_books(
        search=(request.args.get("search") or "").strip() or None,
        genre=(request.args.get("genre") or "").strip().upper() or None,
        sort_by=request.args.get("sort_by", "title"),
        sort_order=request.args.get("sort_order", "asc").lower(),
        page=page,
        limit=limit,
    )
    return jsonify(
        {
            "books": [book.to_dict() for book in pagination.items],
            "pagination": pagination_meta(pagination),
        }
    )


@catalog_bp.route("", methods=["POST"])
@login_required
@limiter.limit("30 per minute")
def create():
    form = load_form(BookForm)
    data = {
        "title": form.title.data,
        "author": form.author.data,
        "isbn": form.isbn.data,
        "genre": form.genre.data,
        "publication_date": form.publication_date.data,
        "description": form.description.data,
        "cover_image": form.cover_image.data,
        "total_copies": form.total_copies.data,
        "notes": form.notes.data,
    }
    book = create_book(current_user, data, owner_id=form.owner_id.data or None)
    return jsonify({"message": "Book created successfully", "book": book.to_dict()}), 201


@catalog_bp.route("/<book_id>", methods=["GET"])
@login_required
def detail(book_id):
    book = get_book(book_id)
    issues = book.issues.order_by(Issue.issue_date.desc())
    if not policy.is_allowed(current_user, policy.ISSUE_LIST_ALL):
        issues = issues.filter(Issue.user_id == current_user.id)
    data = book.to_dict()
    data["issues"] = [issue.to_dict(include_user=True) for issue in issues.all()]
    return jsonify({"book": data})


@catalog_bp.route("/<book_id>", methods=["PUT", "PATCH"])
@login_required
@limiter.limit("30 per minute")
def update(book_id):
    body = json_body()
    form = load_form(BookUpdateForm, body)
    book = update_book(current_user, book_id, supplied_data(form, body, UPDATABLE_FIELDS))
    return jsonify({"message": "Book updated successfully", "book": book.to_dict()})


@catalog_bp.route("/<book_id>", methods=["DELETE"])
@login_required
@limiter.limit("30 per minute")
def delete(book_id):
    delete_book(current_user, book_id)
    return jsonify({"message": "Book deleted successfully"})
