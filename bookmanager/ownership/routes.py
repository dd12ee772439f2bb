from flask import Blueprint, jsonify
from flask_login import current_user, login_required

from .. import limiter
from ..api_utils import load_form
from .forms import BookTransferForm, TransferForm
from .service import get_ownership_history, transfer_ownership

ownership_bp = Blueprint("ownership", __name__, url_prefix="/api/books")


@ownership_bp.route("/<book_id>/ownership", methods=["GET"])
@login_required
def history(book_id):
    book, audits = get_ownership_history(current_user, book_id)
    return jsonify(
        {
            "book": book.to_dict(),
            "history": [audit.to_dict() for audit in audits],
        }
    )


@ownership_bp.route("/<book_id>/ownership", methods=["PATCH"])
@login_required
@limiter.limit("30 per minute")
def transfer(book_id):
    form = load_form(TransferForm)
    book = transfer_ownership(current_user, book_id, form.new_owner_id.data, note=form.notes.data or None)
    return jsonify({"message": "Ownership transferred successfully", "book": book.to_dict()})


@ownership_bp.route("", methods=["PATCH"])
@login_required
@limiter.limit("30 per minute")
def transfer_by_body():
    # Older clients send the book id in the body
    form = load_form(BookTransferForm)
    book = transfer_ownership(current_user, form.book_id.data, form.new_owner_id.data, note=form.notes.data or None)
    return jsonify({"message": "Ownership transferred successfully", "book": book.to_dict()})
