"""Helpers shared by the JSON blueprints."""

from flask import request
from werkzeug.datastructures import MultiDict

from .errors import ValidationError


def json_body():
    body = request.get_json(silent=True)
    if body is None:
        return {}
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object.")
    return body


def _form_value(value):
    # Form fields expect the strings a browser would post
    if value is None or value is False:
        return ""
    if value is True:
        return "y"
    if isinstance(value, int | float):
        return str(value)
    return value


def load_form(form_cls, body=None):
    """Bind a JSON object to *form_cls* and validate it.

    ``null`` is treated like an empty value so Optional fields skip cleanly.
    Raises ValidationError carrying the per-field messages.
    """
    if body is None:
        body = json_body()
    formdata = MultiDict({key: _form_value(value) for key, value in body.items()})
    form = form_cls(formdata=formdata)
    if not form.validate():
        raise ValidationError(details=form.errors)
    return form


def supplied_data(form, body, fields):
    """Field data for the keys the client actually sent."""
    return {name: form[name].data for name in fields if name in body}


def page_args():
    return request.args.get("page", 1, type=int), request.args.get("limit", None, type=int)


def pagination_meta(pagination):
    return {
        "page": pagination.page,
        "limit": pagination.per_page,
        "total": pagination.total,
        "pages": pagination.pages,
    }
