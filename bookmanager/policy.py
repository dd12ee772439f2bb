"""Authorization rules for the library operations.

Every role or ownership decision goes through :func:`is_allowed`; routes and
services never compare roles inline.
"""

from .constants import ROLE_ADMIN, STAFF_ROLES
from .errors import Forbidden

BOOK_CREATE = "book:create"
BOOK_UPDATE = "book:update"
BOOK_DELETE = "book:delete"
BOOK_ISSUE = "book:issue"
BOOK_RETURN = "book:return"
BOOK_TRANSFER = "book:transfer"
BOOK_HISTORY = "book:history"
BOOK_ASSIGN_OWNER = "book:assign_owner"
ISSUE_LIST_ALL = "issue:list_all"
USER_MANAGE = "user:manage"
DASHBOARD_STAFF = "dashboard:staff"

_STAFF_ACTIONS = frozenset({BOOK_CREATE, BOOK_ISSUE, BOOK_RETURN, ISSUE_LIST_ALL, DASHBOARD_STAFF})
_ADMIN_ACTIONS = frozenset({BOOK_DELETE, BOOK_ASSIGN_OWNER, USER_MANAGE})
_OWNER_ACTIONS = frozenset({BOOK_UPDATE})

_DENIAL_MESSAGES = {
    BOOK_UPDATE: "Only the book owner or an administrator can update this book.",
    BOOK_DELETE: "Only administrators can delete books.",
    BOOK_ASSIGN_OWNER: "Only administrators can assign a book to another owner.",
    BOOK_TRANSFER: "Only the book owner or an administrator can transfer ownership.",
    USER_MANAGE: "Only administrators can manage users.",
}


def _is_owner(actor, book):
    return book is not None and book.owner_id == actor.id


def is_allowed(actor, action, resource=None):
    """Return True when *actor* may perform *action* on *resource*.

    ``resource`` is the Book for book-scoped actions. A book transfer
    without a resource only checks the role gate; with one it also requires
    the actor to own the book unless they are an admin.
    """
    if actor is None or not getattr(actor, "is_authenticated", False):
        return False

    role = actor.role
    if action == BOOK_HISTORY:
        return True
    if action in _STAFF_ACTIONS:
        return role in STAFF_ROLES
    if action in _ADMIN_ACTIONS:
        return role == ROLE_ADMIN
    if action in _OWNER_ACTIONS:
        return role == ROLE_ADMIN or _is_owner(actor, resource)
    if action == BOOK_TRANSFER:
        if role not in STAFF_ROLES:
            return False
        if resource is None:
            return True
        return role == ROLE_ADMIN or _is_owner(actor, resource)
    return False


def authorize(actor, action, resource=None):
    if not is_allowed(actor, action, resource):
        raise Forbidden(_DENIAL_MESSAGES.get(action))
