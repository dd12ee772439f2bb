"""Domain constants shared by models, forms, services and routes.

Declared once here; nothing else re-declares a role, status or genre list.
"""

# ── Roles ──────────────────────────────────────────────────────────

ROLE_ADMIN = "ADMIN"
ROLE_BOOKKEEPER = "BOOKKEEPER"
ROLE_USER = "USER"

ROLES = (ROLE_ADMIN, ROLE_BOOKKEEPER, ROLE_USER)
STAFF_ROLES = frozenset({ROLE_ADMIN, ROLE_BOOKKEEPER})

# Older records and clients still send LIBRARIAN for the bookkeeper role.
LEGACY_ROLE_ALIASES = {"LIBRARIAN": ROLE_BOOKKEEPER}

ROLE_CHOICES = [
    (ROLE_USER, "User"),
    (ROLE_BOOKKEEPER, "Bookkeeper"),
    (ROLE_ADMIN, "Admin"),
]


def normalize_role(value):
    if value is None:
        return None
    value = str(value).strip().upper()
    return LEGACY_ROLE_ALIASES.get(value, value)


# ── Book status ────────────────────────────────────────────────────

BOOK_AVAILABLE = "AVAILABLE"
BOOK_ISSUED = "ISSUED"
BOOK_RESERVED = "RESERVED"
BOOK_MAINTENANCE = "MAINTENANCE"
BOOK_LOST = "LOST"

BOOK_STATUSES = (BOOK_AVAILABLE, BOOK_ISSUED, BOOK_RESERVED, BOOK_MAINTENANCE, BOOK_LOST)

# Statuses driven by the copy counter; the rest are set by hand.
CIRCULATING_STATUSES = frozenset({BOOK_AVAILABLE, BOOK_ISSUED})

# ── Issue status ───────────────────────────────────────────────────

ISSUE_ISSUED = "ISSUED"
ISSUE_RETURNED = "RETURNED"
ISSUE_OVERDUE = "OVERDUE"
ISSUE_LOST = "LOST"

ISSUE_STATUSES = (ISSUE_ISSUED, ISSUE_RETURNED, ISSUE_OVERDUE, ISSUE_LOST)

# ── Genres ─────────────────────────────────────────────────────────

GENRES = (
    "FICTION",
    "NON_FICTION",
    "SCIENCE_FICTION",
    "MYSTERY",
    "ROMANCE",
    "THRILLER",
    "BIOGRAPHY",
    "HISTORY",
    "SCIENCE",
    "TECHNOLOGY",
    "PHILOSOPHY",
    "RELIGION",
    "ART",
    "MUSIC",
    "TRAVEL",
    "COOKING",
    "HEALTH",
    "EDUCATION",
    "CHILDREN",
    "YOUNG_ADULT",
    "OTHER",
)

GENRE_CHOICES = [(g, g.replace("_", " ").title()) for g in GENRES]

# ── One-time codes ─────────────────────────────────────────────────

OTP_LENGTH = 6
OTP_EXPIRY_MINUTES = 10

# ── Validation ─────────────────────────────────────────────────────

MIN_PASSWORD_LENGTH = 6
MIN_NAME_LENGTH = 1
MIN_BOOK_COPIES = 1
MAX_BOOK_COPIES = 10000

# ── Pagination ─────────────────────────────────────────────────────

DEFAULT_PAGE = 1
DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100

# Columns the book list may be sorted by (API name -> model attribute).
BOOK_SORT_FIELDS = {
    "title": "title",
    "author": "author",
    "isbn": "isbn",
    "genre": "genre",
    "publication_date": "publication_date",
    "created_at": "created_at",
    "available_copies": "available_copies",
}
