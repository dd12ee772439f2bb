from datetime import UTC, date, datetime

from flask_wtf import FlaskForm
from wtforms import Field, IntegerField, SelectField, StringField
from wtforms.validators import DataRequired, InputRequired, Length, NumberRange, Optional, ValidationError

from ..constants import GENRE_CHOICES, GENRES, MAX_BOOK_COPIES, MIN_BOOK_COPIES


def _clean_text(value):
    """JSON bodies may carry numbers where text is expected (ISBNs mostly)."""
    if value is None:
        return None
    return str(value).strip()


def _upper(value):
    return value.strip().upper() if isinstance(value, str) else value


class IsoDateField(Field):
    """Accepts ``YYYY-MM-DD`` or a full ISO-8601 timestamp and keeps the date."""

    def _value(self):
        return self.data.isoformat() if self.data else ""

    def process_formdata(self, valuelist):
        if not valuelist or valuelist[0] in (None, ""):
            self.data = None
            return
        raw = str(valuelist[0]).strip()
        try:
            self.data = date.fromisoformat(raw)
        except ValueError:
            try:
                self.data = datetime.fromisoformat(raw.replace("Z", "+00:00")).date()
            except ValueError:
                self.data = None
                raise ValueError("Please enter a valid date (YYYY-MM-DD).") from None


class IsoDateTimeField(Field):
    """ISO-8601 timestamp; naive values are taken as UTC."""

    def _value(self):
        return self.data.isoformat() if self.data else ""

    def process_formdata(self, valuelist):
        if not valuelist or valuelist[0] in (None, ""):
            self.data = None
            return
        raw = str(valuelist[0]).strip()
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            self.data = None
            raise ValueError("Please enter a valid ISO-8601 date and time.") from None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=UTC)
        self.data = parsed


def _validate_genre(form, field):
    if field.data and field.data not in GENRES:
        raise ValidationError("Not a valid genre.")


class BookForm(FlaskForm):
    title = StringField(
        "Title",
        validators=[DataRequired(message="Title is required"), Length(max=500)],
        filters=[_clean_text],
    )
    author = StringField(
        "Author",
        validators=[DataRequired(message="Author is required"), Length(max=500)],
        filters=[_clean_text],
    )
    isbn = StringField(
        "ISBN",
        validators=[DataRequired(message="ISBN is required"), Length(max=32)],
        filters=[_clean_text],
    )
    genre = SelectField(
        "Genre",
        validators=[DataRequired(message="Genre is required"), _validate_genre],
        choices=GENRE_CHOICES,
        filters=[_upper],
        validate_choice=False,
    )
    publication_date = IsoDateField(
        "Publication Date",
        validators=[InputRequired(message="Publication date is required")],
    )
    description = StringField("Description", validators=[Optional(), Length(max=5000)], filters=[_clean_text])
    cover_image = StringField("Cover Image", validators=[Optional(), Length(max=1000)], filters=[_clean_text])
    total_copies = IntegerField(
        "Total Copies",
        validators=[
            InputRequired(message="Total copies is required"),
            NumberRange(min=MIN_BOOK_COPIES, max=MAX_BOOK_COPIES, message="At least 1 copy is required"),
        ],
    )
    # Admins may hand a new book straight to a bookkeeper
    owner_id = StringField("Owner", validators=[Optional(), Length(max=32)], filters=[_clean_text])
    notes = StringField("Notes", validators=[Optional(), Length(max=1000)], filters=[_clean_text])


class BookUpdateForm(FlaskForm):
    title = StringField("Title", validators=[Optional(), Length(min=1, max=500)], filters=[_clean_text])
    author = StringField("Author", validators=[Optional(), Length(min=1, max=500)], filters=[_clean_text])
    isbn = StringField("ISBN", validators=[Optional(), Length(min=1, max=32)], filters=[_clean_text])
    genre = SelectField(
        "Genre",
        validators=[Optional(), _validate_genre],
        choices=GENRE_CHOICES,
        filters=[_upper],
        validate_choice=False,
    )
    publication_date = IsoDateField("Publication Date", validators=[Optional()])
    description = StringField("Description", validators=[Optional(), Length(max=5000)], filters=[_clean_text])
    cover_image = StringField("Cover Image", validators=[Optional(), Length(max=1000)], filters=[_clean_text])
    total_copies = IntegerField(
        "Total Copies",
        validators=[
            Optional(),
            NumberRange(min=MIN_BOOK_COPIES, max=MAX_BOOK_COPIES, message="At least 1 copy is required"),
        ],
    )
