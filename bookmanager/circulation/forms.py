from flask_wtf import FlaskForm
from wtforms import StringField
from wtforms.validators import DataRequired, InputRequired, Length

from ..catalog.forms import IsoDateTimeField, _clean_text


def _id_field(label, message):
    return StringField(label, validators=[DataRequired(message=message), Length(max=32)], filters=[_clean_text])


class IssueForm(FlaskForm):
    book_id = _id_field("Book", "Book ID is required")
    user_id = _id_field("User", "User ID is required")
    due_date = IsoDateTimeField("Due Date", validators=[InputRequired(message="Due date is required")])


class ReturnForm(FlaskForm):
    book_id = _id_field("Book", "Book ID is required")
    user_id = _id_field("User", "User ID is required")
    otp_code = StringField(
        "Return Code",
        validators=[DataRequired(message="Return code is required"), Length(max=16)],
        filters=[_clean_text],
    )
