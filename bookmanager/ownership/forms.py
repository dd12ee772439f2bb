from flask_wtf import FlaskForm
from wtforms import StringField
from wtforms.validators import DataRequired, Length, Optional

from ..catalog.forms import _clean_text


class TransferForm(FlaskForm):
    new_owner_id = StringField(
        "New Owner",
        validators=[DataRequired(message="New owner ID is required"), Length(max=32)],
        filters=[_clean_text],
    )
    notes = StringField("Notes", validators=[Optional(), Length(max=1000)], filters=[_clean_text])


class BookTransferForm(TransferForm):
    book_id = StringField(
        "Book",
        validators=[DataRequired(message="Book ID is required"), Length(max=32)],
        filters=[_clean_text],
    )
