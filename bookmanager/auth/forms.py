from flask_wtf import FlaskForm
from wtforms import BooleanField, PasswordField, StringField
from wtforms.validators import DataRequired, Email, Length


def _normalize_email(value):
    return value.strip().lower() if isinstance(value, str) else value


class LoginForm(FlaskForm):
    email = StringField(
        "Email",
        validators=[DataRequired(message="Email is required"), Email(), Length(max=255)],
        filters=[_normalize_email],
    )
    password = PasswordField("Password", validators=[DataRequired(message="Password is required")])
    remember_me = BooleanField("Remember me")
