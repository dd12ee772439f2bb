from flask_wtf import FlaskForm
from wtforms import PasswordField, StringField
from wtforms.validators import AnyOf, DataRequired, Email, Length, Optional, ValidationError

from ..constants import MIN_NAME_LENGTH, MIN_PASSWORD_LENGTH, ROLE_USER, ROLES, normalize_role

_COMMON_PASSWORDS = {
    "password",
    "123456",
    "1234567",
    "12345678",
    "123456789",
    "qwerty",
    "qwerty123",
    "password1",
    "letmein",
    "iloveyou",
    "welcome",
    "admin123",
}


def _normalize_email(value):
    return value.strip().lower() if isinstance(value, str) else value


def _strip(value):
    return value.strip() if isinstance(value, str) else value


def _validate_password_strength(form, field):
    password = field.data
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        return  # Length validator handles this
    if password.lower() in _COMMON_PASSWORDS:
        raise ValidationError("This password is too common. Please choose a stronger password.")


_ROLE_MESSAGE = "Role must be one of: " + ", ".join(ROLES)
_PASSWORD_MESSAGE = f"Password must be at least {MIN_PASSWORD_LENGTH} characters"


class UserCreateForm(FlaskForm):
    name = StringField(
        "Name",
        validators=[DataRequired(message="Name is required"), Length(min=MIN_NAME_LENGTH, max=255)],
        filters=[_strip],
    )
    email = StringField(
        "Email",
        validators=[DataRequired(message="Email is required"), Email(message="Invalid email address"), Length(max=255)],
        filters=[_normalize_email],
    )
    password = PasswordField(
        "Password",
        validators=[
            DataRequired(message="Password is required"),
            Length(min=MIN_PASSWORD_LENGTH, max=128, message=_PASSWORD_MESSAGE),
            _validate_password_strength,
        ],
    )
    role = StringField(
        "Role",
        default=ROLE_USER,
        validators=[AnyOf(ROLES, message=_ROLE_MESSAGE)],
        filters=[normalize_role],
    )


class UserUpdateForm(FlaskForm):
    name = StringField("Name", validators=[Optional(), Length(min=MIN_NAME_LENGTH, max=255)], filters=[_strip])
    email = StringField(
        "Email",
        validators=[Optional(), Email(message="Invalid email address"), Length(max=255)],
        filters=[_normalize_email],
    )
    role = StringField("Role", validators=[Optional(), AnyOf(ROLES, message=_ROLE_MESSAGE)], filters=[normalize_role])


class PasswordChangeForm(FlaskForm):
    password = PasswordField(
        "New Password",
        validators=[
            DataRequired(message="Password is required"),
            Length(min=MIN_PASSWORD_LENGTH, max=128, message=_PASSWORD_MESSAGE),
            _validate_password_strength,
        ],
    )


class UserSearchForm(FlaskForm):
    class Meta:
        csrf = False

    q = StringField("Search", validators=[Optional(), Length(max=200)])
