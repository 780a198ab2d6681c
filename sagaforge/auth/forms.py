from urllib.parse import urlsplit

from flask_wtf import FlaskForm
from wtforms import BooleanField, HiddenField, PasswordField, StringField, SubmitField
from wtforms.validators import Email, EqualTo, InputRequired, Length, ValidationError

from ..models import User


def _strip(value):
    return value.strip() if isinstance(value, str) else value


def _normalise_email(value):
    return value.strip().lower() if isinstance(value, str) else value


class RegistrationForm(FlaskForm):
    display_name = StringField(
        "Pen name",
        filters=[_strip],
        validators=[InputRequired(), Length(max=120)],
    )
    email = StringField(
        "Email",
        filters=[_normalise_email],
        validators=[InputRequired(), Email(), Length(max=255)],
    )
    password = PasswordField("Password", validators=[InputRequired(), Length(min=8, max=128)])
    confirm_password = PasswordField(
        "Confirm password",
        validators=[InputRequired(), EqualTo("password", message="Passwords must match.")],
    )
    submit = SubmitField("Join the forge")

    def validate_email(self, field: StringField) -> None:
        if User.query.filter_by(email=field.data).first():
            raise ValidationError("A story-weaver with that email already exists.")


class LoginForm(FlaskForm):
    """Sign-in form that carries the page the visitor was sent away from."""

    email = StringField("Email", filters=[_normalise_email], validators=[InputRequired(), Email()])
    password = PasswordField("Password", validators=[InputRequired()])
    remember = BooleanField("Keep me signed in")
    next = HiddenField()
    submit = SubmitField("Sign in")

    def redirect_target(self) -> str | None:
        """Return ``next`` when it is a path on this site, otherwise ``None``."""

        target = self.next.data
        if not target:
            return None
        parts = urlsplit(target)
        if parts.scheme or parts.netloc or not target.startswith("/") or target.startswith("//"):
            return None
        return target
