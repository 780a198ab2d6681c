from flask_wtf import FlaskForm
from flask_wtf.file import FileAllowed, MultipleFileField
from wtforms import StringField, SubmitField, TextAreaField
from wtforms.validators import DataRequired, Length, Optional

from ..services.ingestion import ALLOWED_EXTENSIONS, IngestionError, merge_uploaded_text

_UPLOAD_MESSAGE = "Upload plain text or Markdown files."


def _lore_validators(label: str) -> list:
    message = f"{label} must be at least 50 characters."
    return [DataRequired(message=message), Length(min=50, message=message)]


def _upload_field(label: str) -> MultipleFileField:
    return MultipleFileField(label, validators=[Optional(), FileAllowed(ALLOWED_EXTENSIONS, _UPLOAD_MESSAGE)])


class _LoreUploadForm(FlaskForm):
    """Merges uploaded files into their text areas before validating."""

    # text field name -> upload field name
    UPLOAD_TARGETS: dict = {}

    def validate(self, extra_validators=None) -> bool:
        ingestion_errors = []
        for text_name, upload_name in self.UPLOAD_TARGETS.items():
            text_field = self[text_name]
            upload_field = self[upload_name]
            try:
                text_field.data = merge_uploaded_text(text_field.data, upload_field.data or [])
            except IngestionError as exc:
                ingestion_errors.append((upload_field, str(exc)))

        valid = super().validate(extra_validators=extra_validators)
        for field, message in ingestion_errors:
            field.errors = list(field.errors) + [message]
        return valid and not ingestion_errors


class ChapterRequestForm(_LoreUploadForm):
    series_outline = TextAreaField("Series Outline", validators=_lore_validators("Series outline"))
    series_outline_files = _upload_field("Series outline files")
    worldbuilding_information = TextAreaField(
        "Worldbuilding & Lore",
        validators=_lore_validators("Worldbuilding information"),
    )
    worldbuilding_information_files = _upload_field("Worldbuilding files")
    book_outline = TextAreaField("Book Outline", validators=_lore_validators("Book outline"))
    book_outline_files = _upload_field("Book outline files")
    chapter_outline = TextAreaField("Chapter Outline", validators=_lore_validators("Chapter outline"))
    chapter_outline_files = _upload_field("Chapter outline files")
    chapter_length = StringField(
        "Target chapter length",
        validators=[Optional(), Length(max=100)],
        description='For example "3000 words" or "10 pages".',
    )
    writing_style = StringField(
        "Writing style",
        validators=[Optional(), Length(max=500)],
        description='Authors or styles to emulate, e.g. "J.R.R. Tolkien, Brandon Sanderson".',
    )
    submit = SubmitField("Forge Chapter")

    UPLOAD_TARGETS = {
        "series_outline": "series_outline_files",
        "worldbuilding_information": "worldbuilding_information_files",
        "book_outline": "book_outline_files",
        "chapter_outline": "chapter_outline_files",
    }

    # payload name -> form field name
    PAYLOAD_FIELDS = {
        "seriesOutline": "series_outline",
        "worldbuildingInformation": "worldbuilding_information",
        "bookOutline": "book_outline",
        "chapterOutline": "chapter_outline",
        "chapterLength": "chapter_length",
        "writingStyle": "writing_style",
    }

    def to_payload(self) -> dict:
        payload = {}
        for name, field_name in self.PAYLOAD_FIELDS.items():
            value = (self[field_name].data or "").strip()
            if value:
                payload[name] = value
        return payload


class WorldSummaryForm(_LoreUploadForm):
    world_context = TextAreaField(
        "World context",
        validators=[DataRequired(message="Provide the world context to summarise.")],
    )
    world_context_files = _upload_field("World context files")
    submit = SubmitField("Summarise World")

    UPLOAD_TARGETS = {"world_context": "world_context_files"}
    PAYLOAD_FIELDS = {"worldContext": "world_context"}

    def to_payload(self) -> dict:
        return {"worldContext": (self.world_context.data or "").strip()}


class DraftReviewForm(FlaskForm):
    approve = SubmitField("Approve & Save")
    request_changes = SubmitField("Request Changes")
