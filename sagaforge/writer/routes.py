from __future__ import annotations

from flask import current_app, flash, jsonify, redirect, render_template, request, url_for
from flask_login import login_required

from ..services.chapter_flows import generate_chapter_text, summarize_world_context
from ..services.contracts import ROOT_FIELD, ValidationError
from ..services.generation import GenerationFailure, GenerationTimeout
from . import bp
from .forms import ChapterRequestForm, DraftReviewForm, WorldSummaryForm

GENERATION_FAILED_MESSAGE = (
    "The AI failed to forge your chapter. Please check your outlines and try again."
)
SUMMARY_FAILED_MESSAGE = "The AI failed to summarise your world. Please adjust the context and try again."


def _apply_field_errors(form, exc: ValidationError) -> None:
    for name, message in exc.messages.items():
        field_name = form.PAYLOAD_FIELDS.get(name)
        if field_name:
            form[field_name].errors = list(form[field_name].errors) + [message]
        else:
            form.form_errors.append(message)


@bp.route("/", methods=["GET", "POST"])
@login_required
async def index():
    form = ChapterRequestForm()
    review_form = DraftReviewForm()
    chapter_text = None

    if form.validate_on_submit():
        try:
            result = await generate_chapter_text(form.to_payload())
        except ValidationError as exc:
            _apply_field_errors(form, exc)
        except GenerationFailure as exc:
            current_app.logger.warning("Chapter generation failed: %s (cause: %r)", exc, exc.cause)
            flash(f"Generation Failed. {GENERATION_FAILED_MESSAGE}", "danger")
        else:
            chapter_text = result.chapter_text
            flash("Chapter Generated! Your new chapter has been forged by the AI.", "success")

    return render_template(
        "writer/index.html",
        form=form,
        review_form=review_form,
        chapter_text=chapter_text,
    )


@bp.route("/approve", methods=["POST"])
@login_required
def approve():
    form = DraftReviewForm()
    if form.validate_on_submit():
        # Approved chapters are not stored anywhere yet.
        flash("Chapter Approved! This chapter has been saved to your library (mocked).", "success")
    return redirect(url_for("writer.index"))


@bp.route("/request-changes", methods=["POST"])
@login_required
def request_changes():
    form = DraftReviewForm()
    if form.validate_on_submit():
        flash(
            "Requesting Changes. The generated text has been cleared. "
            "Modify your outlines and generate again.",
            "info",
        )
    return redirect(url_for("writer.index"))


@bp.route("/summary", methods=["GET", "POST"])
@login_required
async def summary():
    form = WorldSummaryForm()
    summary_text = None

    if form.validate_on_submit():
        try:
            result = await summarize_world_context(form.to_payload())
        except ValidationError as exc:
            _apply_field_errors(form, exc)
        except GenerationFailure as exc:
            current_app.logger.warning("World summary failed: %s (cause: %r)", exc, exc.cause)
            flash(f"Summary Failed. {SUMMARY_FAILED_MESSAGE}", "danger")
        else:
            summary_text = result.summary

    return render_template("writer/summary.html", form=form, summary_text=summary_text)


@bp.route("/api/chapters", methods=["POST"])
@login_required
async def api_generate_chapter():
    payload = request.get_json(silent=True)
    try:
        result = await generate_chapter_text(payload if payload is not None else {})
    except ValidationError as exc:
        return _validation_response(exc)
    except GenerationFailure as exc:
        return _failure_response(exc, GENERATION_FAILED_MESSAGE)
    return jsonify(result.to_payload())


@bp.route("/api/world-summary", methods=["POST"])
@login_required
async def api_summarize_world():
    payload = request.get_json(silent=True)
    try:
        result = await summarize_world_context(payload if payload is not None else {})
    except ValidationError as exc:
        return _validation_response(exc)
    except GenerationFailure as exc:
        return _failure_response(exc, SUMMARY_FAILED_MESSAGE)
    return jsonify(result.to_payload())


def _validation_response(exc: ValidationError):
    fields = {name: message for name, message in exc.messages.items() if name != ROOT_FIELD}
    error = exc.messages.get(ROOT_FIELD) or "Some fields need attention."
    return jsonify({"error": error, "fields": fields}), 400


def _failure_response(exc: GenerationFailure, message: str):
    current_app.logger.warning("Generation request failed: %s (cause: %r)", exc, exc.cause)
    status = 504 if isinstance(exc, GenerationTimeout) else 502
    return jsonify({"error": message}), status
