"""
Flask-based API for complio.

Exposes the assessment engine over JSON: frameworks and option lists,
assessments and every lifecycle action, risk previews, linked records,
risk-scoring settings, and PDF/Excel exports.

Authentication happens upstream; the caller's identity arrives in the
``X-Actor-Id`` and ``X-Actor-Role`` headers.

To run the app locally, install the package and execute:

    python -m frontend.app

The server will start on http://0.0.0.0:8000 by default.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Optional

from flask import Flask, Response, current_app, jsonify, request

from complio.autosave import DebouncedSaver, Scheduler
from complio.config import Settings, configure_logging, get_settings
from complio.errors import ComplioError, NotFoundError, ValidationError
from complio.export_reports import (
    export_assessment_excel,
    export_assessment_pdf,
    export_register_excel,
)
from complio.framework import options_for
from complio.ledger import LinkedRecordLedger
from complio.lifecycle import AssessmentLifecycleController
from complio.linked_records import LinkedRecordService
from complio.processing_inventory import ProcessingInventory
from complio.records import Actor
from complio.risk_settings import RiskSettingsService
from complio.store import RecordStore, get_store
from complio.wizard_session import WizardState

logger = logging.getLogger(__name__)

XLSX_MIMETYPE = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'


@dataclass
class Services:
    store: RecordStore
    controller: AssessmentLifecycleController
    ledger: LinkedRecordLedger
    linked: LinkedRecordService
    risk_settings: RiskSettingsService
    saver: DebouncedSaver


def services() -> Services:
    return current_app.extensions["complio"]


def current_actor() -> Optional[Actor]:
    actor_id = request.headers.get("X-Actor-Id", "").strip()
    if not actor_id:
        return None
    return Actor(id=actor_id, role=request.headers.get("X-Actor-Role", "user").strip() or "user")


def json_body() -> Dict[str, Any]:
    body = request.get_json(silent=True)
    if body is None:
        return {}
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def links_from(body: Dict[str, Any]) -> Dict[str, Optional[str]]:
    return {name: body.get(name) for name in ("entity_id", "linked_system_id", "linked_pa_id")}


def attachment(data: bytes, mimetype: str, filename: str) -> Response:
    return Response(
        data,
        mimetype=mimetype,
        headers={'Content-Disposition': f'attachment; filename={filename}'},
    )


def create_app(
    store: Optional[RecordStore] = None,
    settings: Optional[Settings] = None,
    scheduler: Optional[Scheduler] = None,
) -> Flask:
    """Application factory.  Uses the global JSON store unless one is given."""
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    store = store or get_store(settings.data_dir, settings)

    app = Flask(__name__)
    app.secret_key = settings.secret_key

    controller = AssessmentLifecycleController(store, settings)
    ledger = LinkedRecordLedger(store)
    app.extensions["complio"] = Services(
        store=store,
        controller=controller,
        ledger=ledger,
        linked=LinkedRecordService(store, ledger),
        risk_settings=RiskSettingsService(store, settings),
        saver=DebouncedSaver(controller.save_responses, scheduler, settings.autosave_delay_seconds),
    )

    @app.errorhandler(ComplioError)
    def handle_complio_error(e: ComplioError):
        if e.http_status >= 500:
            logger.error("%s: %s", e.code, e.message)
        return jsonify(e.to_dict()), e.http_status

    register_routes(app)
    return app


def register_routes(app: Flask) -> None:

    # -- frameworks and option lists ---------------------------------------

    @app.route("/api/frameworks")
    def list_frameworks():
        return jsonify([
            {"id": f.id, "slug": f.slug, "name": f.name, "version": f.version}
            for f in services().store.list_frameworks()
        ])

    @app.route("/api/frameworks/<framework_id>")
    def get_framework(framework_id: str):
        return jsonify(services().store.get_framework(framework_id).to_dict())

    @app.route("/api/frameworks/<framework_id>/questions/<question_id>/options", methods=["GET", "POST"])
    def question_options(framework_id: str, question_id: str):
        store = services().store
        question = store.get_framework(framework_id).get_question(question_id)
        if question is None:
            raise NotFoundError("Question not found", {"question_id": question_id})
        if request.method == "POST":
            body = json_body()
            option = store.add_option(question_id, body.get("label", ""), bool(body.get("is_default", False)))
            return jsonify(option), 201
        entries = store.get_option_list(question_id)
        return jsonify({"options": options_for(question, entries), "entries": entries})

    @app.route("/api/options/<option_id>", methods=["PUT", "DELETE"])
    def edit_option(option_id: str):
        store = services().store
        if request.method == "DELETE":
            store.delete_option(option_id)
            return "", 204
        return jsonify(store.update_option(option_id, json_body().get("label", "")))

    # -- assessments -------------------------------------------------------

    @app.route("/api/assessments", methods=["GET", "POST"])
    def assessments():
        controller = services().controller
        if request.method == "POST":
            body = json_body()
            record = controller.create(
                body.get("framework_id", ""),
                body.get("title", ""),
                links_from(body),
                current_actor(),
            )
            return jsonify(record.to_dict()), 201
        include_archived = request.args.get("include_archived", "").lower() in ("1", "true", "yes")
        return jsonify([r.to_dict() for r in controller.list_assessments(include_archived)])

    @app.route("/api/assessments/reorder", methods=["POST"])
    def reorder_assessments():
        order = json_body().get("order")
        if not isinstance(order, list):
            raise ValidationError("order must be a list of {id, sort_order}")
        services().controller.reorder(order)
        return "", 204

    @app.route("/api/assessments/<assessment_id>", methods=["GET", "PUT"])
    def assessment(assessment_id: str):
        controller = services().controller
        if request.method == "PUT":
            body = json_body()
            record = controller.update_details(assessment_id, body.get("title", ""), links_from(body), current_actor())
        else:
            record = controller.get(assessment_id)
        return jsonify(record.to_dict())

    @app.route("/api/assessments/<assessment_id>/wizard")
    def wizard(assessment_id: str):
        svc = services()
        record = svc.controller.get(assessment_id)
        state = WizardState.from_record(record, svc.controller.framework_for(record))
        return jsonify(state.to_dict())

    @app.route("/api/assessments/<assessment_id>/responses", methods=["PUT"])
    def save_responses(assessment_id: str):
        svc = services()
        body = json_body()
        responses = body.get("responses")
        if not isinstance(responses, dict):
            raise ValidationError("responses must be an object")
        if body.get("autosave"):
            svc.saver.schedule(assessment_id, responses)
            return jsonify({"scheduled": True}), 202
        # An explicit save supersedes any debounced snapshot
        svc.saver.discard(assessment_id)
        return jsonify(svc.controller.save_responses(assessment_id, responses).to_dict())

    @app.route("/api/assessments/<assessment_id>/risk-preview", methods=["POST"])
    def risk_preview(assessment_id: str):
        responses = json_body().get("responses") or {}
        return jsonify(services().controller.preview_risk(assessment_id, responses).to_dict())

    @app.route("/api/assessments/<assessment_id>/complete", methods=["POST"])
    def complete(assessment_id: str):
        svc = services()
        responses = json_body().get("responses")
        if responses is None:
            svc.saver.flush(assessment_id)
        else:
            svc.saver.discard(assessment_id)
        result = svc.controller.complete(assessment_id, responses, current_actor())
        return jsonify(result.to_dict())

    @app.route("/api/assessments/<assessment_id>/validate", methods=["POST"])
    def validate(assessment_id: str):
        return jsonify(services().controller.validate(assessment_id, current_actor()).to_dict())

    @app.route("/api/assessments/<assessment_id>/reopen", methods=["POST"])
    def reopen(assessment_id: str):
        return jsonify(services().controller.reopen(assessment_id, current_actor()).to_dict())

    @app.route("/api/assessments/<assessment_id>/redo", methods=["POST"])
    def redo(assessment_id: str):
        return jsonify(services().controller.redo(assessment_id, current_actor()).to_dict()), 201

    @app.route("/api/assessments/<assessment_id>/copy", methods=["POST"])
    def copy(assessment_id: str):
        return jsonify(services().controller.copy(assessment_id, current_actor()).to_dict()), 201

    @app.route("/api/assessments/<assessment_id>/archive", methods=["POST"])
    def archive(assessment_id: str):
        svc = services()
        svc.saver.discard(assessment_id)
        return jsonify(svc.controller.archive(assessment_id, current_actor()).to_dict())

    # -- linked records ----------------------------------------------------

    @app.route("/api/assessments/<assessment_id>/action-items", methods=["GET", "POST"])
    def action_items(assessment_id: str):
        linked = services().linked
        if request.method == "POST":
            body = json_body()
            item = linked.create_action_item(
                assessment_id,
                body.get("title", ""),
                body.get("description", ""),
                body.get("priority", "medium"),
                body.get("due_date"),
                current_actor(),
            )
            return jsonify(item.to_dict()), 201
        services().store.get_assessment(assessment_id)
        return jsonify([i.to_dict() for i in linked.list_action_items(assessment_id)])

    @app.route("/api/action-items/<action_id>", methods=["PATCH"])
    def update_action_item(action_id: str):
        status = json_body().get("status", "")
        return jsonify(services().linked.update_action_status(action_id, status, current_actor()).to_dict())

    @app.route("/api/assessments/<assessment_id>/system", methods=["POST"])
    def create_system(assessment_id: str):
        system = services().linked.create_system_record(assessment_id, json_body(), current_actor())
        return jsonify(system.to_dict()), 201

    @app.route("/api/assessments/<assessment_id>/processing-activity", methods=["POST"])
    def create_processing_activity(assessment_id: str):
        activity = services().linked.create_processing_activity(assessment_id, json_body(), current_actor())
        return jsonify(activity.to_dict()), 201

    @app.route("/api/assessments/<assessment_id>/linked-records")
    def linked_records(assessment_id: str):
        ledger = services().ledger
        record_type = request.args.get("type")
        entries = ledger.list(assessment_id, record_type)
        latest = ledger.latest(assessment_id)
        return jsonify({
            "entries": [e.to_dict() for e in entries],
            "latest": latest.to_dict() if latest else None,
        })

    @app.route("/api/processing-activities")
    def processing_activities():
        return jsonify([a.to_dict() for a in services().store.list_processing_activities()])

    @app.route("/api/processing-activities/export.xlsx")
    def processing_inventory_export():
        """Export processing inventory as Excel"""
        inventory = ProcessingInventory(services().store.list_processing_activities())
        if not inventory.activities:
            raise ValidationError("No processing activities to export")
        filename = f"processing_inventory_{date.today().isoformat()}.xlsx"
        return attachment(inventory.to_excel(), XLSX_MIMETYPE, filename)

    # -- risk settings -----------------------------------------------------

    @app.route("/api/settings/risk")
    def risk_config():
        return jsonify(services().risk_settings.get_config())

    @app.route("/api/settings/risk/factors/<factor_id>", methods=["PUT"])
    def update_risk_factor(factor_id: str):
        body = json_body()
        factor = services().risk_settings.update_factor(
            current_actor(),
            factor_id,
            points=body.get("points"),
            severity=body.get("severity"),
            is_active=body.get("is_active"),
            reason=body.get("reason"),
        )
        return jsonify(factor.to_dict())

    @app.route("/api/settings/risk/thresholds", methods=["PUT"])
    def update_risk_thresholds():
        body = json_body()
        thresholds = services().risk_settings.update_thresholds(
            current_actor(), body.get("high_threshold"), body.get("medium_threshold")
        )
        return jsonify(thresholds.to_dict())

    # -- exports -----------------------------------------------------------

    def _report_parts(assessment_id: str):
        svc = services()
        record = svc.controller.get(assessment_id)
        framework = svc.controller.framework_for(record)
        risk = svc.controller.recorded_risk(record)
        return record, framework, risk, svc.ledger.list(assessment_id)

    @app.route("/api/assessments/<assessment_id>/export.pdf")
    def export_pdf(assessment_id: str):
        """Export assessment report as PDF."""
        pdf_data = export_assessment_pdf(*_report_parts(assessment_id))
        filename = f"assessment_report_{date.today().isoformat()}.pdf"
        return attachment(pdf_data, 'application/pdf', filename)

    @app.route("/api/assessments/<assessment_id>/export.xlsx")
    def export_excel(assessment_id: str):
        """Export assessment report as Excel."""
        excel_data = export_assessment_excel(*_report_parts(assessment_id))
        filename = f"assessment_report_{date.today().isoformat()}.xlsx"
        return attachment(excel_data, XLSX_MIMETYPE, filename)

    @app.route("/api/assessments/export.xlsx")
    def export_register():
        include_archived = request.args.get("include_archived", "").lower() in ("1", "true", "yes")
        records = services().controller.list_assessments(include_archived)
        filename = f"assessments_{date.today().isoformat()}.xlsx"
        return attachment(export_register_excel(records), XLSX_MIMETYPE, filename)


if __name__ == "__main__":
    # Run on port 8000, bind to all interfaces
    create_app().run(host="0.0.0.0", port=8000, debug=True)
