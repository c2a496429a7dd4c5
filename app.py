"""
Sheet Mapper — HTTP API.

JSON endpoints around ``IngestionPipeline``:

* ``POST /api/classify``  one file → classification only
* ``POST /api/ingest``    one or more files → classify, normalise, store
* ``POST /api/review``    reviewer-corrected mappings for a pending file
* ``GET  /api/health``
"""

from __future__ import annotations

import logging
import os
import uuid
from collections import OrderedDict
from typing import Any, Dict, Optional

from flask import Flask, request
from werkzeug.utils import secure_filename

from sheet_mapper import __version__
from sheet_mapper.config import AIAssistConfig, PipelineConfig
from sheet_mapper.errors import MappingError, ParseError, StorageInsertFailure
from sheet_mapper.logging_setup import get_logger
from sheet_mapper.pipeline import STATUS_NEEDS_REVIEW, IngestionPipeline
from sheet_mapper.schema import ColumnMapping, DatasetKind, RawTable
from sheet_mapper.storage import StorageMode
from sheet_mapper.table_reader import DELIMITED_EXTENSIONS, WORKBOOK_EXTENSIONS

logger = get_logger("app")

# Oldest review tokens are evicted past this many pending files.
MAX_PENDING_REVIEWS = 256

ALLOWED_EXTENSIONS = {ext.lstrip(".") for ext in DELIMITED_EXTENSIONS | WORKBOOK_EXTENSIONS}


def allowed_file(filename: str) -> bool:
    return "." in filename and filename.rsplit(".", 1)[1].lower() in ALLOWED_EXTENSIONS


def error_response(message: str, status: int, **extra: Any):
    body: Dict[str, Any] = {"success": False, "error": message}
    body.update(extra)
    return body, status


def create_app(
    pipeline: Optional[IngestionPipeline] = None,
    max_pending: int = MAX_PENDING_REVIEWS,
) -> Flask:
    """Build the Flask app around *pipeline* (a default one when omitted).

    At most *max_pending* files wait for review at once; a new one evicts
    the oldest token.
    """
    app = Flask(__name__)

    if pipeline is None:
        pipeline = IngestionPipeline(
            PipelineConfig(ai=AIAssistConfig.from_env(), log_level=logging.INFO)
        )

    # Pipeline reader enforces its own limit; this only stops runaway bodies.
    app.config["MAX_CONTENT_LENGTH"] = 64 * 1024 * 1024

    # review token → RawTable awaiting a reviewer's mappings
    pending: OrderedDict[str, RawTable] = OrderedDict()

    def uploaded_file():
        if "file" not in request.files:
            return None, error_response("No file uploaded", 400)
        file = request.files["file"]
        if not file.filename:
            return None, error_response("No file selected", 400)
        if not allowed_file(file.filename):
            return None, error_response(
                f"Invalid file type. Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}", 400
            )
        return file, None

    # -------------------------------------------------------
    # Routes
    # -------------------------------------------------------

    @app.route("/api/health", methods=["GET"])
    def api_health():
        return {
            "status": "online",
            "version": __version__,
            "endpoints": ["/api/classify", "/api/ingest", "/api/review"],
        }, 200

    @app.route("/api/classify", methods=["POST"])
    def api_classify():
        file, error = uploaded_file()
        if error:
            return error
        filename = secure_filename(file.filename)
        try:
            table = pipeline.read(file.read(), filename)
        except ParseError as exc:
            return error_response(str(exc), 400)

        result = pipeline.classify(table, request.form.get("business_context") or None)
        return {
            "success": True,
            "fileName": filename,
            "headers": list(table.headers),
            "classification": result.to_dict(),
        }, 200

    @app.route("/api/ingest", methods=["POST"])
    def api_ingest():
        user_id = request.form.get("user_id")
        if not user_id:
            return error_response("user_id is required", 400)
        files = request.files.getlist("file")
        if not files:
            return error_response("No file uploaded", 400)
        context = request.form.get("business_context") or None
        mode = StorageMode.from_label(request.form.get("mode"))

        if len(files) > 1:
            # Unsupported types still get an error outcome from the reader.
            batch = [(secure_filename(f.filename), f.read()) for f in files if f.filename]
            if not batch:
                return error_response("No file selected", 400)
            outcomes = pipeline.ingest_many(batch, user_id, context, mode)
            body = []
            for outcome in outcomes:
                entry = outcome.to_dict()
                if outcome.status == STATUS_NEEDS_REVIEW and outcome.table is not None:
                    entry["reviewToken"] = remember(outcome.table)
                body.append(entry)
            return {"success": True, "files": body}, 200

        file, error = uploaded_file()
        if error:
            return error
        filename = secure_filename(file.filename)
        try:
            outcome = pipeline.ingest(file.read(), filename, user_id, context, mode)
        except ParseError as exc:
            return error_response(str(exc), 400)
        except StorageInsertFailure as exc:
            logger.exception("Storage failure for %r", filename)
            return error_response(str(exc), 502)

        body = {"success": True, **outcome.to_dict()}
        if outcome.status == STATUS_NEEDS_REVIEW:
            body["reviewToken"] = remember(outcome.table)
            return body, 202
        return body, 200

    @app.route("/api/review", methods=["POST"])
    def api_review():
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            return error_response("JSON body required", 400)
        user_id = payload.get("userId")
        token = payload.get("reviewToken")
        raw_mappings = payload.get("mappings")
        if not user_id or not token or not isinstance(raw_mappings, list):
            return error_response("userId, reviewToken and mappings are required", 400)

        table = pending.get(token)
        if table is None:
            return error_response("Unknown or expired review token", 404)

        kind = DatasetKind.from_label(payload.get("datasetKind"))
        mappings = [ColumnMapping.from_dict(m) for m in raw_mappings if isinstance(m, dict)]
        mode = StorageMode.from_label(payload.get("mode"))
        try:
            outcome = pipeline.resubmit(table, kind, mappings, user_id, mode)
        except MappingError as exc:
            return error_response(str(exc), 422, problems=exc.problems)
        except StorageInsertFailure as exc:
            logger.exception("Storage failure for reviewed %r", table.file_name)
            return error_response(str(exc), 502)

        pending.pop(token, None)
        return {"success": True, **outcome.to_dict()}, 200

    def remember(table: RawTable) -> str:
        token = uuid.uuid4().hex
        pending[token] = table
        while len(pending) > max_pending:
            _, stale = pending.popitem(last=False)
            logger.info("Review token for %r expired", stale.file_name)
        return token

    return app


app = create_app()


if __name__ == "__main__":
    port = int(os.environ.get("PORT", "5000"))
    app.run(host="0.0.0.0", port=port, debug=False)
