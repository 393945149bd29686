import json
import logging
import time
from datetime import datetime, timezone

from flask import Flask, jsonify, request

from . import __version__, config
from .hosts import GoogleSpreadsheet, MemorySpreadsheet
from .script import SheetlogScript, error_envelope

logger = logging.getLogger(__name__)


def default_spreadsheet():
    """Host selected by ``SHEETLOG_BACKEND``.

    The memory host is created once and shared; the Google host is a factory so
    each request refreshes its access token, as a fresh script execution would.
    """
    if config.BACKEND == "memory":
        logger.info(f"Using in-memory spreadsheet with sheets {config.MEMORY_SHEETS}.")
        return MemorySpreadsheet.from_names(config.MEMORY_SHEETS)
    if config.BACKEND != "google":
        raise ValueError(f"Unknown SHEETLOG_BACKEND '{config.BACKEND}'.")
    return GoogleSpreadsheet.connect


def _parse_post_body():
    """Request params from a JSON body, or from a form field ``payload`` holding JSON."""
    raw_body = request.get_data(as_text=True)
    if raw_body:
        try:
            return json.loads(raw_body)
        except ValueError:
            if not request.form.get("payload"):
                raise
    payload = request.form.get("payload")
    if payload:
        return json.loads(payload)
    raise ValueError("No valid payload found")


def create_app(spreadsheet=None, get_script=None, post_script=None):
    app = Flask(__name__)
    app.config["SHEETLOG_SPREADSHEET"] = spreadsheet if spreadsheet is not None else default_spreadsheet()
    # GET requests are checked against one user list, POST requests against another.
    app.config["SHEETLOG_GET_SCRIPT"] = get_script or SheetlogScript(users=config.load_users("SHEETLOG_GET_USERS"))
    app.config["SHEETLOG_POST_SCRIPT"] = post_script or SheetlogScript(users=config.load_users("SHEETLOG_POST_USERS"))

    @app.route('/', methods=['GET'])
    @app.route('/exec', methods=['GET'])
    def do_get():
        if request.args.get("test"):
            return jsonify({
                "status": "ok",
                "mode": "test",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "version": __version__,
            })
        params = request.args.to_dict()
        logger.info(f"ENDPOINT GET: Request received for method {params.get('method', 'GET')}.")
        script = app.config["SHEETLOG_GET_SCRIPT"]
        return jsonify(script.handle_request(app.config["SHEETLOG_SPREADSHEET"], params))

    @app.route('/', methods=['POST'])
    @app.route('/exec', methods=['POST'])
    def do_post():
        start_time_total = time.time()
        try:
            request_data = _parse_post_body()
        except ValueError as e:
            logger.warning(f"ENDPOINT POST: invalid payload: {str(e)}")
            return jsonify(error_envelope(400, "invalid_post_payload", {
                "message": str(e),
                "payload": request.get_data(as_text=True)[:500] or None,
                "parameter": request.form.get("payload"),
                "type": request.content_type,
            }))

        script = app.config["SHEETLOG_POST_SCRIPT"]
        spreadsheet = app.config["SHEETLOG_SPREADSHEET"]
        if isinstance(request_data, list):
            logger.info(f"ENDPOINT POST: batch of {len(request_data)} requests.")
            results = [script.handle_request(spreadsheet, params) if isinstance(params, dict)
                       else error_envelope(400, "invalid_post_payload", {"message": "Batch items must be objects"})
                       for params in request_data]
            logger.info(f"ENDPOINT POST: batch done (Total time: {time.time() - start_time_total:.2f}s).")
            return jsonify(results)
        if not isinstance(request_data, dict):
            return jsonify(error_envelope(400, "invalid_post_payload", {"message": "Payload must be a JSON object or array"}))
        return jsonify(script.handle_request(spreadsheet, request_data))

    return app


def main():
    config.configure_logging()
    app = create_app()
    logger.info(f"Starting Sheetlog endpoint on port {config.PORT} (backend: {config.BACKEND}).")
    # For production: gunicorn -c python:sheetlog.gunicorn_conf 'sheetlog.server:create_app()' (one worker, threads)
    app.run(host='0.0.0.0', port=config.PORT)


if __name__ == '__main__':
    main()
