"""Demo web server.

Serves a page that loads the sample movies and sends them to a Sheetlog
endpoint, proxying each submission through ``/api/sheet``.
"""
import json
import logging
import os

import requests
from flask import Flask, Response, jsonify, request

from .. import config

logger = logging.getLogger(__name__)

ASSETS_DIR = os.path.join(os.path.dirname(__file__), "assets")
SHEET_URL_PLACEHOLDER = "sheetUrl: '',"


def _read_asset(name):
    with open(os.path.join(ASSETS_DIR, name), encoding="utf-8") as f:
        return f.read()


def create_app(sheet_url=None, session=None):
    app = Flask(__name__)
    sheet_url = config.SHEET_URL if sheet_url is None else sheet_url
    http = session or requests.Session()
    html_template = _read_asset("index.html")

    @app.route('/', methods=['GET'])
    def index():
        # "<" is escaped so a URL cannot close the surrounding <script> element
        url_literal = json.dumps(sheet_url).replace("<", "\\u003c")
        html = html_template.replace(SHEET_URL_PLACEHOLDER, f"sheetUrl: {url_literal},")
        return Response(html, mimetype="text/html")

    @app.route('/movies.json', methods=['GET'])
    def movies():
        return jsonify(json.loads(_read_asset("movies.json")))

    @app.route('/api/sheet', methods=['POST'])
    def api_sheet():
        try:
            body = request.get_json(force=True, silent=True)
            if not isinstance(body, dict):
                raise ValueError("Request body must be a JSON object")
            target_url = body.get("sheetUrl") or sheet_url
            payload = body.get("payload") or {}
            if not target_url:
                raise ValueError("sheetUrl is required")
            if not isinstance(payload, dict):
                raise ValueError("payload must be a JSON object")
            if payload.get("sheet") is None:
                payload["sheet"] = config.DEFAULT_SHEET

            payload_str = json.dumps(payload)
            logger.info(f"Sending to sheet endpoint: {payload_str[:500]}")
            # The endpoint reads the request from a form-encoded 'payload' field.
            response = http.post(target_url, data={"payload": payload_str}, timeout=config.REQUEST_TIMEOUT_SECONDS)
            text = response.text
            logger.info(f"Response from sheet endpoint: {text[:500]}")
            try:
                data = json.loads(text)
            except ValueError:
                logger.error(f"Failed to parse response: {text[:500]}")
                raise ValueError(text)
            return jsonify(data)
        except (ValueError, requests.exceptions.RequestException) as e:
            logger.error(f"Error in /api/sheet: {str(e)}", exc_info=True)
            return jsonify({"error": str(e)}), 500

    return app


def main():
    config.configure_logging()
    app = create_app()
    logger.info(f"Starting Sheetlog demo on port {config.DEMO_PORT}; forwarding to '{config.SHEET_URL or 'unset'}'.")
    app.run(host='0.0.0.0', port=config.DEMO_PORT)


if __name__ == '__main__':
    main()
