import os
import sys
import json
import logging
from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import quote

from dotenv import load_dotenv
from flask import Flask, Response, request, jsonify
from flask_cors import CORS
import requests

# ----------------------
# Constants
# ----------------------
DEFAULT_PORT = 3000
DEFAULT_MODEL = "gemini-2.0-flash"
DEFAULT_API_BASE = "https://generativelanguage.googleapis.com/v1beta"

HEALTH_MESSAGE = "Gemini Backend is running!"
MISSING_KEY_ERROR = "Server configuration error: Gemini API Key missing."
UPSTREAM_FAILURE_ERROR = "Failed to communicate with AI."
UPSTREAM_STATUS_ERROR = "Gemini API error"

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

logger = logging.getLogger("gemini-relay")


# ----------------------
# Configuration
# ----------------------
@dataclass(frozen=True)
class RelayConfig:
    api_key: Optional[str] = None
    port: int = DEFAULT_PORT
    model: str = DEFAULT_MODEL
    api_base: str = DEFAULT_API_BASE
    timeout: Optional[float] = None
    cors_origins: Tuple[str, ...] = ("*",)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "RelayConfig":
        """Read the relay settings from the process environment.

        Raises ValueError when PORT or GEMINI_TIMEOUT are not numbers.
        """
        raw_port = os.getenv("PORT") or str(DEFAULT_PORT)
        try:
            port = int(raw_port)
        except ValueError:
            raise ValueError(f"PORT must be an integer, got {raw_port!r}") from None

        raw_timeout = os.getenv("GEMINI_TIMEOUT")
        timeout = None
        if raw_timeout:
            try:
                timeout = float(raw_timeout)
            except ValueError:
                raise ValueError(f"GEMINI_TIMEOUT must be a number of seconds, got {raw_timeout!r}") from None

        origins = tuple(
            origin.strip()
            for origin in os.getenv("FRONTEND_ORIGIN", "*").split(",")
            if origin.strip()
        )

        return cls(
            api_key=os.getenv("GEMINI_API_KEY") or None,
            port=port,
            model=os.getenv("GEMINI_MODEL") or DEFAULT_MODEL,
            api_base=(os.getenv("GEMINI_API_BASE") or DEFAULT_API_BASE).rstrip("/"),
            timeout=timeout,
            cors_origins=origins or ("*",),
            log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
        )

    @property
    def upstream_url(self) -> str:
        return (
            f"{self.api_base}/models/{self.model}:generateContent"
            f"?key={quote(self.api_key or '', safe='')}"
        )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(format=LOG_FORMAT)
    logging.getLogger().setLevel(level)


# ----------------------
# Helpers
# ----------------------
def error_details(exc: Exception) -> str:
    """Message for the `details` field; never empty."""
    return str(exc) or exc.__class__.__name__


def forward_to_gemini(config: RelayConfig, payload):
    """POST the caller's payload upstream and return (body, status).

    Raises requests.RequestException on transport failure and ValueError
    when the upstream body is not JSON.
    """
    resp = requests.post(
        config.upstream_url,
        json=payload,
        headers={"Content-Type": "application/json"},
        timeout=config.timeout,
    )
    return resp.json(), resp.status_code


# ----------------------
# App Setup
# ----------------------
def create_app(config: Optional[RelayConfig] = None) -> Flask:
    if config is None:
        load_dotenv()
        config = RelayConfig.from_env()
        configure_logging(config.log_level)

    app = Flask(__name__)
    CORS(app, origins=list(config.cors_origins))

    if not config.api_key:
        logger.warning("GEMINI_API_KEY is not set; /ask-gemini will answer with a configuration error")

    @app.before_request
    def log_request():
        logger.info("Incoming request: %s %s", request.method, request.full_path.rstrip("?"))

    # ----------------------
    # Endpoints
    # ----------------------
    @app.route("/", methods=["GET"])
    def health_check():
        return Response(HEALTH_MESSAGE, status=200, mimetype="text/plain")

    @app.route("/ask-gemini", methods=["POST"])
    def ask_gemini():
        logger.info("/ask-gemini route hit, calling Gemini")
        if not config.api_key:
            logger.error("GEMINI_API_KEY is not set in environment variables")
            return jsonify({"error": MISSING_KEY_ERROR}), 500

        raw = request.get_data(cache=True)
        try:
            payload = json.loads(raw) if raw.strip() else {}
        except ValueError as e:
            logger.warning("Rejected request body that is not JSON: %s", e)
            return jsonify({"error": "Invalid JSON body"}), 400

        logger.debug("Request body received for Gemini: %s", json.dumps(payload, indent=2))

        try:
            data, status = forward_to_gemini(config, payload)
        except (requests.RequestException, ValueError) as e:
            logger.error("Error in /ask-gemini endpoint: %s", error_details(e))
            return jsonify({"error": UPSTREAM_FAILURE_ERROR, "details": error_details(e)}), 500
        except Exception as e:
            logger.exception("Unexpected error in /ask-gemini endpoint: %s", error_details(e))
            return jsonify({"error": UPSTREAM_FAILURE_ERROR, "details": error_details(e)}), 500

        logger.info("Gemini API response received (status %s)", status)
        if not 200 <= status < 300:
            logger.error("Gemini API returned status %s: %s", status, data)
            return jsonify({"error": UPSTREAM_STATUS_ERROR, "details": data}), status

        return jsonify(data), status

    return app


def main() -> None:
    configure_logging()
    try:
        load_dotenv()
        config = RelayConfig.from_env()
        configure_logging(config.log_level)
        relay = create_app(config)
        logger.info("Starting Gemini relay on port %s (model %s)", config.port, config.model)
        relay.run(host="0.0.0.0", port=config.port)
    except Exception:
        logger.exception("Gemini relay stopped on an unrecoverable error")
        sys.exit(1)


if __name__ == "__main__":
    main()
