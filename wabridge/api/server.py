from __future__ import annotations

import argparse
import importlib
import logging
import signal
import sys
from typing import Any, Protocol

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from wabridge.client.session import SessionFactory
from wabridge.core.errors import ValidationError
from wabridge.core.events import utc_now_iso
from wabridge.defaults.config import SERVICE_NAME, ServiceConfig, config_from_env
from wabridge.infra.logger import configure_logging
from wabridge.service import WhatsAppService

from .runtime import ServiceRuntime

logger = logging.getLogger(__name__)

EVENTS_EXPECTED_FORMAT = {
    "start_date": "ISO-8601 date-time, e.g. 2026-02-13T00:00:00.000Z",
    "end_date": "ISO-8601 date-time, e.g. 2026-02-13T23:59:59.999Z",
}


class ServiceRuntimeLike(Protocol):
    def state(self) -> dict[str, Any]: ...

    def reset_auth(self) -> None: ...

    def query_events(self, start_date: Any, end_date: Any) -> dict[str, Any]: ...

    def send_text(self, target: Any, message: Any) -> dict[str, Any]: ...

    def send_media(self, target: Any, base64: Any, filename: Any, mimetype: Any) -> dict[str, Any]: ...

    def send_poll(self, target: Any, poll_text: Any, poll_options: Any) -> dict[str, Any]: ...


def _json_body() -> dict[str, Any]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def load_session_factory(dotted_path: str | None) -> SessionFactory:
    """Import a ``package.module:callable`` session factory."""
    if not dotted_path:
        raise ValueError("WABRIDGE_SESSION_FACTORY is not set (expected 'package.module:callable').")
    module_name, sep, attr = dotted_path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Invalid session factory path: {dotted_path!r}")
    module = importlib.import_module(module_name)
    factory = getattr(module, attr)
    if not callable(factory):
        raise TypeError(f"Session factory {dotted_path!r} is not callable")
    return factory


def create_app(
    *,
    testing: bool = False,
    runtime: ServiceRuntimeLike | None = None,
    config: ServiceConfig | None = None,
) -> Flask:
    app = Flask(__name__)
    app.config["TESTING"] = testing
    service_config = config or config_from_env()
    app.config["MAX_CONTENT_LENGTH"] = service_config.max_content_length
    if runtime is None:
        factory = load_session_factory(service_config.session_factory)
        runtime = ServiceRuntime(lambda: WhatsAppService(service_config, factory))
    service_runtime = runtime
    app.config["SERVICE_RUNTIME"] = service_runtime

    @app.errorhandler(Exception)
    def handle_error(exc: Exception):
        if isinstance(exc, HTTPException):
            status = exc.code or 500
            message = exc.description
        else:
            status = getattr(exc, "status_code", None) or 500
            message = str(exc) or "Internal server error"
        log = logger.exception if status >= 500 else logger.warning
        log(
            "request failed",
            extra={"context": {"method": request.method, "path": request.path, "status": status, "error": str(exc)}},
        )
        return jsonify({"ok": False, "message": message}), status

    @app.get("/health")
    def health():
        state = service_runtime.state()
        return jsonify(
            {
                "ok": True,
                "service": SERVICE_NAME,
                "now": utc_now_iso(),
                "whatsapp": {
                    "connected": state.get("connected"),
                    "phase": state.get("phase"),
                    "last_disconnect_reason": state.get("last_disconnect_reason"),
                    "reconnect_attempts": state.get("reconnect_attempts"),
                    "has_qr": bool(state.get("qr")),
                    "me": state.get("me"),
                    "webhook_queue_size": state.get("webhook_queue_size"),
                },
            }
        )

    @app.get("/auth/qr")
    def auth_qr():
        state = service_runtime.state()
        if not state.get("qr"):
            return (
                jsonify(
                    {
                        "ok": False,
                        "message": "No QR code currently available. The session may already be authenticated.",
                        "connected": state.get("connected"),
                    }
                ),
                404,
            )
        return jsonify(
            {
                "ok": True,
                "connected": state.get("connected"),
                "qr": state.get("qr"),
                "qr_data_url": state.get("qr_image_data_url"),
                "updated_at": state.get("qr_updated_at"),
            }
        )

    @app.get("/events")
    def events():
        start_date = request.args.get("start_date")
        end_date = request.args.get("end_date")
        try:
            result = service_runtime.query_events(start_date, end_date)
        except ValidationError as exc:
            return jsonify({"ok": False, "message": str(exc), "expected": EVENTS_EXPECTED_FORMAT}), 400
        return jsonify({"ok": True, **result})

    @app.post("/auth/reset")
    def auth_reset():
        service_runtime.reset_auth()
        return jsonify({"ok": True, "message": "Authentication state cleared. Re-authentication required."})

    @app.post("/send/text")
    def send_text():
        data = _json_body()
        result = service_runtime.send_text(data.get("target"), data.get("message"))
        return jsonify({"ok": True, "result": result})

    @app.post("/send/media")
    def send_media():
        data = _json_body()
        result = service_runtime.send_media(
            data.get("target"),
            data.get("base64"),
            data.get("filename"),
            data.get("mimetype"),
        )
        return jsonify({"ok": True, "result": result})

    @app.post("/send/poll")
    def send_poll():
        data = _json_body()
        result = service_runtime.send_poll(data.get("target"), data.get("pollText"), data.get("pollOptions"))
        return jsonify({"ok": True, "result": result})

    return app


def _parse_args(config: ServiceConfig) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the wabridge REST service.")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", default=config.port, type=int)
    parser.add_argument("--debug", action="store_true")
    return parser.parse_args()


def _handle_sigterm(signum: int, _frame: Any) -> None:
    logger.info("signal %s received, shutting down", signal.Signals(signum).name)
    raise SystemExit(0)


def main() -> None:
    config = config_from_env()
    args = _parse_args(config)
    configure_logging(config.log_level)

    try:
        factory = load_session_factory(config.session_factory)
        runtime = ServiceRuntime(lambda: WhatsAppService(config, factory))
        runtime.start()
    except Exception:
        logger.exception("fatal startup error")
        sys.exit(1)

    signal.signal(signal.SIGTERM, _handle_sigterm)
    app = create_app(runtime=runtime, config=config)
    logger.info("HTTP server listening on port %s", args.port)
    try:
        app.run(host=args.host, port=args.port, debug=args.debug, use_reloader=False)
    finally:
        runtime.close()


if __name__ == "__main__":
    main()
