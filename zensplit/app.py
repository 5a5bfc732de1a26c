from __future__ import annotations

import logging
from dataclasses import asdict, is_dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, Mapping, Optional

from flask import Flask, current_app, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import BadRequest

from .auth import OtpStore
from .config import config
from .engine import (
    InvalidInput,
    calculate_balances,
    create_equal_split,
    create_percentage_split,
    validate_expense_before_add,
)
from .payments import PERMISSION_ERRORS, PaymentError, declare_payment, transition_payment

logger = logging.getLogger(__name__)

OtpSender = Callable[[str, str], None]


def create_app(config_object: Any = None, otp_sender: Optional[OtpSender] = None) -> Flask:
    """
    Build the api app. ``otp_sender(email, code)`` delivers login codes; without
    one the send route answers 503 and no code is issued.
    """
    cfg = config_object or config
    logging.basicConfig(level=cfg.LOG_LEVEL)

    app = Flask(__name__)
    app.config["DEBUG"] = cfg.DEBUG

    CORS(app, resources={r"/api/*": {"origins": cfg.CORS_ORIGINS}})

    app.extensions["otp_store"] = OtpStore(
        ttl_seconds=cfg.OTP_TTL_SECONDS,
        code_length=cfg.OTP_LENGTH,
    )
    app.extensions["otp_sender"] = otp_sender

    register_routes(app)
    return app


def register_routes(app: Flask) -> None:
    @app.errorhandler(BadRequest)
    def bad_request(exc: BadRequest):
        return jsonify({"error": "invalid_json"}), 400

    @app.get("/api/health")
    def health_check():
        return jsonify({"status": "healthy"})

    @app.post("/api/balances")
    def balances():
        payload = _json_payload()
        result = calculate_balances(
            payload.get("expenses"),
            payload.get("current_user_email"),
            payload.get("group_members") or [],
            payload.get("verified_payments") or [],
        )
        return jsonify(_jsonable(result))

    @app.post("/api/expenses/validate")
    def validate_expense():
        payload = _json_payload()
        return jsonify(_jsonable(validate_expense_before_add(payload)))

    @app.post("/api/splits/equal")
    def equal_split():
        payload = _json_payload()
        try:
            splits = create_equal_split(payload.get("participants"), payload.get("amount"))
        except InvalidInput as exc:
            return jsonify({"error": str(exc)}), 400
        return jsonify({"splits": _jsonable(splits)})

    @app.post("/api/splits/percentage")
    def percentage_split():
        payload = _json_payload()
        try:
            splits = create_percentage_split(payload.get("percentages"), payload.get("amount"))
        except InvalidInput as exc:
            return jsonify({"error": str(exc)}), 400
        return jsonify({"splits": _jsonable(splits)})

    @app.post("/api/payments")
    def declare():
        payload = _json_payload()
        try:
            payment = declare_payment(payload)
        except PaymentError as exc:
            return jsonify({"error": str(exc)}), 400
        return jsonify(_jsonable(payment)), 201

    @app.post("/api/payments/transition")
    def transition():
        payload = _json_payload()
        payment = payload.get("payment")
        if not isinstance(payment, Mapping):
            return jsonify({"error": "missing_payment"}), 400

        try:
            updated = transition_payment(payment, payload.get("action"), payload.get("user_email"))
        except PaymentError as exc:
            status = 403 if str(exc) in PERMISSION_ERRORS else 400
            return jsonify({"error": str(exc)}), status
        return jsonify(_jsonable(updated))

    @app.post("/api/otp/send")
    def send_otp():
        payload = _json_payload()
        email = payload.get("email")
        if not isinstance(email, str) or not email.strip():
            return jsonify({"error": "missing_fields"}), 400

        sender = current_app.extensions["otp_sender"]
        if sender is None:
            return jsonify({"error": "otp_delivery_unavailable"}), 503

        store: OtpStore = current_app.extensions["otp_store"]
        code = store.issue(email)
        try:
            sender(email.strip().lower(), code)
        except Exception:
            logger.exception("Failed to deliver login code")
            store.revoke(email)
            return jsonify({"error": "otp_delivery_failed"}), 502
        return jsonify({"status": "sent"})

    @app.post("/api/otp/verify")
    def verify_otp():
        payload = _json_payload()
        email = payload.get("email")
        code = payload.get("otp")
        if not isinstance(email, str) or not email.strip() or not code:
            return jsonify({"error": "missing_fields"}), 400

        store: OtpStore = current_app.extensions["otp_store"]
        if not store.verify(email, code):
            return jsonify({"error": "invalid_or_expired_otp"}), 401
        return jsonify({"status": "verified"})


def _json_payload() -> Dict[str, Any]:
    payload = request.get_json(force=True)
    if not isinstance(payload, dict):
        raise BadRequest("JSON object expected")
    return payload


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if is_dataclass(value) and not isinstance(value, type):
        return _jsonable(asdict(value))
    if isinstance(value, Mapping):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


app = create_app()


if __name__ == "__main__":
    app.run(debug=config.DEBUG, port=config.PORT)
