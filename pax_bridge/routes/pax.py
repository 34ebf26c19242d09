"""
PAX Bridge Routes
Flask endpoints the POS front end calls to run sales on a LAN PAX terminal
"""

import logging
import os
import time
from flask import Blueprint, request, jsonify, session

from .errors import (
    ConfigurationError,
    InvalidFieldError,
    LicenseError,
    PaxError,
    TerminalBusyError,
    TerminalTimeoutError,
    TransportError,
)
from .field_groups import SaleRequest
from .http_comm import LicenseValidator
from .message_protocol import SaleProcessor, TerminalLockRegistry
from .pax_config import PaxConfig
from .pax_core import PaxCore

pax_bp = Blueprint("pax", __name__)

logger = logging.getLogger(__name__)

DATA_DIR = os.environ.get("PAX_BRIDGE_DATA_DIR", os.path.dirname(__file__))

config = PaxConfig(DATA_DIR)
pax_core = PaxCore()
terminal_locks = TerminalLockRegistry()


def get_processor() -> SaleProcessor:
    """Processor bound to the current license settings"""
    validator = LicenseValidator(
        config.get_setting("license_key", ""),
        config.get_setting("license_url", ""),
    )
    return SaleProcessor(pax_core, terminal_locks, validator)


def error_status(error: PaxError) -> int:
    """HTTP status for a PAX error; timeout checked before its base class"""
    if isinstance(error, (ConfigurationError, InvalidFieldError)):
        return 400
    if isinstance(error, LicenseError):
        return 403
    if isinstance(error, TerminalBusyError):
        return 409
    if isinstance(error, TerminalTimeoutError):
        return 504
    if isinstance(error, TransportError):
        return 502
    return 500


def error_response(error: PaxError):
    body = {"error": str(error), "type": type(error).__name__}
    return jsonify(body), error_status(error)


def _terminal_overrides(data):
    """Request body first, then the operator's session"""
    return {
        "ip": data.get("ip") or session.get("pax_ip"),
        "port": data.get("port") or session.get("pax_port"),
        "timeout": data.get("timeout"),
    }


def _optional_text(value):
    """str() for present values; None passes through"""
    return None if value is None else str(value)


def _sale_from_json(data) -> SaleRequest:
    if "amount" not in data:
        raise InvalidFieldError("amount is required")
    fields = data.get("fields") or {}
    if not isinstance(fields, dict):
        raise InvalidFieldError("fields must be an object")
    return SaleRequest(
        amount=data["amount"],
        invoice_number=_optional_text(data.get("invoiceNumber")) or "",
        reference_number=_optional_text(data.get("referenceNumber")),
        fields=fields,
    )


@pax_bp.route("/settings", methods=["GET", "POST"])
def handle_settings():
    """Handle settings management"""
    if request.method == "GET":
        settings = config.get_settings()
        if settings.get("license_key"):
            settings["license_key"] = "****"
        return jsonify(settings)

    data = request.get_json(silent=True)
    if not data:
        return jsonify({"error": "No data"}), 400

    try:
        if config.update_settings(data):
            return jsonify({"status": "success"})
        return jsonify({"error": "Failed to update settings"}), 500
    except PaxError as e:
        logger.error(f"Settings error: {e}")
        return error_response(e)


@pax_bp.route("/pax/terminal", methods=["GET", "POST"])
def handle_terminal():
    """Per-operator terminal address, kept in the server-side session"""
    if request.method == "GET":
        return jsonify({"ip": session.get("pax_ip", ""), "port": session.get("pax_port", "")})

    data = request.get_json(silent=True) or {}
    try:
        terminal = config.get_terminal_config({"ip": data.get("ip"), "port": data.get("port")})
    except PaxError as e:
        logger.error(f"Terminal settings error: {e}")
        return error_response(e)

    session["pax_ip"] = terminal.ip
    session["pax_port"] = str(terminal.port)
    return jsonify({"status": "success", "ip": terminal.ip, "port": str(terminal.port)})


@pax_bp.route("/pax/build_request", methods=["POST"])
def build_request():
    """Build a sale frame without sending it"""
    data = request.get_json(silent=True) or {}
    try:
        sale = _sale_from_json(data)
        terminal = None
        overrides = _terminal_overrides(data)
        if overrides["ip"] or config.get_setting("terminal_ip"):
            terminal = config.get_terminal_config(overrides)
        return jsonify(get_processor().build_request(sale, terminal))
    except PaxError as e:
        logger.error(f"Build request error: {e}")
        return error_response(e)


@pax_bp.route("/pax/sale", methods=["POST"])
def process_sale():
    """Run a credit sale on the terminal"""
    data = request.get_json(silent=True) or {}
    try:
        sale = _sale_from_json(data)
        terminal = config.get_terminal_config(_terminal_overrides(data))
        response = get_processor().process_sale(sale, terminal)
        return jsonify(SaleProcessor.summarize(response))
    except PaxError as e:
        logger.error(f"Process sale error: {e}")
        return error_response(e)


@pax_bp.route("/pax/proxy", methods=["POST"])
def proxy():
    """Relay a prebuilt envelope to the terminal and hand back the raw reply"""
    data = request.get_json(silent=True) or {}
    payload = data.get("payload")
    if not payload:
        return jsonify({"success": False, "error": "payload is required"}), 400

    try:
        terminal = config.get_terminal_config(
            {"ip": data.get("ip"), "port": data.get("port"), "timeout": data.get("timeout")}
        )
        body = get_processor().relay_envelope(payload, terminal)
        return jsonify({"success": True, "response": body})
    except PaxError as e:
        logger.error(f"Proxy error: {e}")
        return (
            jsonify({"success": False, "error": str(e), "type": type(e).__name__}),
            error_status(e),
        )


@pax_bp.route("/health", methods=["GET"])
def health_check():
    """Health check endpoint"""
    return jsonify(
        {
            "status": "healthy",
            "protocol": {"command": pax_core.command, "version": pax_core.version},
            "terminal_configured": bool(config.get_setting("terminal_ip")),
            "timestamp": time.strftime("%Y-%m-%d %H:%M:%S"),
        }
    )
