"""
Application Factory for the red packet service

Implements the Flask application factory pattern with:
- Service wiring (wallet, accounts, envelopes, excerpts) in app.extensions
- Blueprint registration under /api
- Security configuration (headers, rate limiting, proxy handling)
- Database and lock backend initialization
- JSON error handling
"""

import logging
import random
from typing import Optional

import click
from flask import Flask, jsonify
from sqlalchemy.exc import SQLAlchemyError

from redpacket.accounts import AccountService
from redpacket.audit_logger import get_audit_logger, init_audit_logger
from redpacket.cipher import cipher_to_timeline
from redpacket.config import AppConfig, get_config, validate_config
from redpacket.credentials import get_verifier
from redpacket.database import init_all, remove_session
from redpacket.envelopes import EnvelopeService
from redpacket.errors import RedPacketError
from redpacket.excerpts import ExcerptProvider
from redpacket.playback import render_timeline, write_wav
from redpacket.security import init_security
from redpacket.wallet import LocalWalletService

logger = logging.getLogger(__name__)


def create_app(config_override: Optional[AppConfig] = None) -> Flask:
    """
    Create and configure the Flask application using the factory pattern.

    Args:
        config_override: Optional configuration override for testing

    Returns:
        Configured Flask application instance
    """
    app = Flask(__name__)

    # Load configuration
    cfg = config_override or get_config()
    validate_config(cfg)
    app.config["APP_CONFIG"] = cfg
    app.config["JSON_SORT_KEYS"] = False
    app.secret_key = cfg.get("FLASK_SECRET_KEY") or cfg["JWT_SECRET"]

    # Initialize security middleware (Talisman, rate limiting, logging)
    init_security(app, cfg)

    # Initialize database and lock backend
    try:
        init_all(cfg)
        init_audit_logger()
        logger.info("Database, locks, and audit logging initialized")
    except Exception as e:
        logger.error(f"Infrastructure initialization failed: {e}")
        raise

    register_services(app)
    register_blueprints(app)
    register_error_handlers(app)
    register_request_handlers(app)
    register_commands(app)

    logger.info("Application factory completed successfully")
    return app


def register_services(app: Flask) -> None:
    """Build the service graph once per app."""
    cfg = app.config["APP_CONFIG"]

    wallet = LocalWalletService()
    excerpts = ExcerptProvider()
    accounts = AccountService(
        wallet,
        get_verifier(cfg["CREDENTIAL_SCHEME"]),
        starting_balance=cfg["STARTING_BALANCE"],
        transaction_limit=cfg["TRANSACTION_LIST_LIMIT"],
    )
    envelopes = EnvelopeService(
        wallet,
        excerpts,
        rng=random.SystemRandom(),
        ttl_hours=cfg["ENVELOPE_TTL_HOURS"],
        passphrase_length=cfg["PASSPHRASE_LENGTH"],
        max_share_count=cfg["MAX_SHARE_COUNT"],
        list_limit=cfg["ENVELOPE_LIST_LIMIT"],
    )

    app.extensions["redpacket.wallet"] = wallet
    app.extensions["redpacket.excerpts"] = excerpts
    app.extensions["redpacket.accounts"] = accounts
    app.extensions["redpacket.envelopes"] = envelopes


def register_blueprints(app: Flask) -> None:
    """Register all application blueprints."""

    from redpacket.blueprints.users import users_bp
    app.register_blueprint(users_bp, url_prefix="/api/users")

    from redpacket.blueprints.envelopes import envelopes_bp
    app.register_blueprint(envelopes_bp, url_prefix="/api/envelopes")

    # Health, metrics and reference data
    from redpacket.blueprints.admin import admin_bp
    app.register_blueprint(admin_bp)

    logger.info("All blueprints registered")


def register_error_handlers(app: Flask) -> None:
    """Register global error handlers."""

    @app.errorhandler(RedPacketError)
    def domain_error(e):
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(SQLAlchemyError)
    def persistence_error(e):
        logger.error(f"Database error: {e}", exc_info=True)
        get_audit_logger().log_error("database", str(e))
        return jsonify({"error": "internal_error", "message": "An unexpected error occurred"}), 500

    @app.errorhandler(400)
    def bad_request(e):
        return jsonify({"error": "bad_request", "message": "Malformed request"}), 400

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "not_found", "message": "Resource not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "method_not_allowed", "message": "Method not allowed"}), 405

    @app.errorhandler(429)
    def rate_limit_exceeded(e):
        return jsonify({"error": "rate_limit_exceeded", "message": str(e.description)}), 429

    @app.errorhandler(500)
    def internal_error(e):
        logger.error(f"Internal server error: {e}", exc_info=True)
        return jsonify({"error": "internal_error", "message": "An unexpected error occurred"}), 500


def register_request_handlers(app: Flask) -> None:
    """Register before/after request handlers."""

    @app.teardown_appcontext
    def cleanup(error=None):
        """Return the thread's session to the pool after each request."""
        if error:
            logger.error(f"Request cleanup with error: {error}")
        remove_session()


def register_commands(app: Flask) -> None:
    """Register maintenance commands on the ``flask`` CLI."""

    @app.cli.command("sweep-expired")
    def sweep_expired():
        """Expire overdue envelopes and refund their senders."""
        count = app.extensions["redpacket.envelopes"].expire_due()
        click.echo(f"Expired {count} envelope(s)")

    @app.cli.command("render-audio")
    @click.argument("envelope_id")
    @click.argument("path", type=click.Path(dir_okay=False, writable=True))
    def render_audio(envelope_id, path):
        """Write an envelope's Morse puzzle to a WAV file."""
        cfg = app.config["APP_CONFIG"]
        try:
            morse_code = app.extensions["redpacket.envelopes"].get_morse_code(envelope_id)
        except RedPacketError as e:
            raise click.ClickException(e.message) from e
        timeline = cipher_to_timeline(morse_code)
        write_wav(render_timeline(timeline, cfg["AUDIO_SAMPLE_RATE"], cfg["MORSE_FREQUENCY_HZ"]), path,
                  cfg["AUDIO_SAMPLE_RATE"])
        click.echo(f"Wrote {timeline.total_duration} ms of audio to {path}")
