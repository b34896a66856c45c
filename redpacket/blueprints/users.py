"""
Users Blueprint - Login, Wallet and Ledger History

First login with an unknown nickname creates the account with the starting
balance; later logins must present the same password.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from redpacket.audit_logger import get_audit_logger
from redpacket.errors import AuthenticationError
from redpacket.money import as_number, parse_amount
from redpacket.security import limiter
from redpacket.tokens import issue_session_token, path_field, token_required

logger = logging.getLogger(__name__)
audit_logger = get_audit_logger()

users_bp = Blueprint("users", __name__)

LOGIN_RATE_LIMIT = "20 per minute"


def _accounts():
    return current_app.extensions["redpacket.accounts"]


def _wallet():
    return current_app.extensions["redpacket.wallet"]


@users_bp.route("", methods=["POST"])
@limiter.limit(LOGIN_RATE_LIMIT)
def login():
    """
    Log in or register.

    Expected JSON body:
        - nickname: Display name, unique per account
        - password: Account password

    Returns:
        JSON with id, nickname, balance and a session token
    """
    data = request.get_json(silent=True) or {}
    nickname = data.get("nickname")

    try:
        user, created = _accounts().login(nickname, data.get("password"))
    except AuthenticationError:
        audit_logger.log_login_attempt(str(nickname), False, ip_address=request.remote_addr)
        raise

    audit_logger.log_login_attempt(user["nickname"], True, created=created, ip_address=request.remote_addr)

    cfg = current_app.config["APP_CONFIG"]
    user["token"] = issue_session_token(user["id"], cfg)
    user["created"] = created
    return jsonify(user)


@users_bp.route("/<user_id>/wallet", methods=["GET"])
@token_required(path_field("user_id"))
def wallet(user_id):
    balance = _wallet().get_balance(user_id)
    return jsonify({"userId": user_id, "balance": as_number(balance)})


@users_bp.route("/<user_id>/recharge", methods=["POST"])
@token_required(path_field("user_id"))
def recharge(user_id):
    """Top up the wallet. Body: {amount > 0}."""
    data = request.get_json(silent=True) or {}
    amount = parse_amount(data.get("amount"))

    wallet_service = _wallet()
    transaction = wallet_service.recharge(user_id, amount)
    balance = wallet_service.get_balance(user_id)

    logger.info(f"Recharged {amount} for user {user_id}")
    return jsonify({"success": True, "transaction": transaction, "balance": as_number(balance)})


@users_bp.route("/<user_id>/transactions", methods=["GET"])
@token_required(path_field("user_id"))
def transactions(user_id):
    return jsonify(_accounts().list_transactions(user_id))
