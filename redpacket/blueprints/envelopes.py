"""
Envelopes Blueprint - Create, Inspect, Claim and Listen

Creation is the only response that reveals the passphrase; every other view
carries the Morse puzzle and the excerpt it was drawn from.
"""

import logging

from flask import Blueprint, Response, current_app, jsonify, request

from redpacket.cipher import cipher_to_timeline
from redpacket.playback import timeline_to_wav_bytes
from redpacket.security import claim_rate_limit, limiter
from redpacket.tokens import body_field, token_required

logger = logging.getLogger(__name__)

envelopes_bp = Blueprint("envelopes", __name__)


def _envelopes():
    return current_app.extensions["redpacket.envelopes"]


@envelopes_bp.route("", methods=["POST"])
@token_required(body_field("senderId"))
def create_envelope():
    """
    Fund a new envelope.

    Expected JSON body:
        - senderId: Funding user
        - amount: Total amount, at least 0.01 per share
        - count: Number of shares (defaults to 1)
        - bookName: Optional book to draw the excerpt from (see /api/books)

    Returns:
        Full envelope detail including the passphrase and its pinyin
    """
    data = request.get_json(silent=True) or {}
    detail = _envelopes().create(data.get("senderId"), data.get("amount"), data.get("count"), data.get("bookName"))
    return jsonify(detail), 201


@envelopes_bp.route("", methods=["GET"])
def list_envelopes():
    return jsonify(_envelopes().list_recent())


@envelopes_bp.route("/<envelope_id>", methods=["GET"])
def get_envelope(envelope_id):
    return jsonify(_envelopes().get(envelope_id))


@envelopes_bp.route("/<envelope_id>/claim", methods=["POST"])
@limiter.limit(claim_rate_limit)
@token_required(body_field("userId"))
def claim_envelope(envelope_id):
    """
    Redeem one share.

    Expected JSON body:
        - userId: Claiming user
        - answer: Decoded passphrase (surrounding whitespace ignored)
    """
    data = request.get_json(silent=True) or {}
    return jsonify(_envelopes().claim(envelope_id, data.get("userId"), data.get("answer")))


@envelopes_bp.route("/<envelope_id>/audio.wav", methods=["GET"])
def envelope_audio(envelope_id):
    """Serve the Morse puzzle as a mono 16-bit WAV file."""
    cfg = current_app.config["APP_CONFIG"]
    timeline = cipher_to_timeline(_envelopes().get_morse_code(envelope_id))
    audio = timeline_to_wav_bytes(timeline, cfg["AUDIO_SAMPLE_RATE"], cfg["MORSE_FREQUENCY_HZ"])
    return Response(
        audio,
        mimetype="audio/wav",
        headers={"Content-Disposition": f'inline; filename="{envelope_id}.wav"'},
    )
