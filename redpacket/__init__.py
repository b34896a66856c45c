"""Morse red packet service.

Senders fund an envelope, the service hides a short passphrase taken from a
classical excerpt inside a Morse-code puzzle, and whoever decodes it first
claims a random share of the money.
"""

__version__ = "1.0.0"
