"""Prometheus metrics shared by the services and exposed at /metrics."""

from prometheus_client import CollectorRegistry, Counter

registry = CollectorRegistry()

ENVELOPES_CREATED = Counter(
    "redpacket_envelopes_created_total",
    "Envelopes created",
    registry=registry,
)
CLAIM_ATTEMPTS = Counter(
    "redpacket_claim_attempts_total",
    "Claim attempts by outcome",
    ["result"],
    registry=registry,
)
REFUNDS = Counter(
    "redpacket_refunds_total",
    "Expired envelopes refunded to their sender",
    registry=registry,
)
WALLET_MUTATIONS = Counter(
    "redpacket_wallet_mutations_total",
    "Wallet balance changes by transaction kind",
    ["kind"],
    registry=registry,
)
