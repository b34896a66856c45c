"""
Envelope lifecycle and claim settlement.

An envelope starts ``pending`` and ends either ``claimed`` (every share
taken) or ``expired`` (still pending past its expiry). Expiry is applied
lazily: any read of an overdue envelope flips it and refunds the unclaimed
remainder to the sender, and ``expire_due`` runs the same transition in
bulk. The status change is a compare-and-swap, so however many readers race,
exactly one of them refunds.

Claim settlement holds a per-envelope lock and a row lock, re-validates
inside the transaction, and advances ``claimed_count`` with a
compare-and-swap. The claim row, counter, status, payout and ledger entry
commit together or not at all.
"""

import logging
import random
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload, selectinload

from redpacket import metrics
from redpacket.allocator import MIN_SHARE, draw_share
from redpacket.audit_logger import get_audit_logger
from redpacket.cipher import cipher_to_timeline, phonetic_to_cipher, text_to_phonetic
from redpacket.database import claim_lock, session_scope
from redpacket.errors import (
    AlreadyClaimedError,
    ClaimConflictError,
    EnvelopeExpiredError,
    EnvelopeFullyClaimedError,
    InsufficientFundsError,
    NotFoundError,
    RedPacketError,
    SelfClaimError,
    ValidationError,
    WrongPassphraseError,
)
from redpacket.excerpts import ExcerptProvider, extract_chars
from redpacket.models import (
    STATUS_CLAIMED,
    STATUS_EXPIRED,
    STATUS_PENDING,
    Claim,
    Envelope,
    User,
    as_utc,
    isoformat,
    utc_now,
)
from redpacket.money import ZERO, as_number, parse_amount, quantize
from redpacket.wallet import WalletService

logger = logging.getLogger(__name__)


def _person(user: Optional[User]) -> Optional[Dict]:
    if user is None:
        return None
    return {"id": user.id, "nickname": user.nickname}


def _claimed_total(envelope: Envelope) -> Decimal:
    return quantize(sum((c.amount for c in envelope.claims), ZERO))


class EnvelopeService:
    def __init__(
        self,
        wallet: WalletService,
        excerpts: ExcerptProvider,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = utc_now,
        ttl_hours: int = 24,
        passphrase_length: int = 4,
        max_share_count: int = 100,
        list_limit: int = 20,
    ):
        self.wallet = wallet
        self.excerpts = excerpts
        self.rng = rng or random.Random()
        self.clock = clock
        self.ttl = timedelta(hours=ttl_hours)
        self.passphrase_length = passphrase_length
        self.max_share_count = max_share_count
        self.list_limit = list_limit
        self.audit = get_audit_logger()

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def _parse_count(self, count) -> int:
        if count is None:
            return 1
        if isinstance(count, bool):
            raise ValidationError("count must be an integer")
        try:
            value = int(count)
        except (TypeError, ValueError) as exc:
            raise ValidationError("count must be an integer") from exc
        if value != count and str(value) != str(count).strip():
            raise ValidationError("count must be an integer")
        if value < 1 or value > self.max_share_count:
            raise ValidationError(f"count must be between 1 and {self.max_share_count}")
        return value

    def create(self, sender_id, amount, count=None, book_name=None) -> Dict:
        """
        Fund a new envelope from the sender's wallet.

        Returns the full creation detail, including the passphrase and its
        pinyin. This is the only response that ever carries the answer.
        ``book_name`` pins the excerpt to one book; otherwise any book may
        be drawn.
        """
        if not sender_id:
            raise ValidationError("senderId is required")
        amount = parse_amount(amount)
        total_count = self._parse_count(count)

        minimum = MIN_SHARE * total_count
        if amount < minimum:
            raise ValidationError(f"{total_count} shares need at least {minimum:.2f}")

        if book_name is None:
            excerpt = self.excerpts.pick_excerpt()
        else:
            excerpt = self.excerpts.excerpt_by_book(book_name)
            if excerpt is None:
                raise ValidationError(f"Unknown book {book_name!r}")
        answer = extract_chars(excerpt.text, self.passphrase_length, self.rng).chars
        tokens = text_to_phonetic(answer)
        morse_code = phonetic_to_cipher(tokens)
        timeline = cipher_to_timeline(morse_code)

        now = self.clock()
        with session_scope() as session:
            sender = session.get(User, sender_id)
            if sender is None:
                raise NotFoundError("Sender not found")
            if quantize(sender.balance) < amount:
                raise InsufficientFundsError("Insufficient balance")

            envelope = Envelope(
                sender_id=sender_id,
                amount=amount,
                total_count=total_count,
                claimed_count=0,
                book_name=excerpt.book_name,
                book_excerpt=excerpt.text,
                answer=answer,
                morse_code=morse_code,
                status=STATUS_PENDING,
                created_at=now,
                expires_at=now + self.ttl,
            )
            session.add(envelope)
            session.flush()

            self.wallet.deduct(sender_id, amount, envelope_id=envelope.id, session=session)

            detail = {
                "id": envelope.id,
                "amount": as_number(amount),
                "totalCount": total_count,
                "claimedCount": 0,
                "bookName": excerpt.book_name,
                "author": excerpt.author,
                "bookExcerpt": excerpt.text,
                "answer": answer,
                "answerPinyin": tokens,
                "morseCode": morse_code,
                "morseTimeline": timeline.to_dict(),
                "status": STATUS_PENDING,
                "createdAt": isoformat(envelope.created_at),
                "expiresAt": isoformat(envelope.expires_at),
            }

        metrics.ENVELOPES_CREATED.inc()
        self.audit.log_envelope_created(detail["id"], sender_id, str(amount), total_count)
        return detail

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    def _expire_in_session(self, session: Session, envelope: Envelope, now: datetime) -> Optional[Decimal]:
        """
        Move an overdue pending envelope to ``expired`` and refund the rest.

        Returns the refunded amount, or None when this caller did not perform
        the transition (not due, not pending, or another reader won).
        """
        if envelope.status != STATUS_PENDING or now <= as_utc(envelope.expires_at):
            return None

        flipped = (
            session.query(Envelope)
            .filter(Envelope.id == envelope.id, Envelope.status == STATUS_PENDING)
            .update({Envelope.status: STATUS_EXPIRED}, synchronize_session=False)
        )
        session.expire(envelope)
        if flipped != 1:
            return None

        refund = quantize(envelope.amount - _claimed_total(envelope))
        if refund > ZERO:
            self.wallet.recharge(envelope.sender_id, refund, envelope_id=envelope.id, session=session)
        logger.info(f"Envelope {envelope.id} expired, refunded {refund} to {envelope.sender_id}")
        return refund

    def expire_if_due(self, envelope_id: str) -> Optional[Decimal]:
        """Apply the expiry transition to one envelope; safe to call repeatedly."""
        with session_scope() as session:
            envelope = session.get(Envelope, envelope_id)
            if envelope is None:
                raise NotFoundError("Envelope not found")
            refund = self._expire_in_session(session, envelope, self.clock())
            sender_id = envelope.sender_id

        if refund is not None:
            self._record_refund(envelope_id, sender_id, refund)
        return refund

    def expire_due(self) -> int:
        """Expire every overdue pending envelope. Returns how many this call expired."""
        now = self.clock()
        with session_scope() as session:
            due_ids = [
                row.id
                for row in session.query(Envelope.id)
                .filter(Envelope.status == STATUS_PENDING, Envelope.expires_at < now)
                .all()
            ]

        expired = 0
        for envelope_id in due_ids:
            if self.expire_if_due(envelope_id) is not None:
                expired += 1
        if expired:
            logger.info(f"Expiry sweep expired {expired} envelope(s)")
        return expired

    def _record_refund(self, envelope_id: str, sender_id: str, refund: Decimal) -> None:
        metrics.REFUNDS.inc()
        self.audit.log_refund(envelope_id, sender_id, str(refund))

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    @staticmethod
    def _claims_view(envelope: Envelope) -> List[Dict]:
        return [
            {
                "id": claim.id,
                "claimer": _person(claim.claimer),
                "amount": as_number(claim.amount),
                "createdAt": isoformat(claim.created_at),
            }
            for claim in envelope.claims
        ]

    def get(self, envelope_id: str) -> Dict:
        """
        Public view of an envelope, applying lazy expiry first.

        Never includes the passphrase. The total amount stays hidden (None)
        while the envelope is pending.
        """
        refund = None
        with session_scope() as session:
            envelope = (
                session.query(Envelope)
                .options(joinedload(Envelope.sender), selectinload(Envelope.claims).joinedload(Claim.claimer))
                .filter(Envelope.id == envelope_id)
                .first()
            )
            if envelope is None:
                raise NotFoundError("Envelope not found")

            refund = self._expire_in_session(session, envelope, self.clock())
            session.refresh(envelope)

            revealed = envelope.status in (STATUS_CLAIMED, STATUS_EXPIRED)
            view = {
                "id": envelope.id,
                "sender": _person(envelope.sender),
                "amount": as_number(envelope.amount) if revealed else None,
                "totalCount": envelope.total_count,
                "claimedCount": envelope.claimed_count,
                "bookName": envelope.book_name,
                "bookExcerpt": envelope.book_excerpt,
                "morseCode": envelope.morse_code,
                "morseTimeline": cipher_to_timeline(envelope.morse_code).to_dict(),
                "status": envelope.status,
                "createdAt": isoformat(envelope.created_at),
                "expiresAt": isoformat(envelope.expires_at),
                "claims": self._claims_view(envelope),
            }
            sender_id = envelope.sender_id

        if refund is not None:
            self._record_refund(envelope_id, sender_id, refund)
        return view

    def list_recent(self) -> List[Dict]:
        """Newest envelopes with their claim history; amounts hidden until fully claimed."""
        with session_scope() as session:
            envelopes = (
                session.query(Envelope)
                .options(joinedload(Envelope.sender), selectinload(Envelope.claims).joinedload(Claim.claimer))
                .order_by(Envelope.created_at.desc())
                .limit(self.list_limit)
                .all()
            )
            return [
                {
                    "id": envelope.id,
                    "sender": _person(envelope.sender),
                    "bookName": envelope.book_name,
                    "status": envelope.status,
                    "amount": as_number(envelope.amount) if envelope.status == STATUS_CLAIMED else None,
                    "totalCount": envelope.total_count,
                    "claimedCount": envelope.claimed_count,
                    "claims": [
                        {
                            "claimer": _person(claim.claimer),
                            "amount": as_number(claim.amount),
                            "createdAt": isoformat(claim.created_at),
                        }
                        for claim in envelope.claims
                    ],
                    "createdAt": isoformat(envelope.created_at),
                    "expiresAt": isoformat(envelope.expires_at),
                }
                for envelope in envelopes
            ]

    def get_morse_code(self, envelope_id: str) -> str:
        with session_scope() as session:
            envelope = session.get(Envelope, envelope_id)
            if envelope is None:
                raise NotFoundError("Envelope not found")
            return envelope.morse_code

    # ------------------------------------------------------------------
    # Claim
    # ------------------------------------------------------------------

    def claim(self, envelope_id: str, claimer_id, answer) -> Dict:
        """
        Redeem one share of an envelope.

        All checks run before anything is written: the envelope must exist and
        be pending and unexpired, the claimer must not be the sender or a
        previous claimer, and the trimmed answer must equal the passphrase
        exactly (case-sensitive).
        """
        if not claimer_id or not isinstance(answer, str) or not answer.strip():
            raise ValidationError("userId and answer are required")

        try:
            with claim_lock(envelope_id):
                result = self._settle(envelope_id, str(claimer_id), answer)
        except IntegrityError as exc:
            # Unique (envelope, claimer) constraint caught a duplicate
            logger.info(f"Duplicate claim on {envelope_id} by {claimer_id}: {exc.orig}")
            duplicate = AlreadyClaimedError("You have already claimed this envelope")
            raise self._rejected(envelope_id, claimer_id, duplicate) from exc
        except TimeoutError as exc:
            busy = ClaimConflictError("The envelope is busy, please retry")
            raise self._rejected(envelope_id, claimer_id, busy) from exc
        except RedPacketError as exc:
            raise self._rejected(envelope_id, claimer_id, exc)

        metrics.CLAIM_ATTEMPTS.labels(result="success").inc()
        self.audit.log_claim_attempt(envelope_id, claimer_id, True, amount=str(result["amount"]))
        return result

    def _rejected(self, envelope_id: str, claimer_id, exc: Exception) -> Exception:
        reason = getattr(exc, "error", type(exc).__name__)
        metrics.CLAIM_ATTEMPTS.labels(result=reason).inc()
        self.audit.log_claim_attempt(envelope_id, str(claimer_id), False, reason=reason)
        return exc

    def _settle(self, envelope_id: str, claimer_id: str, answer: str) -> Dict:
        now = self.clock()
        with session_scope() as session:
            envelope = (
                session.query(Envelope)
                .options(selectinload(Envelope.claims))
                .filter(Envelope.id == envelope_id)
                .with_for_update()
                .first()
            )
            if envelope is None:
                raise NotFoundError("Envelope not found")
            if envelope.status == STATUS_CLAIMED:
                raise EnvelopeFullyClaimedError("This envelope has been fully claimed")
            if envelope.status == STATUS_EXPIRED or now > as_utc(envelope.expires_at):
                raise EnvelopeExpiredError("This envelope has expired")
            if envelope.sender_id == claimer_id:
                raise SelfClaimError("You cannot claim your own envelope")
            if session.get(User, claimer_id) is None:
                raise NotFoundError("User not found")
            if any(c.claimer_id == claimer_id for c in envelope.claims):
                raise AlreadyClaimedError("You have already claimed this envelope")
            if answer.strip() != envelope.answer:
                raise WrongPassphraseError("Wrong passphrase, try again")

            remaining = quantize(envelope.amount - _claimed_total(envelope))
            remaining_count = envelope.total_count - envelope.claimed_count
            share = draw_share(remaining, remaining_count, self.rng)

            seen_count = envelope.claimed_count
            new_count = seen_count + 1
            new_status = STATUS_CLAIMED if new_count >= envelope.total_count else STATUS_PENDING
            swapped = (
                session.query(Envelope)
                .filter(
                    Envelope.id == envelope_id,
                    Envelope.status == STATUS_PENDING,
                    Envelope.claimed_count == seen_count,
                )
                .update({Envelope.claimed_count: new_count, Envelope.status: new_status}, synchronize_session=False)
            )
            if swapped != 1:
                raise ClaimConflictError("The envelope changed while claiming, please retry")

            session.add(Claim(envelope_id=envelope_id, claimer_id=claimer_id, amount=share, created_at=now))
            session.flush()

            self.wallet.receive(claimer_id, share, envelope_id=envelope_id, session=session)
            balance = self.wallet.get_balance(claimer_id, session=session)

            return {
                "success": True,
                "amount": as_number(share),
                "bookName": envelope.book_name,
                "balance": as_number(balance),
                "totalCount": envelope.total_count,
                "claimedCount": new_count,
                "status": new_status,
                "message": f"Congratulations! You claimed {share:.2f}",
            }
