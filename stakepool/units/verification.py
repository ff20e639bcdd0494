"""
verification.py - Risk Oracle Units

Credit verification sits outside the lending core. Applicants file a
request with their documents, a registered verifier scores them, and the
result is exposed to the pool only as an opaque risk note.

Two kinds of record:

    ORACLE                    {owner, verifiers, version}
    VERIFICATION:<applicant>  {applicant, documents, requested_at, verified,
                               risk_score, verifier, verified_at,
                               version}

The oracle owner manages the verifier set. The risk note is a content hash
of (applicant, score, verifier); the pool stores it with a loan request and
never inspects it.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime
import hashlib
from typing import Any, Dict, Optional, Tuple

from ..core import (
    LedgerView, PendingTransaction, Unit, UnitStateChange, TransactionOrigin, OriginType,
    AlreadyRequested, InvalidScore, NotOwner, NotVerifier, VerificationNotRequested,
    MAX_RISK_SCORE, MIN_RISK_SCORE, UNIT_TYPE_ORACLE, UNIT_TYPE_VERIFICATION,
    build_transaction, entity_unit,
)


ORACLE_SYMBOL = "ORACLE"


@dataclass(frozen=True, slots=True)
class Verification:
    """Snapshot of a verification record."""
    applicant: str
    documents: Tuple[str, ...]
    requested_at: datetime
    verified: bool = False
    risk_score: Optional[int] = None
    verifier: Optional[str] = None
    verified_at: Optional[datetime] = None
    version: int = 0                   # bumped on every score


def verification_symbol(applicant: str) -> str:
    return f"VERIFICATION:{applicant}"


def _oracle_origin(source_id: str, event_type: str, unit_symbol: str) -> TransactionOrigin:
    return TransactionOrigin(
        origin_type=OriginType.EXTERNAL,
        source_id=source_id,
        unit_symbol=unit_symbol,
        event_type=event_type,
    )


def create_oracle_unit(owner: str) -> Unit:
    """Create the ORACLE registry with ``owner`` as its only verifier."""
    return entity_unit(
        symbol=ORACLE_SYMBOL,
        name=f"Credit verification oracle (owner {owner})",
        unit_type=UNIT_TYPE_ORACLE,
        state={'owner': owner, 'verifiers': [owner], 'version': 0},
    )


def load_verifiers(view: LedgerView) -> Tuple[str, Tuple[str, ...]]:
    """Return (owner, verifiers)."""
    raw = view.get_unit_state(ORACLE_SYMBOL)
    return raw['owner'], tuple(raw.get('verifiers', ()))


def load_verification(view: LedgerView, applicant: str) -> Optional[Verification]:
    """Return the applicant's record, or None if they never requested one."""
    symbol = verification_symbol(applicant)
    if not view.has_unit(symbol):
        return None
    raw = view.get_unit_state(symbol)
    return Verification(
        applicant=raw['applicant'],
        documents=tuple(raw.get('documents', ())),
        requested_at=raw['requested_at'],
        verified=raw.get('verified', False),
        risk_score=raw.get('risk_score'),
        verifier=raw.get('verifier'),
        verified_at=raw.get('verified_at'),
        version=raw.get('version', 0),
    )


def to_state_dict(record: Verification) -> Dict[str, Any]:
    return {
        'applicant': record.applicant,
        'documents': list(record.documents),
        'requested_at': record.requested_at,
        'verified': record.verified,
        'risk_score': record.risk_score,
        'verifier': record.verifier,
        'verified_at': record.verified_at,
        'version': record.version,
    }


def calculate_risk_note(applicant: str, risk_score: int, verifier: str) -> str:
    """
    Opaque attestation token for a verified applicant.

    Example:
        calculate_risk_note("bob", 35, "carol") -> 'rn:3f0a...' (24 hex digits)
    """
    digest = hashlib.sha256(f"{applicant}|{risk_score}|{verifier}".encode()).hexdigest()
    return f"rn:{digest[:24]}"


def get_risk_note(view: LedgerView, applicant: str) -> Optional[str]:
    """The applicant's risk note, or None while unverified."""
    record = load_verification(view, applicant)
    if record is None or not record.verified:
        return None
    return calculate_risk_note(record.applicant, record.risk_score, record.verifier)


# ============================================================================
# LEDGER OPERATIONS
# ============================================================================

def compute_verification_request(
    view: LedgerView,
    applicant: str,
    documents: Tuple[str, ...] = (),
) -> PendingTransaction:
    """
    File a verification request.

    Raises:
        AlreadyRequested: If the applicant already has a record.
    """
    if load_verification(view, applicant) is not None:
        raise AlreadyRequested(f"{applicant} already requested verification")
    record = Verification(
        applicant=applicant,
        documents=tuple(documents),
        requested_at=view.current_time,
    )
    unit = entity_unit(
        symbol=verification_symbol(applicant),
        name=f"Verification of {applicant}",
        unit_type=UNIT_TYPE_VERIFICATION,
        state=to_state_dict(record),
    )
    return build_transaction(
        view, [], [],
        origin=_oracle_origin(applicant, "REQUEST_VERIFICATION", unit.symbol),
        units_to_create=(unit,),
    )


def compute_verify(view: LedgerView, verifier: str, applicant: str, risk_score: int) -> PendingTransaction:
    """
    Score an applicant.

    A verifier may re-score an applicant that is already verified; the
    latest score wins. Each score bumps the record's version, so
    identical re-scores are distinct operations.

    Raises:
        NotVerifier: caller is not a registered verifier
        InvalidScore: risk_score not an integer in [0, 100]
        VerificationNotRequested: applicant has no record
    """
    _, verifiers = load_verifiers(view)
    if verifier not in verifiers:
        raise NotVerifier(f"{verifier} is not a registered verifier")
    if (isinstance(risk_score, bool) or not isinstance(risk_score, int)
            or not MIN_RISK_SCORE <= risk_score <= MAX_RISK_SCORE):
        raise InvalidScore(
            f"risk score must be an integer in [{MIN_RISK_SCORE}, {MAX_RISK_SCORE}], got {risk_score!r}"
        )
    record = load_verification(view, applicant)
    if record is None:
        raise VerificationNotRequested(f"{applicant} has not requested verification")

    symbol = verification_symbol(applicant)
    verified = replace(
        record,
        verified=True,
        risk_score=risk_score,
        verifier=verifier,
        verified_at=view.current_time,
        version=record.version + 1,
    )
    change = UnitStateChange(unit=symbol, old_state=view.get_unit_state(symbol), new_state=to_state_dict(verified))
    return build_transaction(view, [], [change], origin=_oracle_origin(verifier, "VERIFY", symbol))


def _verifier_set_change(view: LedgerView, caller: str, verifiers: Tuple[str, ...], event_type: str) -> PendingTransaction:
    owner, _ = load_verifiers(view)
    if caller != owner:
        raise NotOwner(f"{caller} is not the oracle owner")
    old_state = view.get_unit_state(ORACLE_SYMBOL)
    new_state = {
        **old_state,
        'verifiers': sorted(set(verifiers)),
        'version': old_state.get('version', 0) + 1,
    }
    change = UnitStateChange(unit=ORACLE_SYMBOL, old_state=old_state, new_state=new_state)
    return build_transaction(view, [], [change], origin=_oracle_origin(caller, event_type, ORACLE_SYMBOL))


def compute_add_verifier(view: LedgerView, caller: str, verifier: str) -> PendingTransaction:
    """
    Register a verifier. Adding an existing verifier leaves the set unchanged.

    Raises:
        NotOwner: caller is not the oracle owner
    """
    _, verifiers = load_verifiers(view)
    return _verifier_set_change(view, caller, verifiers + (verifier,), "ADD_VERIFIER")


def compute_remove_verifier(view: LedgerView, caller: str, verifier: str) -> PendingTransaction:
    """
    Deregister a verifier. Scores it already issued stay valid.

    Raises:
        NotOwner: caller is not the oracle owner
    """
    _, verifiers = load_verifiers(view)
    return _verifier_set_change(
        view, caller, tuple(v for v in verifiers if v != verifier), "REMOVE_VERIFIER"
    )
