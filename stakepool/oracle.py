"""
oracle.py - Credit Verification Service

Operation surface of the risk oracle. The lending pool consumes only the
risk note it produces:

    oracle = CreditVerification(ledger, owner="acme")
    oracle.request_verification("bob", ("ipfs://payslip",))
    oracle.verify("acme", "bob", 35)
    pool.request_loan("bob", 100, 10, timedelta(days=30),
                      risk_note=oracle.get_risk_note("bob"))
"""

from __future__ import annotations
from typing import Optional, Tuple

from .ledger import Ledger
from .units.verification import (
    ORACLE_SYMBOL, Verification,
    compute_add_verifier, compute_remove_verifier, compute_verification_request, compute_verify,
    create_oracle_unit, get_risk_note, load_verification, load_verifiers,
)


class CreditVerification:
    """Verifier registry and applicant scoring over a Ledger."""

    def __init__(self, ledger: Ledger, owner: str, verbose: Optional[bool] = None):
        self.ledger = ledger
        self.verbose = ledger.verbose if verbose is None else verbose
        with ledger.lock:
            if not ledger.has_unit(ORACLE_SYMBOL):
                ledger.register_unit(create_oracle_unit(owner))
            self.owner, _ = load_verifiers(ledger)

    def _log(self, message: str) -> None:
        if self.verbose:
            print(f"[ORACLE] {message}")

    def request_verification(self, applicant: str, documents: Tuple[str, ...] = ()) -> None:
        with self.ledger.lock:
            self.ledger.commit(compute_verification_request(self.ledger, applicant, documents))
        self._log(f"{applicant} requested verification ({len(documents)} documents)")

    def verify(self, verifier: str, applicant: str, risk_score: int) -> str:
        """
        Score an applicant.

        Returns:
            The applicant's new risk note.
        """
        with self.ledger.lock:
            self.ledger.commit(compute_verify(self.ledger, verifier, applicant, risk_score))
            note = get_risk_note(self.ledger, applicant)
        self._log(f"{verifier} scored {applicant}: {risk_score}")
        return note

    def add_verifier(self, caller: str, verifier: str) -> None:
        with self.ledger.lock:
            self.ledger.commit(compute_add_verifier(self.ledger, caller, verifier))
        self._log(f"{caller} added verifier {verifier}")

    def remove_verifier(self, caller: str, verifier: str) -> None:
        with self.ledger.lock:
            self.ledger.commit(compute_remove_verifier(self.ledger, caller, verifier))
        self._log(f"{caller} removed verifier {verifier}")

    def verifiers(self) -> Tuple[str, ...]:
        _, verifiers = load_verifiers(self.ledger)
        return verifiers

    def get_verification(self, applicant: str) -> Optional[Verification]:
        return load_verification(self.ledger, applicant)

    def get_risk_note(self, applicant: str) -> Optional[str]:
        return get_risk_note(self.ledger, applicant)
