"""
settlement.py - Settlement Gateway Contract

The pool never moves real value itself. Each committed operation hands its
cash moves to a SettlementGateway as one batch of Transfers, inside the
transaction boundary and before the ledger is mutated:

    compute_*()  ->  Ledger.commit(pending, settle=gateway_hook)
                          validate -> gateway.settle(batch) -> execute

A gateway either settles the whole batch or raises SettlementError with no
partial effect. A raise aborts the ledger transaction, so the pool never
records a withdrawal, disbursement or payout that was not paid.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, List, Protocol, Tuple, runtime_checkable

from .core import Move, PendingTransaction


@dataclass(frozen=True, slots=True)
class Transfer:
    """
    One value transfer requested from the settlement gateway.

    Attributes:
        source: Paying wallet (identity or pool wallet)
        dest: Receiving wallet
        amount: Whole units of currency (always positive)
        currency: Currency symbol
        reference: Contract id of the originating move
    """
    source: str
    dest: str
    amount: int
    currency: str
    reference: str

    def __post_init__(self):
        if self.amount <= 0:
            raise ValueError(f"Transfer amount must be positive, got {self.amount}")


@runtime_checkable
class SettlementGateway(Protocol):
    """
    Atomic value-transfer primitive.

    settle() must either apply every transfer in the batch or none of them,
    raising SettlementError in the latter case.
    """

    def settle(self, transfers: Tuple[Transfer, ...]) -> None:
        ...


def transfers_from_moves(moves: Tuple[Move, ...], currency: str) -> Tuple[Transfer, ...]:
    """
    Convert the cash moves of a pending transaction into gateway transfers.

    Moves in other units, and moves flagged ``{'settled': True}`` in their
    metadata (value that arrived with the call itself), are skipped.
    """
    transfers: List[Transfer] = []
    for move in moves:
        if move.unit_symbol != currency:
            continue
        if move.metadata and move.metadata.get('settled'):
            continue
        transfers.append(Transfer(
            source=move.source,
            dest=move.dest,
            amount=int(move.quantity),
            currency=currency,
            reference=move.contract_id,
        ))
    return tuple(transfers)


def settlement_hook(
    gateway: SettlementGateway,
    currency: str,
) -> Callable[[PendingTransaction], None]:
    """
    Build the ``settle`` callback passed to Ledger.commit().

    Empty batches are not sent to the gateway.
    """
    def settle(pending: PendingTransaction) -> None:
        transfers = transfers_from_moves(pending.moves, currency)
        if transfers:
            gateway.settle(transfers)
    return settle


class InstantSettlement:
    """
    Gateway that settles every batch immediately and keeps a record of it.

    Used when the ledger's own balances are the system of record.
    """

    def __init__(self):
        self.settled: List[Tuple[Transfer, ...]] = []

    def settle(self, transfers: Tuple[Transfer, ...]) -> None:
        self.settled.append(tuple(transfers))

    def total_paid_to(self, wallet: str) -> int:
        """Sum of all settled transfers received by a wallet."""
        return sum(t.amount for batch in self.settled for t in batch if t.dest == wallet)

