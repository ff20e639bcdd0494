"""
Core types and pure functions for the staking pool ledger.

This module provides the foundational data structures and protocols:
1. Protocols: LedgerView for read-only ledger access
2. Immutable data structures: Move, PendingTransaction, Transaction, Unit
3. Exceptions: LedgerError and the validation / authorization / state-conflict
   / settlement taxonomy raised by the pool
4. Configuration: PoolConfig, the frozen term sheet of a staking pool
5. Unit factories: cash() for the pool currency, entity_unit() for records

All functions in this module are pure and operate on read-only views.
No function can mutate ledger state directly.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_EVEN, ROUND_DOWN, getcontext
from enum import Enum
import copy
import hashlib
from typing import (
    Dict, List, Set, Optional, Any, Protocol,
    Tuple, FrozenSet, runtime_checkable,
)


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Cash moves carry Decimal quantities. Pool amounts are whole units of the
# pool currency, but Decimal keeps balance arithmetic exact and deterministic.
#
# PRECONDITION: No other code should modify the global Decimal context.
#
_LEDGER_DECIMAL_CONTEXT = getcontext()
_LEDGER_DECIMAL_CONTEXT.prec = 50
_LEDGER_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for issuance and entity records.
# The system wallet is exempt from balance validation and can hold any balance.
SYSTEM_WALLET = "system"

# Default wallet holding the pooled stake.
DEFAULT_POOL_WALLET = "pool"

# Unit type constants (strings, not enum per design decision).
UNIT_TYPE_CASH = "CASH"
UNIT_TYPE_POOL = "POOL"
UNIT_TYPE_STAKER = "STAKER"
UNIT_TYPE_LOAN_REQUEST = "LOAN_REQUEST"
UNIT_TYPE_LOAN = "LOAN"
UNIT_TYPE_ORACLE = "ORACLE"
UNIT_TYPE_VERIFICATION = "VERIFICATION"

# Epsilon for Decimal comparisons.
QUANTITY_EPSILON = Decimal("1e-12")

# Default minimum balance for cash units. Identity wallets record their net
# position against the pool, so they may run negative (money paid in).
DEFAULT_CASH_MIN_BALANCE = Decimal("-1000000000000")

# Pool defaults
DEFAULT_MIN_STAKE_TIME = timedelta(days=7)
DEFAULT_VOTING_PERIOD = timedelta(days=3)
DEFAULT_QUORUM_PERCENT = 60

# Risk scores accepted from verifiers
MIN_RISK_SCORE = 0
MAX_RISK_SCORE = 100

DECIMAL_ROUNDING = {
    'CASH': ROUND_DOWN,
}


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from wallet ID to quantity held by that wallet for a specific unit.
Positions = Dict[str, Decimal]

# Mapping from unit symbol to quantity held in a single wallet.
BalanceMap = Dict[str, Decimal]

# Internal state for a unit: the entity record it stores.
UnitState = Dict[str, Any]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to ledger state.

    Stake, voting, loan and verification functions accept a LedgerView to
    declare their read-only intent. The Ledger class implements this protocol
    but also provides mutation methods. For testing, FakeView provides a
    truly immutable implementation.
    """

    @property
    def current_time(self) -> datetime:
        """Return the current logical time of the ledger."""
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """Return the balance of a unit in a wallet (Decimal("0") if none)."""
        ...

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """
        Return a copy of the unit's internal state.

        Raises:
            UnitNotRegistered: If no unit with this symbol exists.
        """
        ...

    def has_unit(self, unit_symbol: str) -> bool:
        """Return True if a unit with this symbol is registered."""
        ...

    def get_positions(self, unit_symbol: str) -> Positions:
        """Return all non-zero positions for a unit across all wallets."""
        ...

    def list_wallets(self) -> Set[str]:
        """Return the set of all registered wallet IDs."""
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: Transaction was successfully validated and applied to the ledger.
    ALREADY_APPLIED: Transaction ID was previously processed (idempotent behavior).
    REJECTED: Transaction failed validation (balance constraints, stale
              state, unregistered wallets or units, future timestamp).
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """
    Classification of where a transaction originated.

    Used for audit trails and reconciliation.
    """
    USER_ACTION = "user_action"           # Caller-initiated pool operation
    CONTRACT = "contract"                 # Transition triggered by another (quorum -> loan)
    SYSTEM = "system"                     # Pool setup
    EXTERNAL = "external"                 # Oracle / verifier activity


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger and pool errors."""
    pass


class UnitNotRegistered(LedgerError):
    """Raised when attempting to operate on a unit that has not been registered with the ledger."""
    pass


class WalletNotRegistered(LedgerError):
    """Raised when attempting to operate on a wallet that has not been registered with the ledger."""
    pass


class TransactionRejected(LedgerError):
    """Raised when the ledger refuses to apply a pending transaction."""
    pass


# --- Validation: rejected synchronously, no state change ---------------------

class ValidationError(LedgerError, ValueError):
    """Bad amount, bad score or malformed timing."""
    pass


class InvalidAmount(ValidationError):
    pass


class InvalidDuration(ValidationError):
    pass


class InvalidScore(ValidationError):
    pass


class AmountExceedsPool(ValidationError):
    """Requested loan amount is larger than the total stake in the pool."""
    pass


class InsufficientPayment(ValidationError):
    """Repayment is smaller than principal plus interest."""
    pass


class InsufficientFreeStake(ValidationError):
    """Withdrawal exceeds staked minus locked amount."""
    pass


# --- Authorization -----------------------------------------------------------

class AuthorizationError(LedgerError):
    """Caller is not allowed to perform the operation."""
    pass


class NotVerifier(AuthorizationError):
    pass


class NotOwner(AuthorizationError):
    pass


class Blacklisted(AuthorizationError):
    """Borrower defaulted on an earlier loan."""
    pass


class NotEligible(AuthorizationError):
    """Voter has no stake, or has not held it for the minimum stake time."""
    pass


class UnverifiedBorrower(AuthorizationError):
    pass


# --- State conflicts: caller must retry with a different target --------------

class StateConflict(LedgerError):
    """The target entity is not in a state that permits the operation."""
    pass


class DuplicateVote(StateConflict):
    pass


class AlreadyExecuted(StateConflict):
    pass


class QuorumNotMet(StateConflict):
    pass


class LoanNotActive(StateConflict):
    pass


class VotingClosed(StateConflict):
    pass


class NotYetExpired(StateConflict):
    pass


class AlreadyRequested(StateConflict):
    pass


class VerificationNotRequested(StateConflict):
    pass


# --- Lookups -----------------------------------------------------------------

class EntityNotFound(LedgerError):
    pass


class UnknownRequest(EntityNotFound):
    pass


class UnknownLoan(EntityNotFound):
    pass


# --- External dependency -----------------------------------------------------

class SettlementError(LedgerError):
    """
    The settlement gateway failed to move value.

    The enclosing transaction is never applied when this is raised.
    """
    pass


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass(frozen=True, slots=True)
class PoolConfig:
    """
    Immutable term sheet for a staking pool - set at creation, never changes.

    The values are written into the POOL unit's state when the pool is
    created, so pure functions read them from the ledger rather than from
    a config object.

    Attributes:
        currency: Symbol of the cash unit stakes and loans are denominated in.
        pool_wallet: Wallet that holds pooled stake and pays out loans.
        min_stake_time: How long a stake must age before its holder may vote.
        voting_period: How long a loan request accepts votes.
        quorum_percent: Required yes-weight as a percentage of the loan amount.
        require_verified_borrower: Reject loan requests that carry no risk note.
    """
    currency: str = "USD"
    pool_wallet: str = DEFAULT_POOL_WALLET
    min_stake_time: timedelta = DEFAULT_MIN_STAKE_TIME
    voting_period: timedelta = DEFAULT_VOTING_PERIOD
    quorum_percent: int = DEFAULT_QUORUM_PERCENT
    require_verified_borrower: bool = False

    def __post_init__(self):
        if not self.currency or not self.currency.strip():
            raise ValueError("currency cannot be empty")
        if not self.pool_wallet or self.pool_wallet == SYSTEM_WALLET:
            raise ValueError(f"pool_wallet must be a non-system wallet, got {self.pool_wallet!r}")
        if self.min_stake_time < timedelta(0):
            raise ValueError(f"min_stake_time cannot be negative, got {self.min_stake_time}")
        if self.voting_period <= timedelta(0):
            raise ValueError(f"voting_period must be positive, got {self.voting_period}")
        if not 0 < self.quorum_percent <= 100:
            raise ValueError(f"quorum_percent must be in (0, 100], got {self.quorum_percent}")


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Immutable record of a transaction's origin for audit purposes.

    Attributes:
        origin_type: Classification of the origin source (USER_ACTION, CONTRACT, ...)
        source_id: Identity of the caller (staker, borrower, verifier, ...)
        unit_symbol: Symbol of the entity the operation targets (if applicable)
        event_type: Operation name (e.g., "STAKE", "VOTE", "REPAYMENT")
    """
    origin_type: OriginType
    source_id: str
    unit_symbol: Optional[str] = None
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.unit_symbol:
            parts.append(f"unit={self.unit_symbol}")
        if self.event_type:
            parts.append(f"event={self.event_type}")
        return f"Origin({', '.join(parts)})"


def user_origin(identity: str, event_type: str, unit_symbol: Optional[str] = None) -> TransactionOrigin:
    """Origin for an operation submitted by a caller identity."""
    return TransactionOrigin(
        origin_type=OriginType.USER_ACTION,
        source_id=identity,
        unit_symbol=unit_symbol,
        event_type=event_type,
    )


# ============================================================================
# UNIT STATE CHANGE
# ============================================================================

@dataclass(frozen=True, slots=True)
class UnitStateChange:
    """
    Record of a unit state change for transaction logging and rollback.

    Stores complete before/after state snapshots. The ledger rejects a
    change whose old_state no longer matches the stored state.

    Attributes:
        unit: Symbol of the unit whose state changed
        old_state: Complete state before the change (dict or None)
        new_state: Complete state after the change (dict)
    """
    unit: str
    old_state: Any
    new_state: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """
        Compute fields that differ between old and new state.

        Returns:
            Dict mapping field name to (old_value, new_value) tuples.
        """
        old = self.old_state if isinstance(self.old_state, dict) else {}
        new = self.new_state if isinstance(self.new_state, dict) else {}
        changes = {}
        for key in set(old.keys()) | set(new.keys()):
            old_val = old.get(key)
            new_val = new.get(key)
            if old_val != new_val:
                changes[key] = (old_val, new_val)
        return changes


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of value between two wallets.

    Attributes:
        quantity: The amount to transfer (must be finite and non-zero).
        unit_symbol: The symbol of the unit being transferred (e.g., "USD").
        source: The wallet ID from which value is debited.
        dest: The wallet ID to which value is credited.
        contract_id: Identifier of the operation generating this move.
        metadata: Optional additional information about the move.
    """
    quantity: Decimal
    unit_symbol: str
    source: str
    dest: str
    contract_id: str
    metadata: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.unit_symbol or not self.unit_symbol.strip():
            raise ValueError("Move unit_symbol cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if isinstance(self.quantity, int) and not isinstance(self.quantity, bool):
            object.__setattr__(self, 'quantity', Decimal(self.quantity))
        if not isinstance(self.quantity, Decimal):
            raise ValueError(f"Move quantity must be Decimal, got {type(self.quantity)}")
        if self.quantity.is_infinite() or self.quantity.is_nan():
            raise ValueError(f"Move quantity must be finite, got {self.quantity}")
        if abs(self.quantity) < QUANTITY_EPSILON:
            raise ValueError("Move quantity is effectively zero")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest})"


def _normalize_decimal(d: Decimal) -> str:
    """
    Normalize a Decimal to a canonical string representation.

    Decimal("1.0") and Decimal("1.00") both become "1".
    """
    normalized = d.normalize()
    if normalized == normalized.to_integral_value():
        return str(int(normalized))
    return format(normalized, 'f')


def _canonicalize(value: Any) -> str:
    """
    Produce a canonical string representation of a value for hashing.

    Deterministic regardless of dict insertion order, Decimal representation
    or nesting depth.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        return f"D:{_normalize_decimal(value)}"
    if isinstance(value, (int, float)):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, datetime):
        return f"T:{value.isoformat()}"
    if isinstance(value, timedelta):
        return f"P:{value.total_seconds()}"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        serialized = ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, (list, tuple)):
        serialized = ",".join(_canonicalize(item) for item in value)
        return f"[{serialized}]"
    if isinstance(value, (set, frozenset)):
        serialized = ",".join(_canonicalize(item) for item in sorted(value, key=str))
        return f"<{serialized}>"
    return f"R:{repr(value)}"


def _compute_intent_id(
    moves: Tuple[Move, ...],
    state_changes: Tuple[UnitStateChange, ...],
    origin: TransactionOrigin,
    units_to_create: Tuple['Unit', ...] = ()
) -> str:
    """
    Compute a deterministic content hash for a transaction's intent.

    Based solely on the semantic content of the transaction, never on
    execution metadata. Same inputs always produce the same intent_id, which
    the ledger uses to refuse a second application of the same intent.
    """
    sorted_moves = tuple(sorted(
        moves,
        key=lambda m: (_normalize_decimal(m.quantity), m.unit_symbol, m.source, m.dest, m.contract_id)
    ))

    content_parts = [f"origin:{origin.origin_type.value}:{origin.source_id}"]
    if origin.unit_symbol:
        content_parts.append(f"unit:{origin.unit_symbol}")
    if origin.event_type:
        content_parts.append(f"event:{origin.event_type}")

    for unit in sorted(units_to_create, key=lambda u: u.symbol):
        content_parts.append(
            f"unit_create:{unit.symbol}|{unit.unit_type}|{_canonicalize(unit.state)}"
        )

    for m in sorted_moves:
        qty = _normalize_decimal(m.quantity)
        content_parts.append(f"move:{qty}|{m.unit_symbol}|{m.source}|{m.dest}|{m.contract_id}")

    for sc in sorted(state_changes, key=lambda s: s.unit):
        old_canonical = _canonicalize(sc.old_state)
        new_canonical = _canonicalize(sc.new_state)
        content_parts.append(f"state_change:{sc.unit}|{old_canonical}|{new_canonical}")

    content = "|".join(content_parts)
    return hashlib.sha256(content.encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction description before execution - represents INTENT.

    Created by the stake, voting, loan and verification functions and
    submitted to the ledger for execution.

    Lifecycle:
    1. A compute_* function creates PendingTransaction from a LedgerView
    2. intent_id is auto-computed from content (deterministic hash)
    3. Ledger.commit() validates, settles and executes, creating a Transaction

    Attributes:
        moves: Tuple of value transfers between wallets
        state_changes: Tuple of unit state changes (with old_state and new_state)
        origin: Who/what created this transaction and why
        timestamp: When this pending transaction was created
        units_to_create: Tuple of Unit objects (new entity records) to register
        intent_id: Content-addressable hash of the transaction intent (auto-computed)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    units_to_create: Tuple['Unit', ...] = ()
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            computed_id = _compute_intent_id(
                self.moves, self.state_changes, self.origin, self.units_to_create
            )
            object.__setattr__(self, 'intent_id', computed_id)

    def is_empty(self) -> bool:
        """Return True if this pending transaction has no moves, no state deltas, and no units to create."""
        return not self.moves and not self.state_changes and not self.units_to_create

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.moves)} moves, {len(self.state_changes)} deltas, {self.origin})"


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    state_changes: Optional[List[UnitStateChange]] = None,
    origin: Optional[TransactionOrigin] = None,
    units_to_create: Optional[Tuple['Unit', ...]] = None,
) -> PendingTransaction:
    """
    Build a PendingTransaction from moves and state deltas.

    This is the standard way to create transactions.

    Args:
        view: Read-only ledger view (provides current_time)
        moves: List of moves to include in the transaction
        state_changes: Optional list of UnitStateChange objects
        origin: Transaction origin (defaults to CONTRACT origin)
        units_to_create: Optional tuple of Unit objects to register before executing moves

    Returns:
        A PendingTransaction ready for execution

    Example:
        def compute_close(view, symbol):
            old_state = view.get_unit_state(symbol)
            new_state = {**old_state, "active": False}
            changes = [UnitStateChange(unit=symbol, old_state=old_state, new_state=new_state)]
            return build_transaction(view, [], changes)
    """
    if origin is None:
        origin = TransactionOrigin(
            origin_type=OriginType.CONTRACT,
            source_id="contract",
        )

    # Deep copy state changes to prevent mutation
    copied_changes: Tuple[UnitStateChange, ...] = ()
    if state_changes:
        copied_changes = tuple(
            UnitStateChange(
                unit=sc.unit,
                old_state=copy.deepcopy(sc.old_state),
                new_state=copy.deepcopy(sc.new_state),
            )
            for sc in state_changes
        )

    return PendingTransaction(
        moves=tuple(moves),
        state_changes=copied_changes,
        origin=origin,
        timestamp=view.current_time,
        units_to_create=units_to_create or (),
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of ledger state changes - represents FACT.

    Created by the ledger when executing a PendingTransaction.

    Attributes:
        moves: Tuple of value transfers between wallets
        state_changes: Tuple of unit state changes (with old_state and new_state)
        origin: Who/what created this transaction and why
        timestamp: When the PendingTransaction was created
        intent_id: Content hash from PendingTransaction
        exec_id: Unique execution identifier (ledger + sequence + time)
        ledger_name: Name of the ledger that executed this
        execution_time: When this was executed and logged
        sequence_number: Monotonic sequence within the ledger (for ordering)
        contract_ids: Set of contract IDs from moves (auto-populated)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str
    exec_id: str
    ledger_name: str
    execution_time: datetime
    sequence_number: int
    units_to_create: Tuple['Unit', ...] = ()
    contract_ids: FrozenSet[str] = None

    def __post_init__(self):
        if not self.moves and not self.state_changes and not self.units_to_create:
            raise ValueError("Transaction must have moves, state_changes, or units_to_create")
        if self.contract_ids is None:
            object.__setattr__(
                self, 'contract_ids',
                frozenset(m.contract_id for m in self.moves)
            )

    def __repr__(self) -> str:
        w = 100  # Inner content width
        bar = "─" * w

        def pad(text: str) -> str:
            """Pad or truncate text to exactly w characters."""
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines = [
            "",
            f"┌{bar}┐",
            f"│{pad(' Transaction: ' + self.exec_id)}│",
            f"├{bar}┤",
            f"│{pad('   intent_id      : ' + self.intent_id)}│",
            f"│{pad('   execution_time : ' + str(self.execution_time))}│",
            f"│{pad('   sequence       : ' + str(self.sequence_number))}│",
            f"│{pad('   origin         : ' + str(self.origin))}│",
        ]
        if self.units_to_create:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' Records Created (' + str(len(self.units_to_create)) + '):')}│")
            for unit in self.units_to_create:
                lines.append(f"│{pad('   ' + unit.symbol + ' (' + unit.name + ')')}│")
        lines.append(f"├{bar}┤")
        lines.append(f"│{pad(' Moves (' + str(len(self.moves)) + '):')}│")
        for i, move in enumerate(self.moves):
            move_str = f"   [{i}] {move.quantity} {move.unit_symbol}: {move.source} → {move.dest}"
            lines.append(f"│{pad(move_str)}│")
        if self.state_changes:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' State Changes (' + str(len(self.state_changes)) + '):')}│")
            for sc in self.state_changes:
                lines.append(f"│{pad('   [' + sc.unit + ']')}│")
                for field_name, (old_val, new_val) in sc.changed_fields().items():
                    lines.append(f"│{pad(f'      {field_name}: {old_val!r} → {new_val!r}')}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)


def _freeze_state(state: Optional[UnitState]) -> Tuple[Tuple[str, Any], ...]:
    """
    Convert a mutable state dict to an immutable frozen representation.

    Returns:
        Tuple of (key, value) pairs, sorted by key for determinism
    """
    if not state:
        return ()
    return tuple(sorted(copy.deepcopy(state).items()))


def _thaw_state(frozen_state: Tuple[Tuple[str, Any], ...]) -> UnitState:
    """Convert a frozen state representation back to a mutable dict."""
    return copy.deepcopy(dict(frozen_state))


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Definition of a unit in the ledger: either the pool currency or an
    entity record (pool registry, staker, loan request, loan, verification).

    Attributes:
        symbol: Unique identifier for the unit (e.g., "USD", "LOAN:1").
        name: Human-readable name for the unit.
        unit_type: Category of the unit (CASH, STAKER, LOAN, ...).
        min_balance: Minimum allowed balance in any wallet.
        max_balance: Maximum allowed balance in any wallet.
        decimal_places: Number of decimal places for rounding (None = no rounding).
        _frozen_state: Internal frozen state representation (tuple of key-value pairs).
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: Decimal = Decimal("0")
    max_balance: Decimal = Decimal("Infinity")
    decimal_places: Optional[int] = None
    _frozen_state: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def state(self) -> UnitState:
        """
        Get the unit's state as a mutable dictionary.

        Returns a new dict each time to prevent accidental mutation.
        """
        return _thaw_state(self._frozen_state)

    def round(self, value: Decimal) -> Decimal:
        """
        Round a value to this unit's decimal precision using quantize.

        Returns the value unchanged if decimal_places is None.
        """
        if self.decimal_places is None:
            return value
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        quantizer = Decimal(10) ** -self.decimal_places
        rounding_mode = DECIMAL_ROUNDING.get(self.unit_type, ROUND_HALF_EVEN)
        return value.quantize(quantizer, rounding=rounding_mode)


# ============================================================================
# UNIT FACTORIES
# ============================================================================

def cash(symbol: str, name: str, decimal_places: int = 0) -> Unit:
    """
    Create the pool's cash currency unit.

    Amounts in the pool are whole units of the currency, so the default
    precision is zero decimal places.

    Args:
        symbol: Currency code (e.g., "USD").
        name: Full name of the currency (e.g., "US Dollar").
        decimal_places: Number of decimal places for amounts (default: 0).

    Returns:
        A Unit configured for cash with a large negative minimum balance.
    """
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_CASH,
        decimal_places=decimal_places,
        min_balance=DEFAULT_CASH_MIN_BALANCE,
    )


def entity_unit(symbol: str, name: str, unit_type: str, state: UnitState) -> Unit:
    """
    Create a record unit: a unit that holds no balances, only state.

    Pool entities (stakers, requests, loans, verification records) are
    stored this way so that every change to them flows through the same
    atomic, logged transaction path as cash.
    """
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=unit_type,
        min_balance=Decimal("0"),
        max_balance=Decimal("0"),
        decimal_places=0,
        _frozen_state=_freeze_state(state),
    )


def require_amount(amount: Any, name: str = "amount", allow_zero: bool = False) -> int:
    """
    Validate an integer amount in whole currency units.

    Raises:
        InvalidAmount: If amount is not an int, is negative, or is zero
                       when allow_zero is False.
    """
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount(f"{name} must be an integer, got {amount!r}")
    if amount < 0 or (amount == 0 and not allow_zero):
        qualifier = "non-negative" if allow_zero else "positive"
        raise InvalidAmount(f"{name} must be {qualifier}, got {amount}")
    return amount
