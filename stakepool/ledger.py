"""
ledger.py - Stateful Transactional Ledger Store

The Ledger class is the central state manager for the staking pool.
It is the only module that mutates state, ensuring controlled and auditable changes.

Key responsibilities:
    - Implements LedgerView protocol for safe read-only access by pure functions
    - Executes transactions atomically (all moves and state changes, or none)
    - Rejects state changes built against stale state (optimistic concurrency)
    - Serializes callers through a re-entrant lock so that a read-compute-
      settle-apply cycle never interleaves with another
    - Maintains wallet balances and unit (entity record) definitions
    - Tracks logical time and reconstructs history (clone, clone_at)
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, List, Set, Optional, Tuple, Any
import copy
import threading

from .core import (
    # Types
    Move, Transaction, Unit,
    PendingTransaction,
    ExecuteResult,
    Positions, UnitState, BalanceMap,
    # Constants
    QUANTITY_EPSILON, SYSTEM_WALLET,
    # Exceptions
    LedgerError, UnitNotRegistered, WalletNotRegistered, TransactionRejected,
    # Helper functions
    _freeze_state,
)


class Ledger:
    """
    Transactional ledger with full validation and audit trail.

    Implements the LedgerView protocol, allowing the ledger to be passed to pure
    functions that access only read-only methods.

    Design Principles:
        - Always validates: Every transaction is validated against balance
          constraints, registration, timestamps and stale state. No shortcuts.
        - Always logs: Every transaction is recorded in the audit trail, enabling
          clone_at() for historical state reconstruction.

    Thread Safety:
        execute() and commit() hold ``self.lock``. Services that read state,
        compute a transaction and commit it must hold the same lock across
        the whole cycle (it is re-entrant).

    Example:
        ledger = Ledger("main")
        ledger.register_unit(cash("USD", "US Dollar"))
        ledger.register_wallet("alice")
        ledger.register_wallet("bob")

        tx = build_transaction(ledger, [
            Move(Decimal("100"), "USD", "alice", "bob", "payment_001")
        ])
        result = ledger.execute(tx)
    """

    POSITION_EPSILON = QUANTITY_EPSILON

    def __init__(
        self,
        name: str,
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
    ):
        """
        Create a ledger.

        Args:
            name: Ledger identifier
            initial_time: Starting time for the ledger (default: 1970-01-01)
            verbose: Enable debug output (default: True)
        """
        self.name = name
        self.balances: Dict[str, Dict[str, Decimal]] = {}
        self.units: Dict[str, Unit] = {}
        self.registered_wallets: Set[str] = set()
        self.seen_intent_ids: Set[str] = set()
        self.transaction_log: List[Transaction] = []
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self.verbose = verbose
        self.lock = threading.RLock()
        self._next_sequence: int = 0
        # Inverted index mapping unit -> {wallet -> quantity} for O(1) position lookups
        self._positions_by_unit: Dict[str, Dict[str, Decimal]] = defaultdict(dict)

        self.registered_wallets.add(SYSTEM_WALLET)
        self.balances[SYSTEM_WALLET] = defaultdict(lambda: Decimal("0"))

    # ========================================================================
    # LedgerView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the ledger."""
        return self._current_time

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """
        Get the balance of a specific unit in a wallet.

        Raises:
            WalletNotRegistered: If wallet is not registered
            UnitNotRegistered: If unit is not registered
        """
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return self.balances[wallet_id].get(unit_symbol, Decimal("0"))

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """
        Get a deep copy of a unit's internal state.

        The returned state dictionary can be safely mutated without affecting
        the ledger's internal state.

        Raises:
            UnitNotRegistered: If unit is not registered
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return self.units[unit_symbol].state

    def has_unit(self, unit_symbol: str) -> bool:
        return unit_symbol in self.units

    def get_positions(self, unit_symbol: str) -> Positions:
        """Get all non-zero positions for a specific unit across all wallets."""
        return dict(self._positions_by_unit.get(unit_symbol, {}))

    def list_wallets(self) -> Set[str]:
        """List all registered wallet IDs."""
        return self.registered_wallets.copy()

    def list_units(self) -> List[str]:
        """List all registered unit symbols."""
        return sorted(self.units.keys())

    def get_unit(self, symbol: str) -> Unit:
        """Return the Unit object for a given symbol."""
        if symbol not in self.units:
            raise UnitNotRegistered(f"Unit {symbol} not registered")
        return self.units[symbol]

    def get_wallet_balances(self, wallet_id: str) -> BalanceMap:
        """Get all balances for a wallet."""
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        return dict(self.balances[wallet_id])

    def total_supply(self, unit_symbol: str) -> Decimal:
        """
        Calculate total supply of a unit across all wallets.

        Wallets are sorted before summation to ensure deterministic
        accumulation order.

        Raises:
            UnitNotRegistered: If unit is not registered
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return sum(
            (self.balances[w].get(unit_symbol, Decimal("0")) for w in sorted(self.registered_wallets)),
            Decimal("0"),
        )

    def verify_double_entry(
        self,
        expected_supplies: Dict[str, Decimal] = None,
        tolerance: Decimal = Decimal("1e-9")
    ) -> Dict[str, Any]:
        """
        Verify that conservation laws hold for all units.

        Every move debits one wallet and credits another, so the sum of all
        balances of a unit is constant. Pool cash starts at zero and must
        stay at zero.

        Args:
            expected_supplies: Optional dict mapping unit symbols to expected totals.
            tolerance: Maximum allowed difference for decimal comparisons.

        Returns:
            Dict with keys:
            - 'valid': bool - True if all conservation laws hold
            - 'supplies': Dict[str, Decimal] - Current total supply for each unit
            - 'discrepancies': List[Dict] - Details of any conservation violations

        Example:
            result = ledger.verify_double_entry(expected_supplies={'USD': Decimal("0")})
            assert result['valid'], f"Conservation violated: {result['discrepancies']}"
        """
        supplies = {}
        discrepancies = []

        for unit_symbol in self.units:
            current_supply = self.total_supply(unit_symbol)
            supplies[unit_symbol] = current_supply

            if expected_supplies and unit_symbol in expected_supplies:
                expected = expected_supplies[unit_symbol]
                difference = abs(current_supply - expected)
                if difference > tolerance:
                    discrepancies.append({
                        'unit': unit_symbol,
                        'expected': expected,
                        'actual': current_supply,
                        'difference': difference,
                    })

        if expected_supplies:
            for unit_symbol, expected in expected_supplies.items():
                if unit_symbol not in supplies:
                    discrepancies.append({
                        'unit': unit_symbol,
                        'expected': expected,
                        'actual': Decimal("0"),
                        'difference': abs(expected),
                        'error': 'unit not registered',
                    })

        return {
            'valid': len(discrepancies) == 0,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }

    def is_registered(self, wallet_id: str) -> bool:
        """Check if a wallet is registered."""
        return wallet_id in self.registered_wallets

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the ledger's logical clock to a new time.

        Time can only move forward, never backward. Deadlines (voting
        windows, loan maturities) are compared against this clock.

        Raises:
            ValueError: If new_time is before the current time
        """
        with self.lock:
            if new_time < self._current_time:
                raise ValueError(
                    f"Cannot move time backwards: {new_time} < {self._current_time}"
                )
            self._current_time = new_time

    # ========================================================================
    # REGISTRATION (Mutating)
    # ========================================================================

    def register_wallet(self, wallet_id: str) -> str:
        """
        Register a new wallet in the ledger.

        Raises:
            ValueError: If wallet is already registered
        """
        with self.lock:
            if wallet_id in self.registered_wallets:
                raise ValueError(f"Wallet {wallet_id} already registered")
            self.registered_wallets.add(wallet_id)
            self.balances[wallet_id] = defaultdict(lambda: Decimal("0"))
            return wallet_id

    def ensure_wallet(self, wallet_id: str) -> str:
        """Register a wallet unless it already exists. Returns the wallet_id."""
        with self.lock:
            if wallet_id not in self.registered_wallets:
                self.register_wallet(wallet_id)
            return wallet_id

    def register_unit(self, unit: Unit) -> None:
        """
        Register a new unit in the ledger.

        Raises:
            ValueError: If unit symbol is already registered
        """
        with self.lock:
            if unit.symbol in self.units:
                raise ValueError(f"Unit {unit.symbol} already registered")
            self.units[unit.symbol] = unit
            if self.verbose:
                print(f"📝 Registered: {unit.symbol} ({unit.name}) [{unit.unit_type}]")

    # ========================================================================
    # TRANSACTION EXECUTION (Mutating)
    # ========================================================================

    def _generate_exec_id(self, sequence: int) -> str:
        """
        Generate a unique execution ID.

        Format: exec:{ledger_name}:{sequence:012d}:{timestamp_micros}
        """
        micros = int(self._current_time.timestamp() * 1_000_000)
        return f"exec:{self.name}:{sequence:012d}:{micros}"

    def execute(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Execute a PendingTransaction atomically.

        All moves, record creations and state changes succeed together or
        all fail together. A pending transaction with an intent_id that was
        already applied is not applied twice.

        Returns:
            ExecuteResult.APPLIED if successful
            ExecuteResult.ALREADY_APPLIED if transaction was already executed
            ExecuteResult.REJECTED if validation failed
        """
        with self.lock:
            if pending.is_empty():
                return ExecuteResult.APPLIED

            if pending.intent_id in self.seen_intent_ids:
                if self.verbose:
                    print(f"⚠️  ALREADY_APPLIED: intent_id={pending.intent_id}")
                return ExecuteResult.ALREADY_APPLIED

            valid, reason = self._validate_pending(pending)
            if not valid:
                if self.verbose:
                    print(f"✗ REJECTED: {reason}")
                return ExecuteResult.REJECTED

            sequence = self._next_sequence
            self._next_sequence += 1
            exec_id = self._generate_exec_id(sequence)

            tx = Transaction(
                moves=pending.moves,
                state_changes=pending.state_changes,
                origin=pending.origin,
                timestamp=pending.timestamp,
                intent_id=pending.intent_id,
                exec_id=exec_id,
                ledger_name=self.name,
                execution_time=self._current_time,
                sequence_number=sequence,
                units_to_create=pending.units_to_create,
            )

            for unit in tx.units_to_create:
                self.units[unit.symbol] = unit

            self._execute_moves(tx.moves)

            # Unit is frozen: replace it with a new instance carrying the new state
            for sc in tx.state_changes:
                old_unit = self.units[sc.unit]
                new_state = sc.new_state if isinstance(sc.new_state, dict) else {}
                self.units[sc.unit] = replace(old_unit, _frozen_state=_freeze_state(new_state))

            self.transaction_log.append(tx)
            self.seen_intent_ids.add(pending.intent_id)

            if self.verbose:
                self._print_tx_result(tx, "APPLIED", "✓")
            return ExecuteResult.APPLIED

    def commit(
        self,
        pending: PendingTransaction,
        settle: Optional[Callable[[PendingTransaction], None]] = None,
    ) -> Optional[Transaction]:
        """
        Validate, settle and execute a PendingTransaction as one unit of work.

        ``settle`` is called after validation and before any mutation, with
        the lock held. If it raises, the exception propagates and the ledger
        is untouched. Once it returns, execution cannot fail, because nothing
        else can change the ledger while the lock is held.

        Returns:
            The executed Transaction, or None for an empty pending transaction.

        Raises:
            TransactionRejected: If the ledger refuses the transaction.
            Whatever ``settle`` raises.
        """
        with self.lock:
            if pending.is_empty():
                return None
            if pending.intent_id in self.seen_intent_ids:
                raise TransactionRejected(f"intent {pending.intent_id} already applied")
            valid, reason = self._validate_pending(pending)
            if not valid:
                raise TransactionRejected(reason)

            if settle is not None:
                settle(pending)

            result = self.execute(pending)
            if result != ExecuteResult.APPLIED:
                raise TransactionRejected(f"execution returned {result.value}")
            return self.transaction_log[-1]

    def _print_tx_result(self, tx: Transaction, result: str, icon: str) -> None:
        """Print transaction details with a result line appended."""
        lines = repr(tx).split('\n')
        w = 100
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))
        lines[-1] = f"├{bar}┤"
        lines.append(f"│{pad(' ' + icon + ' ' + result)}│")
        lines.append(f"└{bar}┘")
        print("\n".join(lines))

    def _validate_pending(self, pending: PendingTransaction) -> Tuple[bool, str]:
        """
        Validate pending transaction against all constraints.

        Checks performed:
        1. Timestamp validation (transaction must not be from the future)
        2. Records to create must not exist yet
        3. Unit and wallet registration
        4. Balance constraint validation (min/max balance limits)
        5. Stale state: every old_state must equal the stored state

        Returns:
            Tuple of (success: bool, reason: str)
        """
        if pending.timestamp > self._current_time:
            return False, "future timestamp"

        created: Dict[str, Unit] = {}
        for unit in pending.units_to_create:
            if unit.symbol in self.units or unit.symbol in created:
                return False, f"unit already registered: {unit.symbol}"
            created[unit.symbol] = unit

        def lookup(symbol: str) -> Optional[Unit]:
            return self.units.get(symbol) or created.get(symbol)

        for move in pending.moves:
            if lookup(move.unit_symbol) is None:
                return False, f"unit not registered: {move.unit_symbol}"
            if not self.is_registered(move.source):
                return False, f"wallet not registered: {move.source}"
            if not self.is_registered(move.dest):
                return False, f"wallet not registered: {move.dest}"

        net: Dict[Tuple[str, str], Decimal] = {}
        for move in pending.moves:
            unit = lookup(move.unit_symbol)
            key_src = (move.source, move.unit_symbol)
            key_dst = (move.dest, move.unit_symbol)
            net[key_src] = unit.round(net.get(key_src, Decimal("0")) - move.quantity)
            net[key_dst] = unit.round(net.get(key_dst, Decimal("0")) + move.quantity)

        # SYSTEM_WALLET is exempt from balance validation
        for (wallet, unit_sym), delta in net.items():
            if wallet == SYSTEM_WALLET:
                continue
            current = self.balances[wallet].get(unit_sym, Decimal("0"))
            unit = lookup(unit_sym)
            proposed = unit.round(current + delta)
            if proposed < unit.min_balance:
                return False, f"{wallet} {unit_sym}: {proposed} < min {unit.min_balance}"
            if proposed > unit.max_balance:
                return False, f"{wallet} {unit_sym}: {proposed} > max {unit.max_balance}"

        seen_changes: Set[str] = set()
        for sc in pending.state_changes:
            if sc.unit not in self.units:
                return False, f"state change for unregistered unit: {sc.unit}"
            if sc.unit in seen_changes:
                return False, f"multiple state changes for {sc.unit}"
            seen_changes.add(sc.unit)
            current_state = self.units[sc.unit].state
            old_state = sc.old_state if isinstance(sc.old_state, dict) else {}
            if old_state != current_state:
                stale = sorted(
                    key for key in set(old_state) | set(current_state)
                    if old_state.get(key) != current_state.get(key)
                )
                return False, f"stale state for {sc.unit}: {', '.join(stale)}"

        return True, ""

    def _update_position_index(self, wallet_id: str, unit_symbol: str, quantity: Decimal) -> None:
        """Update the inverted position index after a balance change."""
        if abs(quantity) > self.POSITION_EPSILON:
            self._positions_by_unit[unit_symbol][wallet_id] = quantity
        else:
            self._positions_by_unit[unit_symbol].pop(wallet_id, None)

    def _execute_moves(self, moves) -> None:
        """Apply all moves to wallet balances and update the position index."""
        for move in moves:
            unit = self.units[move.unit_symbol]
            new_src_balance = unit.round(
                self.balances[move.source][move.unit_symbol] - move.quantity
            )
            self.balances[move.source][move.unit_symbol] = new_src_balance
            self._update_position_index(move.source, move.unit_symbol, new_src_balance)
            new_dst_balance = unit.round(
                self.balances[move.dest][move.unit_symbol] + move.quantity
            )
            self.balances[move.dest][move.unit_symbol] = new_dst_balance
            self._update_position_index(move.dest, move.unit_symbol, new_dst_balance)

    # ========================================================================
    # HISTORY
    # ========================================================================

    def clone(self) -> Ledger:
        """
        Create a deep copy of this ledger.

        All state is fully independent: modifications to the clone will not
        affect the original ledger, and vice versa. The clone gets its own lock.
        """
        with self.lock:
            cloned = Ledger.__new__(Ledger)
            cloned.name = self.name
            cloned._current_time = self._current_time
            cloned.verbose = self.verbose
            cloned.lock = threading.RLock()

            # Units are frozen and thaw to deep copies, so sharing them is safe
            cloned.units = dict(self.units)

            cloned.registered_wallets = self.registered_wallets.copy()
            cloned.seen_intent_ids = self.seen_intent_ids.copy()
            cloned.transaction_log = list(self.transaction_log)
            cloned._next_sequence = self._next_sequence

            cloned.balances = {}
            for wallet, bals in self.balances.items():
                cloned.balances[wallet] = defaultdict(lambda: Decimal("0"), bals)

            cloned._positions_by_unit = defaultdict(dict)
            for unit_symbol, positions in self._positions_by_unit.items():
                cloned._positions_by_unit[unit_symbol] = dict(positions)

            return cloned

    def clone_at(self, target_time: datetime) -> Ledger:
        """
        Create a deep copy of this ledger as it existed at a specific past time.

        Walks backward through all transactions executed after target_time and
        reverses them: restores balances, restores old_state from each state
        change, and removes records created by those transactions.

        Raises:
            ValueError: If target_time is in the future
        """
        with self.lock:
            if target_time > self._current_time:
                raise ValueError(f"Target time {target_time} is in the future")

            cloned = self.clone()
            cloned._current_time = target_time

            cloned.transaction_log = [
                tx for tx in self.transaction_log
                if tx.execution_time <= target_time
            ]
            cloned.seen_intent_ids = {tx.intent_id for tx in cloned.transaction_log}
            cloned._next_sequence = len(cloned.transaction_log)

            for tx in reversed(self.transaction_log):
                if tx.execution_time <= target_time:
                    break

                for move in tx.moves:
                    unit = cloned.units.get(move.unit_symbol)
                    if unit is None:
                        raise LedgerError(f"Cannot unwind: unit {move.unit_symbol} not found in cloned ledger")
                    new_src = unit.round(
                        cloned.balances[move.source][move.unit_symbol] + move.quantity
                    )
                    new_dst = unit.round(
                        cloned.balances[move.dest][move.unit_symbol] - move.quantity
                    )
                    cloned.balances[move.source][move.unit_symbol] = new_src
                    cloned.balances[move.dest][move.unit_symbol] = new_dst
                    cloned._update_position_index(move.source, move.unit_symbol, new_src)
                    cloned._update_position_index(move.dest, move.unit_symbol, new_dst)

                for sc in tx.state_changes:
                    if sc.unit in cloned.units:
                        restored_state = copy.deepcopy(
                            sc.old_state if isinstance(sc.old_state, dict) else {}
                        )
                        cloned.units[sc.unit] = replace(
                            cloned.units[sc.unit], _frozen_state=_freeze_state(restored_state)
                        )

                for unit in tx.units_to_create:
                    cloned.units.pop(unit.symbol, None)
                    for wallet in cloned.registered_wallets:
                        cloned.balances[wallet].pop(unit.symbol, None)
                    cloned._positions_by_unit.pop(unit.symbol, None)

            return cloned
