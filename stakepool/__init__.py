"""
stakepool - Uncollateralized Staking Pool

Stakers deposit capital, vote with their stake on loan requests, and share
repayments in proportion to the stake they voted with. Borrowers who
default are blacklisted for good.

Usage:
    from datetime import datetime, timedelta
    from stakepool import Ledger, StakePool

    ledger = Ledger("pool", datetime(2025, 1, 1), verbose=False)
    pool = StakePool(ledger)
    pool.stake("alice", 1000)

    ledger.advance_time(datetime(2025, 1, 9))
    request_id = pool.request_loan("bob", 100, 10, timedelta(days=30))
    loan_id = pool.vote(request_id, "alice", True)   # quorum: loan disbursed

    pool.repay_loan(loan_id, 110)                     # alice receives 110
"""

# Core types
from .core import (
    LedgerView,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    Unit,
    UnitStateChange,
    ExecuteResult,
    PoolConfig,
    cash,
    entity_unit,
    SYSTEM_WALLET,
    DEFAULT_POOL_WALLET,
    UNIT_TYPE_CASH,
    UNIT_TYPE_POOL,
    UNIT_TYPE_STAKER,
    UNIT_TYPE_LOAN_REQUEST,
    UNIT_TYPE_LOAN,
    UNIT_TYPE_ORACLE,
    UNIT_TYPE_VERIFICATION,
)

# Errors
from .core import (
    LedgerError,
    UnitNotRegistered,
    WalletNotRegistered,
    TransactionRejected,
    ValidationError,
    InvalidAmount,
    InvalidDuration,
    InvalidScore,
    AmountExceedsPool,
    InsufficientPayment,
    InsufficientFreeStake,
    AuthorizationError,
    NotVerifier,
    NotOwner,
    Blacklisted,
    NotEligible,
    UnverifiedBorrower,
    StateConflict,
    DuplicateVote,
    AlreadyExecuted,
    QuorumNotMet,
    LoanNotActive,
    VotingClosed,
    NotYetExpired,
    AlreadyRequested,
    VerificationNotRequested,
    EntityNotFound,
    UnknownRequest,
    UnknownLoan,
    SettlementError,
)

# Ledger
from .ledger import Ledger

# Settlement gateway
from .settlement import (
    Transfer,
    SettlementGateway,
    InstantSettlement,
    settlement_hook,
    transfers_from_moves,
)

# Services
from .pool import StakePool
from .oracle import CreditVerification

# Entity records
from .units import (
    StakerState,
    LoanRequest,
    RequestStatus,
    Vote,
    Loan,
    LoanStatus,
    Verification,
)
