"""
Units module - Entity records of the staking pool.

Each record is a ledger unit whose state is the entity:
- POOL registry with pool-wide totals, id counters and the blacklist
- STAKER records with staked and locked amounts
- REQUEST records with their ordered votes
- LOAN records with the lender snapshot taken at quorum
- ORACLE and VERIFICATION records of the risk oracle

All factories and compute functions are re-exported here for convenience.
"""

# Pool registry
from .registry import (
    POOL_SYMBOL,
    PoolTerms,
    PoolState,
    create_pool_unit,
    load_pool,
    calculate_required_votes,
    add_to_blacklist,
    is_blacklisted,
)

# Stake manager
from .staker import (
    StakerState,
    staker_symbol,
    load_staker,
    create_staker_unit,
    calculate_eligibility,
    calculate_lock,
    calculate_release,
    is_eligible,
    compute_stake,
    compute_withdrawal,
)

# Voting engine
from .loan_request import (
    RequestStatus,
    Vote,
    LoanRequest,
    request_symbol,
    load_loan_request,
    create_loan_request_unit,
    request_status,
    calculate_vote,
    quorum_reached,
    compute_loan_request,
    list_requests,
)
from .voting import compute_vote

# Loan ledger
from .loan import (
    LoanStatus,
    Loan,
    loan_symbol,
    load_loan,
    create_loan_unit,
    loan_status,
    calculate_lender_shares,
    calculate_contributions,
    calculate_distribution,
    plan_loan_creation,
    compute_repayment,
    compute_default,
    list_loans,
)

# Risk oracle
from .verification import (
    ORACLE_SYMBOL,
    Verification,
    verification_symbol,
    create_oracle_unit,
    load_verifiers,
    load_verification,
    calculate_risk_note,
    get_risk_note,
    compute_verification_request,
    compute_verify,
    compute_add_verifier,
    compute_remove_verifier,
)
