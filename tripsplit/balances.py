"""
balances.py - balance and settlement engine

Pure functions over in-memory records:
 - compute_balances: fold expenses, shares and transfers into per-member
   paid / owed / balance, sorted by balance (largest creditor first)
 - compute_debt_matrix: gross "who owes whom" ledger built from expense
   shares alone (not netted, transfers ignored)
 - compute_settlements / plan_settlements: greedy matching of creditors
   against debtors producing the suggested "X pays Y" list

Nothing here performs I/O or mutates its arguments. Unknown member ids in
expenses or transfers are ignored; validation is the caller's job.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Sequence
import logging

from tripsplit.models import (
    CENT,
    ZERO,
    Expense,
    Member,
    MemberBalance,
    Settlement,
    SettlementPlan,
    Transfer,
    to_decimal,
)

__all__ = [
    "EPSILON",
    "compute_balances",
    "compute_debt_matrix",
    "compute_settlements",
    "plan_settlements",
    "to_decimal",
]

logger = logging.getLogger(__name__)

# balances and settlement amounts below this are treated as settled
EPSILON = CENT


def compute_balances(
    members: Sequence[Member],
    expenses: Iterable[Expense],
    transfers: Iterable[Transfer],
) -> List[MemberBalance]:
    """
    Compute one MemberBalance per member, ordered by balance descending.

    - the payer of an expense gets the full amount added to `paid`
    - each share adds its amount to that member's `owed`
    - a transfer adds to the sender's `paid` and to the receiver's `owed`,
      which cancels the debt it pays off
    Ties keep the input member order (sorted() is stable, also with reverse).
    """
    paid: Dict[str, Decimal] = {}
    owed: Dict[str, Decimal] = {}
    for m in members:
        paid[m.id] = ZERO
        owed[m.id] = ZERO

    for e in expenses:
        if e.payer_id in paid:
            paid[e.payer_id] += e.amount
        for s in e.shares:
            if s.member_id in owed:
                owed[s.member_id] += s.share_amount

    for t in transfers:
        if t.from_member_id in paid:
            paid[t.from_member_id] += t.amount
        if t.to_member_id in owed:
            owed[t.to_member_id] += t.amount

    result = [
        MemberBalance(
            member_id=m.id,
            member_name=m.display_name,
            paid=paid[m.id],
            owed=owed[m.id],
            balance=paid[m.id] - owed[m.id],
        )
        for m in members
    ]
    return sorted(result, key=lambda b: b.balance, reverse=True)


def compute_debt_matrix(
    member_ids: Iterable[str],
    expenses: Iterable[Expense],
) -> Dict[str, Dict[str, Decimal]]:
    """
    Build {debtor_id: {creditor_id: amount}} from expense shares.

    Every member gets a row (possibly empty). A share adds to the row of its
    member under the column of the expense payer; self-shares are skipped.
    Cells in both directions between two members are kept as-is.
    """
    matrix: Dict[str, Dict[str, Decimal]] = {mid: {} for mid in member_ids}

    for e in expenses:
        if not e.payer_id:
            continue
        for s in e.shares:
            if s.member_id == e.payer_id:
                continue
            row = matrix.get(s.member_id)
            if row is None:
                continue
            row[e.payer_id] = row.get(e.payer_id, ZERO) + s.share_amount
    return matrix


def _round_cents(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def plan_settlements(balances: Sequence[MemberBalance]) -> SettlementPlan:
    """
    Greedily match creditors against debtors.

    Both sides are sorted by outstanding amount, largest first, and walked
    with one cursor each; every step settles min(creditor, debtor) and moves
    past whichever side dropped below EPSILON. This yields at most
    len(creditors) + len(debtors) - 1 settlements.

    If the creditor and debtor totals disagree, whatever is left after the
    walk is returned in `unsettled` (signed like a balance) and logged.
    """
    # working copies: [member_id, name, remaining]
    creditors = [
        [b.member_id, b.member_name, b.balance]
        for b in balances
        if b.balance > EPSILON
    ]
    debtors = [
        [b.member_id, b.member_name, -b.balance]
        for b in balances
        if b.balance < -EPSILON
    ]
    creditors.sort(key=lambda x: x[2], reverse=True)
    debtors.sort(key=lambda x: x[2], reverse=True)

    settlements: List[Settlement] = []
    i = j = 0
    while i < len(creditors) and j < len(debtors):
        c_id, c_name, c_amt = creditors[i]
        d_id, d_name, d_amt = debtors[j]
        amount = min(c_amt, d_amt)
        if amount > EPSILON:
            settlements.append(
                Settlement(
                    from_name=d_name,
                    to_name=c_name,
                    amount=_round_cents(amount),
                    from_member_id=d_id,
                    to_member_id=c_id,
                )
            )
        creditors[i][2] = c_amt - amount
        debtors[j][2] = d_amt - amount
        if creditors[i][2] < EPSILON:
            i += 1
        if debtors[j][2] < EPSILON:
            j += 1

    unsettled: Dict[str, Decimal] = {}
    for c_id, _, c_amt in creditors[i:]:
        if c_amt >= EPSILON:
            unsettled[c_id] = c_amt
    for d_id, _, d_amt in debtors[j:]:
        if d_amt >= EPSILON:
            unsettled[d_id] = -d_amt

    if unsettled:
        logger.warning(
            "Creditor and debtor totals differ; %d member(s) left unsettled: %s",
            len(unsettled),
            ", ".join(f"{mid}={amt}" for mid, amt in unsettled.items()),
        )
    logger.debug(
        "Planned %d settlement(s) for %d creditor(s) and %d debtor(s)",
        len(settlements), len(creditors), len(debtors),
    )
    return SettlementPlan(settlements=tuple(settlements), unsettled=unsettled)


def compute_settlements(balances: Sequence[MemberBalance]) -> List[Settlement]:
    """Suggested payments that bring every balance to within EPSILON of zero."""
    return list(plan_settlements(balances).settlements)
