import logging
from decimal import Decimal

import pytest

from tripsplit.balances import (
    EPSILON,
    compute_balances,
    compute_debt_matrix,
    compute_settlements,
    plan_settlements,
)
from tripsplit.models import Expense, Member, MemberBalance, Share, Transfer

D = Decimal


def expense(payer, amount, shares):
    return Expense(
        amount=D(amount),
        payer_id=payer,
        shares=[Share(member_id=m, share_amount=D(a)) for m, a in shares],
    )


def transfer(frm, to, amount):
    return Transfer(amount=D(amount), from_member_id=frm, to_member_id=to)


def balance(mid, amount):
    return MemberBalance(member_id=mid, member_name=mid.upper(), paid=D(0), owed=D(0), balance=D(amount))


@pytest.fixture
def members():
    return [
        Member(id="a", name="Alice", email="alice@example.com"),
        Member(id="b", name="Bob", email="bob@example.com"),
        Member(id="c", name=None, email="carol@example.com"),
    ]


@pytest.fixture
def trip_expenses():
    return [
        expense("a", "90", [("a", "30"), ("b", "30"), ("c", "30")]),
        expense("b", "30", [("a", "10"), ("b", "10"), ("c", "10")]),
    ]


def test_balances_scenario(members, trip_expenses):
    balances = compute_balances(members, trip_expenses, [])
    assert [b.member_id for b in balances] == ["a", "b", "c"]
    by_id = {b.member_id: b for b in balances}
    assert by_id["a"].paid == D("90")
    assert by_id["a"].owed == D("40")
    assert by_id["a"].balance == D("50")
    assert by_id["b"].balance == D("-10")
    assert by_id["c"].balance == D("-40")
    assert by_id["c"].member_name == "carol@example.com"


def test_settlements_scenario(members, trip_expenses):
    settlements = compute_settlements(compute_balances(members, trip_expenses, []))
    assert [(s.from_name, s.to_name, s.amount) for s in settlements] == [
        ("carol@example.com", "Alice", D("40.00")),
        ("Bob", "Alice", D("10.00")),
    ]
    assert settlements[0].from_member_id == "c"
    assert settlements[0].to_member_id == "a"


def test_transfer_nets_out_debt(members, trip_expenses):
    balances = compute_balances(members, trip_expenses, [transfer("c", "a", "40")])
    by_id = {b.member_id: b for b in balances}
    assert by_id["a"].paid == D("90")
    assert by_id["a"].owed == D("80")
    assert by_id["a"].balance == D("10")
    assert by_id["b"].balance == D("-10")
    assert by_id["c"].paid == D("40")
    assert by_id["c"].balance == D("0")

    settlements = compute_settlements(balances)
    assert len(settlements) == 1
    assert (settlements[0].from_member_id, settlements[0].to_member_id, settlements[0].amount) == ("b", "a", D("10.00"))


def test_balances_sorted_descending_with_stable_ties():
    people = [Member(id=x, email=f"{x}@example.com") for x in ("p", "q", "r", "s")]
    exps = [expense("s", "20", [("p", "10"), ("r", "10")])]
    balances = compute_balances(people, exps, [])
    # s is owed 20; q is untouched (0); p and r owe 10 each and keep input order
    assert [b.member_id for b in balances] == ["s", "q", "p", "r"]


def test_member_without_activity_is_zero(members):
    balances = compute_balances(members, [], [])
    assert all(b.paid == 0 and b.owed == 0 and b.balance == 0 for b in balances)
    assert [b.member_id for b in balances] == ["a", "b", "c"]
    assert compute_settlements(balances) == []


def test_unknown_member_references_are_ignored(members):
    exps = [
        expense("ghost", "50", [("a", "25"), ("ghost", "25")]),
        expense("a", "20", [("a", "10"), ("nobody", "10")]),
    ]
    balances = compute_balances(members, exps, [transfer("ghost", "b", "5"), transfer("c", "ghost", "7")])
    by_id = {b.member_id: b for b in balances}
    assert by_id["a"].paid == D("20")
    assert by_id["a"].owed == D("35")
    assert by_id["b"].owed == D("5")
    assert by_id["c"].paid == D("7")


def test_expense_without_shares_only_credits_payer(members):
    balances = compute_balances(members, [expense("b", "12.50", [])], [])
    by_id = {b.member_id: b for b in balances}
    assert by_id["b"].balance == D("12.50")
    assert by_id["a"].balance == 0
    assert balances[0].member_id == "b"


def test_single_member_has_nothing_to_settle():
    solo = [Member(id="solo", name="Solo", email="solo@example.com")]
    exps = [expense("solo", "80", [("solo", "80")]), expense("solo", "15.25", [("solo", "15.25")])]
    balances = compute_balances(solo, exps, [])
    assert balances[0].balance == 0
    assert compute_settlements(balances) == []


def test_conservation_with_uneven_split(members):
    exps = [
        expense("a", "100", [("a", "33.34"), ("b", "33.33"), ("c", "33.33")]),
        expense("c", "47.10", [("b", "23.55"), ("c", "23.55")]),
    ]
    balances = compute_balances(members, exps, [transfer("b", "a", "12.34")])
    assert abs(sum(b.balance for b in balances)) < EPSILON


def test_inputs_are_not_mutated(members, trip_expenses):
    snapshot = [e.to_dict() for e in trip_expenses]
    member_snapshot = [m.to_dict() for m in members]
    transfers = [transfer("c", "a", "5")]
    balances = compute_balances(members, trip_expenses, transfers)
    before = list(balances)
    plan_settlements(balances)
    compute_debt_matrix([m.id for m in members], trip_expenses)
    assert [e.to_dict() for e in trip_expenses] == snapshot
    assert [m.to_dict() for m in members] == member_snapshot
    assert transfers[0].amount == D("5")
    assert balances == before


def test_repeated_calls_are_identical(members, trip_expenses):
    transfers = [transfer("b", "a", "3.33")]
    first = compute_balances(members, trip_expenses, transfers)
    second = compute_balances(members, trip_expenses, transfers)
    assert first == second
    assert compute_settlements(first) == compute_settlements(second)


def test_settlements_drive_balances_to_zero():
    people = [Member(id=x, name=x.upper(), email=f"{x}@example.com") for x in "abcde"]
    exps = [
        expense("a", "100", [("a", "20"), ("b", "20"), ("c", "20"), ("d", "20"), ("e", "20")]),
        expense("b", "64.20", [("c", "21.40"), ("d", "21.40"), ("e", "21.40")]),
        expense("e", "33.33", [("a", "11.11"), ("b", "11.11"), ("e", "11.11")]),
    ]
    balances = compute_balances(people, exps, [transfer("d", "a", "10")])
    settlements = compute_settlements(balances)

    remaining = {b.member_id: b.balance for b in balances}
    for s in settlements:
        remaining[s.from_member_id] += s.amount
        remaining[s.to_member_id] -= s.amount
    assert all(abs(v) < EPSILON for v in remaining.values())

    creditors = sum(1 for b in balances if b.balance > EPSILON)
    debtors = sum(1 for b in balances if b.balance < -EPSILON)
    assert len(settlements) <= creditors + debtors - 1


def test_greedy_matching_order_and_ties():
    balances = [balance("a", "30"), balance("b", "20"), balance("c", "-25"), balance("d", "-25")]
    settlements = compute_settlements(balances)
    assert [(s.from_member_id, s.to_member_id, s.amount) for s in settlements] == [
        ("c", "a", D("25.00")),
        ("d", "a", D("5.00")),
        ("d", "b", D("20.00")),
    ]


def test_amounts_rounded_half_up_to_cents():
    settlements = compute_settlements([balance("a", "10.005"), balance("b", "-10.005")])
    assert len(settlements) == 1
    assert settlements[0].amount == D("10.01")
    assert settlements[0].amount.as_tuple().exponent == -2


def test_balances_below_epsilon_are_settled():
    plan = plan_settlements([balance("a", "0.005"), balance("b", "-0.005")])
    assert plan.settlements == ()
    assert plan.consistent


def test_mismatched_totals_report_residual(caplog):
    balances = [balance("a", "50"), balance("b", "-30")]
    with caplog.at_level(logging.WARNING, logger="tripsplit.balances"):
        plan = plan_settlements(balances)
    assert [(s.from_member_id, s.to_member_id, s.amount) for s in plan.settlements] == [("b", "a", D("30.00"))]
    assert not plan.consistent
    assert plan.unsettled == {"a": D("20")}
    assert "unsettled" in caplog.text
    # the list-returning entry point still just returns what it could match
    assert len(compute_settlements(balances)) == 1


def test_residual_on_debtor_side_is_negative():
    plan = plan_settlements([balance("a", "10"), balance("b", "-10"), balance("c", "-4")])
    assert plan.unsettled == {"c": D("-4")}


def test_debt_matrix_is_gross_and_skips_self_shares(members):
    exps = [
        expense("a", "90", [("a", "30"), ("b", "30"), ("c", "30")]),
        expense("b", "40", [("a", "20"), ("b", "20")]),
        expense("a", "10", [("b", "10")]),
    ]
    matrix = compute_debt_matrix([m.id for m in members], exps)
    assert set(matrix) == {"a", "b", "c"}
    assert matrix["b"] == {"a": D("40")}
    assert matrix["c"] == {"a": D("30")}
    # not netted: a owes b for the second expense even though b owes a more
    assert matrix["a"] == {"b": D("20")}


def test_debt_matrix_ignores_unknown_debtors(members):
    exps = [expense("a", "20", [("zed", "10"), ("b", "10")])]
    matrix = compute_debt_matrix(["a", "b"], exps)
    assert matrix == {"a": {}, "b": {"a": D("10")}}


def test_cent_sized_remainder_is_not_emitted():
    # a keeps exactly 0.01 after paying off b; that step is skipped but both sides still move on
    plan = plan_settlements([balance("a", "10.01"), balance("b", "-10"), balance("c", "-5")])
    assert [(s.from_member_id, s.to_member_id, s.amount) for s in plan.settlements] == [("b", "a", D("10.00"))]
    assert all(s.amount > EPSILON for s in plan.settlements)
    assert plan.unsettled == {"c": D("-4.99")}
