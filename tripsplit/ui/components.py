"""
components.py - reusable Streamlit components / forms / displays

This module contains pure-UI helpers used by the dashboard:
 - display_trip_form / display_member_form
 - display_expense_form(members, currency, on_submit)
 - display_transfer_form(members, currency, on_submit)
 - display_expense_list / balances / debt matrix / settlement suggestions

The expense form enforces the same rules as the tracker so most mistakes are
caught before submission:
 - amount > 0
 - at least one participant selected
 - if custom shares selected, per-person shares must be >= 0 and sum == amount (to the cent)
Anything the tracker still rejects comes back as ValueError and is shown
with st.error by the dashboard.
"""

from dataclasses import dataclass
from decimal import Decimal
from io import BytesIO
from typing import Callable, Dict, List, Optional
import datetime

import altair as alt
import pandas as pd
import streamlit as st

from tripsplit.models import Expense, MemberBalance, SettlementPlan, Settlement, Transfer


# Trigger a Streamlit rerun in a way compatible with multiple Streamlit versions.
def _trigger_rerun():
    if hasattr(st, "rerun"):
        st.rerun()
    elif hasattr(st, "experimental_rerun"):
        st.experimental_rerun()


@dataclass
class ExpenseInput:
    """Lightweight container passed to the on_submit callback."""
    amount: float
    payer_id: str
    participant_ids: List[str]
    description: str
    shares: Dict[str, float]
    date: str  # ISO date string


@dataclass
class TransferInput:
    from_member_id: str
    to_member_id: str
    amount: float
    date: str


def _fmt(amount, currency: str = "") -> str:
    text = f"{Decimal(amount):,.2f}"
    return f"{text} {currency}".strip()


def display_trip_form(name: str, currency: str, on_submit: Callable[[str, str], None]):
    st.header("Trip")
    with st.form(key="trip_form"):
        new_name = st.text_input("Trip name", value=name)
        new_currency = st.text_input("Currency", value=currency, max_chars=5)
        if st.form_submit_button("Save"):
            on_submit(new_name, new_currency)
            st.success("Trip saved.")


def display_member_form(on_submit: Callable[[str, str], None]):
    st.header("Add Member")
    with st.form(key="member_form", clear_on_submit=True):
        name = st.text_input("Name (optional)")
        email = st.text_input("Email")
        if st.form_submit_button("Add Member"):
            if not email.strip():
                st.error("Email is required.")
                return
            if on_submit(name, email) is not None:
                st.success(f"{name or email} added.")


def display_expense_form(
    members: Dict[str, str],
    currency: str,
    on_submit: Callable[[ExpenseInput], None],
    default_date: Optional[datetime.date] = None,
):
    """
    Display the 'Add Expense' form.

    Parameters:
      - members: member id -> display name, in trip order
      - currency: trip currency label, display only
      - on_submit: callback invoked with ExpenseInput when the form validates
    """
    st.header("Add Expense")
    if not members:
        st.info("Add members to the trip first.")
        return
    ids = list(members)
    with st.form(key="expense_form"):
        amount = st.number_input(f"Amount ({currency})", min_value=0.0, format="%.2f")
        payer_id = st.selectbox("Paid by", options=ids, format_func=members.get)
        # everybody participates unless deselected
        participant_ids = st.multiselect("Split between", options=ids, default=ids, format_func=members.get)
        date_val = st.date_input("Date", value=default_date or datetime.date.today())
        description = st.text_input("Description")

        split_mode = st.radio("Split mode", options=["Equal split", "Custom shares"])
        custom_shares: Dict[str, float] = {}
        if split_mode == "Custom shares":
            st.write("Enter custom share amounts (must sum to total amount):")
            for mid in participant_ids:
                custom_shares[mid] = st.number_input(
                    f"Share for {members[mid]}", min_value=0.0, format="%.2f", key=f"share_{mid}"
                )

        submit_button = st.form_submit_button("Add Expense")

        if submit_button:
            if amount <= 0:
                st.error("Amount must be greater than 0.")
                return
            if not participant_ids:
                st.error("At least one participant is required.")
                return

            shares: Dict[str, float] = {}
            if split_mode == "Custom shares":
                total_shares = round(sum(custom_shares.get(mid, 0.0) for mid in participant_ids), 2)
                if abs(total_shares - round(amount, 2)) > 0.005:
                    st.error(f"Custom shares sum to {total_shares:.2f} but amount is {amount:.2f}. Adjust shares.")
                    return
                shares = {mid: round(custom_shares[mid], 2) for mid in participant_ids}

            added = on_submit(ExpenseInput(
                amount=round(amount, 2),
                payer_id=payer_id,
                participant_ids=list(participant_ids),
                description=description.strip(),
                shares=shares,
                date=date_val.isoformat(),
            ))
            if added is not None:
                st.success("Expense added.")


def display_transfer_form(
    members: Dict[str, str],
    currency: str,
    on_submit: Callable[[TransferInput], None],
):
    """Record cash handed directly from one member to another."""
    st.header("Record Transfer")
    if len(members) < 2:
        st.info("A transfer needs at least two members.")
        return
    ids = list(members)
    with st.form(key="transfer_form", clear_on_submit=True):
        from_id = st.selectbox("From", options=ids, format_func=members.get)
        to_id = st.selectbox("To", options=ids, index=1, format_func=members.get)
        amount = st.number_input(f"Amount ({currency})", min_value=0.0, format="%.2f")
        date_val = st.date_input("Date", value=datetime.date.today())
        if st.form_submit_button("Record Transfer"):
            if from_id == to_id:
                st.error("Cannot transfer to the same member.")
                return
            if amount <= 0:
                st.error("Amount must be greater than 0.")
                return
            if on_submit(TransferInput(from_id, to_id, round(amount, 2), date_val.isoformat())) is not None:
                st.success("Transfer recorded.")


def display_expense_list(
    expenses: List[Expense],
    transfers: List[Transfer],
    names: Dict[str, str],
    currency: str,
    on_delete_expense: Optional[Callable[[str], bool]] = None,
):
    """
    Render expenses and transfers as tables and provide an XLSX export button.

    The exported workbook contains one sheet per table.
    """
    st.header("Expenses")
    if not expenses and not transfers:
        st.write("No expenses recorded.")
        return

    exp_rows = []
    for e in expenses:
        exp_rows.append({
            "id": e.id,
            "date": e.date,
            "description": e.description,
            "amount": float(e.amount),
            "paid by": names.get(e.payer_id, e.payer_id),
            "split between": ", ".join(names.get(s.member_id, s.member_id) for s in e.shares),
        })
    exp_df = pd.DataFrame(exp_rows, columns=["id", "date", "description", "amount", "paid by", "split between"])
    st.dataframe(exp_df.style.format({"amount": "{:.2f}"}), use_container_width=True)
    st.markdown(f"**Total spent: {_fmt(sum(e.amount for e in expenses), currency)}**")

    tr_rows = [
        {
            "id": t.id,
            "date": t.date,
            "from": names.get(t.from_member_id, t.from_member_id),
            "to": names.get(t.to_member_id, t.to_member_id),
            "amount": float(t.amount),
        }
        for t in transfers
    ]
    tr_df = pd.DataFrame(tr_rows, columns=["id", "date", "from", "to", "amount"])
    if transfers:
        st.subheader("Transfers")
        st.dataframe(tr_df.style.format({"amount": "{:.2f}"}), use_container_width=True)

    buffer = BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        exp_df.to_excel(writer, index=False, sheet_name="expenses")
        tr_df.to_excel(writer, index=False, sheet_name="transfers")
    st.download_button(
        label="Download as XLSX",
        data=buffer.getvalue(),
        file_name="trip_expenses.xlsx",
        mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    )

    if on_delete_expense and expenses:
        with st.expander("Delete an expense"):
            labels = {e.id: f"{e.date} {e.description} ({_fmt(e.amount, currency)})" for e in expenses}
            sel = st.selectbox("Expense", options=list(labels), format_func=labels.get)
            if st.button("Delete expense"):
                if on_delete_expense(sel):
                    st.success("Expense deleted.")
                    _trigger_rerun()
                else:
                    st.error("Expense not found.")


def display_balances(balances: List[MemberBalance], currency: str):
    """Balance list (paid / net position) next to a chart of who is owed and who owes."""
    st.header("Balance Summary")
    if not balances:
        st.write("No members yet.")
        return

    col1, col2 = st.columns(2)
    with col1:
        for b in balances:
            if b.balance > Decimal("0.01"):
                status = f":green[is owed {_fmt(b.balance, currency)}]"
            elif b.balance < Decimal("-0.01"):
                status = f":red[owes {_fmt(-b.balance, currency)}]"
            else:
                status = "settled"
            st.markdown(f"**{b.member_name}**: {status}")
            st.caption(f"Paid: {_fmt(b.paid, currency)}")

    with col2:
        chart_rows = [
            {"member": b.member_name, "balance": float(b.balance)}
            for b in balances
            if abs(b.balance) > Decimal("0.01")
        ]
        if not chart_rows:
            st.write("No expenses yet")
            return
        df = pd.DataFrame(chart_rows)
        chart = alt.Chart(df).mark_bar().encode(
            x=alt.X("balance:Q", title=f"Balance ({currency})"),
            y=alt.Y("member:N", sort="-x", title=None),
            color=alt.condition(alt.datum.balance > 0, alt.value("#10b981"), alt.value("#ef4444")),
            tooltip=[
                alt.Tooltip("member:N", title="Member"),
                alt.Tooltip("balance:Q", title="Balance", format=".2f"),
            ],
        ).properties(width="container", height=40 * len(chart_rows) + 40)
        st.altair_chart(chart, use_container_width=True)


def display_debt_matrix(matrix: Dict[str, Dict[str, Decimal]], names: Dict[str, str], currency: str):
    """Rows show who owes money, columns show who is owed (gross expense shares)."""
    st.header("Debt Matrix")
    if not names:
        return
    st.caption(f"Rows owe columns, in {currency}. Built from expense shares only; transfers are not included.")
    ids = list(names)
    data = [
        [float(matrix.get(row, {}).get(col, 0)) for col in ids]
        for row in ids
    ]
    df = pd.DataFrame(data, index=[names[i] for i in ids], columns=[names[i] for i in ids])
    st.dataframe(
        df.style.format(lambda v: "-" if abs(v) < 0.01 else f"{v:,.2f}"),
        use_container_width=True,
    )


def display_settlement_suggestions(
    plan: SettlementPlan,
    names: Dict[str, str],
    currency: str,
    on_record: Callable[[Settlement], None],
):
    """List suggested payments; clicking one records it as a transfer."""
    st.header("Suggested Settlements")
    settlements = plan.settlements
    if not settlements:
        st.write("Everyone is settled up.")
    else:
        n = len(settlements)
        st.write(f"Settle all balances with {n} {'transaction' if n == 1 else 'transactions'}:")
        for idx, s in enumerate(settlements):
            label = f"{s.from_name} → {s.to_name}: {_fmt(s.amount, currency)}"
            if st.button(label, key=f"settle_{idx}_{s.from_member_id}_{s.to_member_id}"):
                if on_record(s) is not None:
                    st.success(f"Recorded transfer: {label}")
                    _trigger_rerun()
        st.caption("Click on a settlement to record the transfer")

    if not plan.consistent:
        parts = [f"{names.get(mid, mid)}: {_fmt(amt, currency)}" for mid, amt in plan.unsettled.items()]
        st.warning("Balances do not add up; left unsettled: " + ", ".join(parts))
