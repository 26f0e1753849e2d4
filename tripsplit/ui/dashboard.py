"""
dashboard.py - Streamlit UI entrypoint and orchestration

This module wires the UI components (tripsplit.ui.components) with the trip
tracker (tripsplit.tracker). The main() function builds the sidebar menu and
routes actions to components and tracker methods.

Design notes:
 - Keep the dashboard responsible only for UI orchestration and presentation.
 - All persistence and validation live in tripsplit.tracker; balances and
   settlements come from tripsplit.balances through the tracker.
 - Tracker validation errors (ValueError) are shown with st.error.
"""

import datetime
import logging

import streamlit as st

from tripsplit.tracker import TripTracker
from tripsplit.ui import components

logger = logging.getLogger(__name__)


def _run(action, *args, **kwargs):
    """Call a tracker mutation, reporting rejected input in the page."""
    try:
        return action(*args, **kwargs)
    except ValueError as exc:
        logger.info("Rejected input: %s", exc)
        st.error(str(exc))
        return None


def _last_expense_date(tracker: TripTracker):
    dates = [e.date for e in tracker.expenses if e.date]
    if not dates:
        return None
    try:
        return datetime.date.fromisoformat(max(dates))
    except ValueError:
        return None


def main():
    """
    Streamlit page: sidebar menu controls which view is shown.
    Actions:
      - Overview: balances, suggested settlements and the debt matrix
      - Add Expense / Record Transfer: forms persisted via the tracker
      - Expenses: tables with XLSX export and delete
      - Members & Trip: add members, rename trip, set currency label
      - Clear Trip: reset data (with single-button confirmation)
    """
    tracker = TripTracker()
    st.title(tracker.trip_name or "Trip Expenses")
    backend_name, backend_msg = tracker.storage_status()
    if backend_name == "google_sheets":
        st.sidebar.success(backend_msg)
    else:
        st.sidebar.warning(backend_msg)
        st.sidebar.caption(
            "For indefinite cloud persistence, set GOOGLE_SHEET_ID and "
            "GOOGLE_SERVICE_ACCOUNT_JSON in Streamlit app Secrets."
        )

    menu = [
        "Overview",
        "Add Expense",
        "Record Transfer",
        "Expenses",
        "Members & Trip",
        "Clear Trip",
    ]
    choice = st.sidebar.selectbox("Select an option", menu)
    names = tracker.member_names()
    currency = tracker.currency

    if choice == "Overview":
        components.display_balances(tracker.balances(), currency)
        components.display_settlement_suggestions(
            tracker.settlement_plan(),
            names,
            currency,
            on_record=lambda s: _run(tracker.record_settlement, s),
        )
        components.display_debt_matrix(tracker.debt_matrix(), names, currency)

    elif choice == "Add Expense":
        def on_submit(exp_input: components.ExpenseInput):
            return _run(
                tracker.add_expense,
                amount=exp_input.amount,
                payer_id=exp_input.payer_id,
                participant_ids=exp_input.participant_ids,
                description=exp_input.description,
                date=exp_input.date,
                shares=exp_input.shares or None,
            )

        components.display_expense_form(names, currency, on_submit, default_date=_last_expense_date(tracker))

    elif choice == "Record Transfer":
        def on_transfer(tr: components.TransferInput):
            return _run(tracker.add_transfer, tr.from_member_id, tr.to_member_id, tr.amount, date=tr.date)

        components.display_transfer_form(names, currency, on_transfer)

    elif choice == "Expenses":
        components.display_expense_list(
            tracker.expenses,
            tracker.transfers,
            names,
            currency,
            on_delete_expense=tracker.delete_expense,
        )

    elif choice == "Members & Trip":
        components.display_trip_form(tracker.trip_name, currency, tracker.set_trip)
        components.display_member_form(lambda name, email: _run(tracker.add_member, name, email))
        if names:
            st.subheader("Members")
            for m in tracker.members:
                st.write(f"- {m.display_name} ({m.email})")

    elif choice == "Clear Trip":
        # simple confirm button to avoid accidental data loss
        if st.button("Confirm Clear"):
            tracker.clear()
            st.success("Trip cleared.")


if __name__ == "__main__":
    main()
