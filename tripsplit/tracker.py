"""
tracker.py - trip state, validation and persistence

Responsibilities:
 - keep the in-memory trip: members, expenses (with shares) and transfers
 - validate input before it reaches the balance engine (unknown members,
   non-positive amounts, shares that do not add up, self-transfers)
 - persist/load data to Google Sheets (preferred) or local JSON fallback
 - provide helper APIs consumed by the UI:
     add_member, add_expense (equal or custom split), add_transfer,
     record_settlement, balances, debt_matrix, settlements, settlement_plan
"""

from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP
from typing import Dict, Iterable, List, Mapping, Optional, Tuple
import datetime
import logging
import os
import sys
import tempfile

from tripsplit.balances import (
    compute_balances,
    compute_debt_matrix,
    compute_settlements,
    plan_settlements,
)
from tripsplit.models import (
    CENT,
    ZERO,
    Expense,
    Member,
    MemberBalance,
    Settlement,
    SettlementPlan,
    Share,
    Transfer,
    to_decimal,
)
from tripsplit.storage import GoogleSheetsBackend, read_json, write_json_atomic

_default_data_file = os.path.join(os.path.dirname(__file__), "..", "data", "trip_data.json")
# Under pytest, use a temp file so tests never touch the real trip data.
if any("pytest" in p for p in sys.argv) or os.getenv("PYTEST_CURRENT_TEST"):
    DATA_FILE = os.path.join(tempfile.gettempdir(), "tmp_trip_test.json")
else:
    DATA_FILE = os.getenv("TRIPSPLIT_DATA_FILE") or _default_data_file

DEFAULT_CURRENCY = "EUR"

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


def _to_amount(value, label: str = "Amount") -> Decimal:
    """Parse a user supplied amount into a Decimal rounded to cents."""
    try:
        amount = to_decimal(value)
    except ValueError:
        raise ValueError(f"{label} must be a number.")
    if not amount.is_finite():
        raise ValueError(f"{label} must be a number.")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def split_equally(amount: Decimal, member_ids: List[str]) -> List[Share]:
    """
    Split amount into one share per member, in cents.

    Leftover cents go one by one to the first members, so the shares always
    add up to exactly `amount`.
    """
    n = len(member_ids)
    base = (amount / n).quantize(CENT, rounding=ROUND_DOWN)
    extra = int((amount - base * n) / CENT)
    return [
        Share(member_id=mid, share_amount=base + CENT if idx < extra else base)
        for idx, mid in enumerate(member_ids)
    ]


class TripTracker:
    """
    Single-trip tracker object. The UI creates one TripTracker() per session
    and uses its methods to read/write data; every mutation is saved at once.
    """

    def __init__(self, data_file: Optional[str] = None):
        self.data_file = data_file or DATA_FILE
        self.trip_name = ""
        self.currency = DEFAULT_CURRENCY
        self.members: List[Member] = []
        self.expenses: List[Expense] = []
        self.transfers: List[Transfer] = []
        self._next_id = 1
        self._gs_backend = GoogleSheetsBackend()
        self.load()

    # -----------------------
    # Storage
    # -----------------------
    def uses_google_sheets(self) -> bool:
        """True when the durable Google Sheets backend is active."""
        return bool(self._gs_backend and self._gs_backend.available)

    def storage_status(self) -> Tuple[str, str]:
        """Return current storage backend and a short diagnostic message for the UI."""
        if self.uses_google_sheets():
            return "google_sheets", "Persistent storage active (Google Sheets)."
        reason = getattr(self._gs_backend, "reason", "Google Sheets not configured")
        return "local_json", f"Using local file fallback: {reason}."

    def _state(self) -> Dict:
        return {
            "next_id": self._next_id,
            "trip": {"name": self.trip_name, "currency": self.currency},
            "members": [m.to_dict() for m in self.members],
            "expenses": [e.to_dict() for e in self.expenses],
            "transfers": [t.to_dict() for t in self.transfers],
        }

    def save(self):
        """Persist trip state to Google Sheets when available, else local JSON."""
        data = self._state()
        if self.uses_google_sheets():
            logger.info(
                "Saving trip to Google Sheets (members=%d, expenses=%d, transfers=%d)",
                len(self.members), len(self.expenses), len(self.transfers),
            )
            if self._gs_backend.save_state(data):
                return
            logger.warning("Google Sheets save failed, falling back to local JSON")
        write_json_atomic(self.data_file, data)

    def load(self):
        """
        Load trip state from Google Sheets when configured, otherwise local JSON.
        With no saved data the trip stays empty.
        """
        data = None
        if self.uses_google_sheets():
            logger.info("Loading trip from Google Sheets")
            data = self._gs_backend.load_state() or None
        if not data:
            data = read_json(self.data_file)
        if not data:
            return

        trip = data.get("trip", {}) or {}
        self.trip_name = trip.get("name", "") or ""
        self.currency = trip.get("currency", "") or DEFAULT_CURRENCY
        self.members = [Member.from_dict(d) for d in data.get("members", []) or []]
        self.expenses = [Expense.from_dict(d) for d in data.get("expenses", []) or []]
        self.transfers = [Transfer.from_dict(d) for d in data.get("transfers", []) or []]
        try:
            next_id = int(data.get("next_id", 1))
        except (TypeError, ValueError):
            next_id = 1
        self._next_id = max(next_id, self._highest_id() + 1)

    def _highest_id(self) -> int:
        highest = 0
        for record in [*self.members, *self.expenses, *self.transfers]:
            rid = str(record.id)
            digits = rid[1:] if rid[:1] in ("m", "e", "t") else rid
            if digits.isdigit():
                highest = max(highest, int(digits))
        return highest

    def _new_id(self, prefix: str) -> str:
        new_id = f"{prefix}{self._next_id}"
        self._next_id += 1
        return new_id

    def _refresh(self):
        # Reload before mutating to reduce stale-session overwrites.
        if self.uses_google_sheets():
            self.load()

    def clear(self):
        """Reset the trip: no members, expenses or transfers. Persists the cleared state."""
        self.trip_name = ""
        self.currency = DEFAULT_CURRENCY
        self.members = []
        self.expenses = []
        self.transfers = []
        self._next_id = 1
        self.save()

    # -----------------------
    # Trip and members
    # -----------------------
    def set_trip(self, name: str, currency: str = DEFAULT_CURRENCY):
        self._refresh()
        self.trip_name = (name or "").strip()
        self.currency = (currency or "").strip().upper() or DEFAULT_CURRENCY
        self.save()

    def add_member(self, name: Optional[str], email: str) -> Member:
        """Add a member; email is required and must be unique within the trip."""
        self._refresh()
        email = (email or "").strip()
        if not email:
            raise ValueError("Email is required.")
        if any(m.email.lower() == email.lower() for m in self.members):
            raise ValueError(f"{email} is already a member of this trip.")
        member = Member(id=self._new_id("m"), name=(name or "").strip() or None, email=email)
        self.members.append(member)
        self.save()
        logger.info("Added member id=%s (%s)", member.id, member.display_name)
        return member

    def get_member(self, member_id: str) -> Optional[Member]:
        for m in self.members:
            if m.id == member_id:
                return m
        return None

    def member_names(self) -> Dict[str, str]:
        """Mapping member id -> display name, in member order."""
        return {m.id: m.display_name for m in self.members}

    def _require_member(self, member_id: str, role: str) -> Member:
        member = self.get_member(member_id)
        if member is None:
            raise ValueError(f"{role} {member_id!r} is not a member of this trip.")
        return member

    # -----------------------
    # Expenses and transfers
    # -----------------------
    def _default_date(self) -> str:
        dates = [e.date for e in self.expenses if e.date]
        if dates:
            return max(dates)
        return datetime.date.today().isoformat()

    def add_expense(
        self,
        amount,
        payer_id: str,
        participant_ids: Optional[Iterable[str]] = None,
        description: str = "",
        date: str = "",
        shares: Optional[Mapping[str, object]] = None,
    ) -> Expense:
        """
        Create an Expense, append it to the trip and persist.

        shares: optional member id -> amount for a custom split; must add up
            to exactly amount once rounded to cents. Without it the amount is
            split equally among participant_ids, or among all members when
            none are given.
        date: ISO string "YYYY-MM-DD"; defaults to the latest expense date,
            or today for the first expense.
        """
        self._refresh()
        amount = _to_amount(amount)
        if amount <= ZERO:
            raise ValueError("Amount must be greater than 0.")
        self._require_member(payer_id, "Payer")

        if shares:
            split: List[Share] = []
            for member_id, value in shares.items():
                self._require_member(member_id, "Participant")
                share_amount = _to_amount(value, label="Share")
                if share_amount < ZERO:
                    raise ValueError("Shares cannot be negative.")
                split.append(Share(member_id=member_id, share_amount=share_amount))
            total = sum((s.share_amount for s in split), ZERO)
            if total != amount:
                raise ValueError(f"Shares sum to {total:.2f} but amount is {amount:.2f}.")
        else:
            if participant_ids is None:
                participants = [m.id for m in self.members]
            else:
                participants = list(dict.fromkeys(participant_ids))
            if not participants:
                raise ValueError("At least one participant is required.")
            for member_id in participants:
                self._require_member(member_id, "Participant")
            split = split_equally(amount, participants)

        exp = Expense(
            id=self._new_id("e"),
            amount=amount,
            payer_id=payer_id,
            shares=split,
            description=(description or "").strip(),
            date=date or self._default_date(),
        )
        self.expenses.append(exp)
        self.save()
        logger.info("Added expense id=%s amount=%s payer=%s", exp.id, exp.amount, payer_id)
        return exp

    def add_transfer(self, from_member_id: str, to_member_id: str, amount, date: str = "") -> Transfer:
        """Record money handed directly from one member to another."""
        self._refresh()
        amount = _to_amount(amount)
        if amount <= ZERO:
            raise ValueError("Amount must be greater than 0.")
        self._require_member(from_member_id, "Sender")
        self._require_member(to_member_id, "Receiver")
        if from_member_id == to_member_id:
            raise ValueError("Cannot transfer to the same member.")

        transfer = Transfer(
            id=self._new_id("t"),
            amount=amount,
            from_member_id=from_member_id,
            to_member_id=to_member_id,
            date=date or datetime.date.today().isoformat(),
        )
        self.transfers.append(transfer)
        self.save()
        logger.info(
            "Added transfer id=%s %s -> %s amount=%s",
            transfer.id, from_member_id, to_member_id, transfer.amount,
        )
        return transfer

    def record_settlement(self, settlement: Settlement, date: str = "") -> Transfer:
        """Turn a suggested settlement into a transfer (matched by member id)."""
        return self.add_transfer(
            settlement.from_member_id,
            settlement.to_member_id,
            settlement.amount,
            date=date,
        )

    def _delete(self, table: str, record_id: str, kind: str) -> bool:
        self._refresh()
        # look the list up after the reload; load() replaces it
        records = getattr(self, table)
        for i, r in enumerate(records):
            if r.id == record_id:
                records.pop(i)
                self.save()
                logger.info("Deleted %s id=%s", kind, record_id)
                return True
        logger.info("%s id=%s not found", kind.capitalize(), record_id)
        return False

    def delete_expense(self, expense_id: str) -> bool:
        """Remove expense by id. Returns True if deleted, False if not found."""
        return self._delete("expenses", expense_id, "expense")

    def delete_transfer(self, transfer_id: str) -> bool:
        """Remove transfer by id. Returns True if deleted, False if not found."""
        return self._delete("transfers", transfer_id, "transfer")

    def total_spent(self) -> Decimal:
        return sum((e.amount for e in self.expenses), ZERO)

    # -----------------------
    # Balance engine views
    # -----------------------
    def balances(self) -> List[MemberBalance]:
        return compute_balances(self.members, self.expenses, self.transfers)

    def debt_matrix(self) -> Dict[str, Dict[str, Decimal]]:
        return compute_debt_matrix([m.id for m in self.members], self.expenses)

    def settlements(self) -> List[Settlement]:
        return compute_settlements(self.balances())

    def settlement_plan(self) -> SettlementPlan:
        return plan_settlements(self.balances())
