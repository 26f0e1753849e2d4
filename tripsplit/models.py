"""
models.py - Data model definitions

Records shared by the balance engine, the tracker and the UI.
Inputs (Member, Share, Expense, Transfer) are serialized to/from plain dicts
so they can be persisted as JSON or as rows in Google Sheets.
Outputs of the balance engine (MemberBalance, Settlement, SettlementPlan) are
frozen: they are built once per computation and never mutated afterwards.

Money is always a decimal.Decimal. Amounts are stored as strings in JSON so
nothing passes through a binary float on the way in or out.
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

ZERO = Decimal("0")
CENT = Decimal("0.01")


def to_decimal(value: Any) -> Decimal:
    """
    Convert str/int/float/Decimal to Decimal.

    Floats go through str() so 0.1 becomes Decimal("0.1") rather than the
    exact binary expansion. Empty values become 0.
    """
    if isinstance(value, Decimal):
        return value
    if value is None:
        return ZERO
    if isinstance(value, bool):
        raise ValueError(f"Not a monetary amount: {value!r}")
    text = str(value).strip()
    if not text:
        return ZERO
    try:
        return Decimal(text)
    except InvalidOperation:
        raise ValueError(f"Not a monetary amount: {value!r}")


def _pick(d: Dict, *keys: str, default: Any = None) -> Any:
    # snake_case first, then the camelCase spelling used by the web API
    for k in keys:
        if k in d and d[k] is not None:
            return d[k]
    return default


@dataclass
class Member:
    """
    A trip participant.

    Fields:
      - id: unique member id within the trip
      - name: optional display name
      - email: always present; used as display name when name is empty
    """
    id: str
    name: Optional[str] = None
    email: str = ""

    @property
    def display_name(self) -> str:
        return self.name or self.email

    def to_dict(self) -> Dict:
        return {"id": self.id, "name": self.name, "email": self.email}

    @staticmethod
    def from_dict(d: Dict) -> "Member":
        return Member(
            id=str(d.get("id", "")),
            name=d.get("name") or None,
            email=d.get("email", "") or "",
        )


@dataclass
class Share:
    """Portion of an expense allocated to one member."""
    member_id: str
    share_amount: Decimal = ZERO

    def to_dict(self) -> Dict:
        return {"member_id": self.member_id, "share_amount": str(self.share_amount)}

    @staticmethod
    def from_dict(d: Dict) -> "Share":
        return Share(
            member_id=str(_pick(d, "member_id", "memberId", default="")),
            share_amount=to_decimal(_pick(d, "share_amount", "shareAmount", default=0)),
        )


@dataclass
class Expense:
    """
    Something one member paid for on behalf of the group.

    Fields:
      - id: expense id assigned by the tracker
      - amount: positive total amount, in the trip currency
      - payer_id: id of the member who paid
      - shares: ordered per-member allocations, expected to sum to amount
      - description: free text shown in the expense list
      - date: ISO date string "YYYY-MM-DD"
    """
    id: str = ""
    amount: Decimal = ZERO
    payer_id: str = ""
    shares: List[Share] = field(default_factory=list)
    description: str = ""
    date: str = ""

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "amount": str(self.amount),
            "payer_id": self.payer_id,
            "shares": [s.to_dict() for s in self.shares],
            "description": self.description,
            "date": self.date,
        }

    @staticmethod
    def from_dict(d: Dict) -> "Expense":
        """
        Construct an Expense from a dict (inverse of to_dict).
        Missing optional keys fall back to defaults so older files still load.
        """
        return Expense(
            id=str(d.get("id", "")),
            amount=to_decimal(d.get("amount", 0)),
            payer_id=str(_pick(d, "payer_id", "payerId", default="")),
            shares=[Share.from_dict(s) for s in d.get("shares", []) or []],
            description=d.get("description", "") or "",
            date=d.get("date", "") or "",
        )


@dataclass
class Transfer:
    """A direct payment between two members, settled outside expense splitting."""
    id: str = ""
    amount: Decimal = ZERO
    from_member_id: str = ""
    to_member_id: str = ""
    date: str = ""

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "amount": str(self.amount),
            "from_member_id": self.from_member_id,
            "to_member_id": self.to_member_id,
            "date": self.date,
        }

    @staticmethod
    def from_dict(d: Dict) -> "Transfer":
        return Transfer(
            id=str(d.get("id", "")),
            amount=to_decimal(d.get("amount", 0)),
            from_member_id=str(_pick(d, "from_member_id", "fromMemberId", default="")),
            to_member_id=str(_pick(d, "to_member_id", "toMemberId", default="")),
            date=d.get("date", "") or "",
        )


@dataclass(frozen=True)
class MemberBalance:
    """
    Net position of one member.

    balance = paid - owed; positive means the member is owed money,
    negative means the member owes money.
    """
    member_id: str
    member_name: str
    paid: Decimal
    owed: Decimal
    balance: Decimal

    def to_dict(self) -> Dict:
        return {
            "member_id": self.member_id,
            "member_name": self.member_name,
            "paid": str(self.paid),
            "owed": str(self.owed),
            "balance": str(self.balance),
        }


@dataclass(frozen=True)
class Settlement:
    """Suggested payment from a debtor to a creditor."""
    from_name: str
    to_name: str
    amount: Decimal
    from_member_id: str = ""
    to_member_id: str = ""

    def to_dict(self) -> Dict:
        return {
            "from": self.from_name,
            "to": self.to_name,
            "from_member_id": self.from_member_id,
            "to_member_id": self.to_member_id,
            "amount": str(self.amount),
        }


@dataclass(frozen=True)
class SettlementPlan:
    """
    Settlements plus whatever the matcher could not place.

    unsettled maps member id -> signed leftover (positive: still owed,
    negative: still owes). It is empty for consistent input.
    """
    settlements: Tuple[Settlement, ...] = ()
    unsettled: Dict[str, Decimal] = field(default_factory=dict)

    @property
    def consistent(self) -> bool:
        return not self.unsettled
