"""
storage.py - persistence backends for the trip tracker

Two places the trip state can live:
 - Google Sheets (preferred when GOOGLE_SHEET_ID and credentials are set):
   one worksheet per table ("members", "expenses", "transfers") plus a
   key/value "meta" worksheet
 - a local JSON file, written atomically (temp file + fsync + move)

State is exchanged with the tracker as a plain dict:
    {
      "next_id": int,
      "trip": {"name": str, "currency": str},
      "members": [Member.to_dict(), ...],
      "expenses": [Expense.to_dict(), ...],
      "transfers": [Transfer.to_dict(), ...],
    }
"""

from typing import Any, Dict, List
import ast
import json
import logging
import os
import shutil
import tempfile

from tripsplit.models import to_decimal

# Google Sheets is optional at runtime: without credentials the tracker
# simply uses the local JSON file.
try:
    import gspread
    from google.oauth2.service_account import Credentials
except Exception:
    gspread = None
    Credentials = None

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


def read_json(path: str) -> Dict[str, Any]:
    """Return the decoded JSON object at path, or {} when the file is missing."""
    if not os.path.exists(path):
        return {}
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return data if isinstance(data, dict) else {}


def write_json_atomic(path: str, data: Dict[str, Any]) -> None:
    """
    Write data as JSON so readers never see a half-written file.
    On failure the temp file is removed and the error re-raised.
    """
    target = os.path.abspath(path)
    dirn = os.path.dirname(target)
    os.makedirs(dirn, exist_ok=True)
    logger.info("Saving trip data to %s", target)
    fd, tmp_path = tempfile.mkstemp(prefix="tmp_trip_", dir=dirn, text=True)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        shutil.move(tmp_path, target)
    except Exception:
        logger.exception("Failed to save data file")
        try:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
        except OSError:
            pass
        raise


class GoogleSheetsBackend:
    """
    Google Sheets persistence backend.

    Each table is rewritten in full on save; a header row is always kept so
    the sheet stays readable by hand.
    """

    META_SHEET_NAME = "meta"
    META_HEADERS = ["key", "value"]
    TABLES = {
        "members": ["id", "name", "email"],
        "expenses": ["id", "amount", "payer_id", "shares_json", "description", "date"],
        "transfers": ["id", "amount", "from_member_id", "to_member_id", "date"],
    }
    SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]

    def __init__(self):
        self.available = False
        self.reason = ""
        self.sheet_id = (os.getenv("GOOGLE_SHEET_ID") or "").strip()
        self._spreadsheet = None
        self._worksheets: Dict[str, Any] = {}

        if not self.sheet_id:
            self.reason = "GOOGLE_SHEET_ID is not set"
            return
        if gspread is None or Credentials is None:
            self.reason = "Google Sheets dependencies are unavailable"
            return

        try:
            creds = self._build_credentials()
            client = gspread.authorize(creds)
            self._spreadsheet = client.open_by_key(self.sheet_id)
            for title, headers in self.TABLES.items():
                self._worksheets[title] = self._get_or_create_worksheet(
                    title, rows=1000, cols=max(8, len(headers))
                )
            self._worksheets[self.META_SHEET_NAME] = self._get_or_create_worksheet(
                self.META_SHEET_NAME, rows=50, cols=4
            )
            self._ensure_headers()
            self.available = True
        except Exception as exc:
            self.available = False
            self.reason = f"Google Sheets init failed ({exc.__class__.__name__})"
            logger.warning("Google Sheets backend unavailable: %s", self.reason)

    def _build_credentials(self):
        service_account_json = (os.getenv("GOOGLE_SERVICE_ACCOUNT_JSON") or "").strip()
        service_account_file = (os.getenv("GOOGLE_SERVICE_ACCOUNT_FILE") or "").strip()

        if service_account_json:
            try:
                info = json.loads(service_account_json)
            except ValueError:
                # tolerate Python-dict style strings often pasted into env vars
                info = ast.literal_eval(service_account_json)
            if not isinstance(info, dict):
                raise ValueError("GOOGLE_SERVICE_ACCOUNT_JSON must decode to an object")
            return Credentials.from_service_account_info(info, scopes=self.SCOPES)

        if service_account_file:
            return Credentials.from_service_account_file(service_account_file, scopes=self.SCOPES)

        import google.auth
        creds, _ = google.auth.default(scopes=self.SCOPES)
        return creds

    def _get_or_create_worksheet(self, title: str, rows: int, cols: int):
        try:
            return self._spreadsheet.worksheet(title)
        except gspread.exceptions.WorksheetNotFound:
            return self._spreadsheet.add_worksheet(title=title, rows=rows, cols=cols)

    @staticmethod
    def _ensure_sheet_size(ws, min_rows: int, min_cols: int):
        new_rows = max(ws.row_count, min_rows)
        new_cols = max(ws.col_count, min_cols)
        if new_rows != ws.row_count or new_cols != ws.col_count:
            ws.resize(rows=new_rows, cols=new_cols)

    def _headers_for(self, title: str) -> List[str]:
        if title == self.META_SHEET_NAME:
            return self.META_HEADERS
        return self.TABLES[title]

    def _ensure_headers(self):
        for title, ws in self._worksheets.items():
            headers = self._headers_for(title)
            first = ws.row_values(1) or []
            if [x.strip() for x in first] != headers:
                self._ensure_sheet_size(ws, 2, len(headers))
                ws.update(range_name="A1", values=[headers], value_input_option="RAW")

    @staticmethod
    def _to_int(value: Any, default: int = 0) -> int:
        try:
            return int(float(str(value).strip()))
        except (TypeError, ValueError):
            return default

    @staticmethod
    def _to_amount(value: Any) -> str:
        # amounts travel as strings; anything unparsable becomes "0"
        text = str(value if value is not None else "").strip().replace(",", "")
        try:
            amount = to_decimal(text)
        except ValueError:
            return "0"
        return str(amount) if amount.is_finite() else "0"

    @staticmethod
    def _parse_json_or_literal(value: Any):
        if isinstance(value, (list, dict)):
            return value
        text = str(value or "").strip()
        if not text:
            return None
        for parser in (json.loads, ast.literal_eval):
            try:
                return parser(text)
            except (ValueError, SyntaxError):
                continue
        return None

    @classmethod
    def _parse_shares(cls, value: Any) -> List[Dict[str, str]]:
        parsed = cls._parse_json_or_literal(value)
        if isinstance(parsed, dict):
            # {"member_id": amount} shorthand typed by hand into the sheet
            parsed = [{"member_id": k, "share_amount": v} for k, v in parsed.items()]
        if not isinstance(parsed, list):
            return []
        out: List[Dict[str, str]] = []
        for item in parsed:
            if not isinstance(item, dict):
                continue
            member_id = str(item.get("member_id", item.get("memberId", ""))).strip()
            if not member_id:
                continue
            amount = item.get("share_amount", item.get("shareAmount", 0))
            out.append({"member_id": member_id, "share_amount": cls._to_amount(amount)})
        return out

    @classmethod
    def _record_to_dict(cls, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        """Normalize one sheet row (header -> cell text) into the state dict shape."""
        clean = {k: str(v).strip() for k, v in record.items()}
        if table == "members":
            return {
                "id": clean.get("id", ""),
                "name": clean.get("name", "") or None,
                "email": clean.get("email", ""),
            }
        if table == "expenses":
            return {
                "id": clean.get("id", ""),
                "amount": cls._to_amount(clean.get("amount", "0")),
                "payer_id": clean.get("payer_id", ""),
                "shares": cls._parse_shares(record.get("shares_json", record.get("shares", ""))),
                "description": clean.get("description", ""),
                "date": clean.get("date", ""),
            }
        return {
            "id": clean.get("id", ""),
            "amount": cls._to_amount(clean.get("amount", "0")),
            "from_member_id": clean.get("from_member_id", ""),
            "to_member_id": clean.get("to_member_id", ""),
            "date": clean.get("date", ""),
        }

    @classmethod
    def _dict_to_row(cls, table: str, item: Dict[str, Any]) -> List[str]:
        row = []
        for header in cls.TABLES[table]:
            if header == "shares_json":
                row.append(json.dumps(item.get("shares", []) or [], ensure_ascii=False))
            else:
                value = item.get(header)
                row.append("" if value is None else str(value))
        return row

    def save_state(self, data: Dict[str, Any]) -> bool:
        if not self.available:
            return False

        try:
            self._ensure_headers()
            for table, headers in self.TABLES.items():
                rows = [headers] + [self._dict_to_row(table, item) for item in data.get(table, []) or []]
                ws = self._worksheets[table]
                self._ensure_sheet_size(ws, len(rows) + 10, len(headers))
                # RAW keeps user text from being interpreted as formulas
                ws.clear()
                ws.update(range_name="A1", values=rows, value_input_option="RAW")

            trip = data.get("trip", {}) or {}
            meta_rows = [
                self.META_HEADERS,
                ["next_id", str(data.get("next_id", 1))],
                ["trip_name", str(trip.get("name", ""))],
                ["currency", str(trip.get("currency", ""))],
            ]
            meta_ws = self._worksheets[self.META_SHEET_NAME]
            self._ensure_sheet_size(meta_ws, len(meta_rows) + 5, len(self.META_HEADERS))
            meta_ws.clear()
            meta_ws.update(range_name="A1", values=meta_rows, value_input_option="RAW")
            return True
        except Exception:
            logger.exception("Failed to save trip state to Google Sheets")
            return False

    def _read_table(self, table: str) -> List[Dict[str, Any]]:
        values = self._worksheets[table].get_all_values() or []
        if not values:
            return []
        headers = [str(h).strip().lower() for h in values[0]]
        out = []
        for row in values[1:]:
            if not any(str(c).strip() for c in row):
                continue
            record: Dict[str, Any] = {}
            for idx, header in enumerate(headers):
                if header:
                    record[header] = row[idx] if idx < len(row) else ""
            out.append(self._record_to_dict(table, record))
        return out

    def load_state(self) -> Dict[str, Any]:
        if not self.available:
            return {}

        try:
            self._ensure_headers()
            data: Dict[str, Any] = {table: self._read_table(table) for table in self.TABLES}

            meta_map: Dict[str, str] = {}
            for row in (self._worksheets[self.META_SHEET_NAME].get_all_values() or [])[1:]:
                if not row:
                    continue
                key = str(row[0]).strip()
                value = str(row[1]).strip() if len(row) > 1 else ""
                if key:
                    meta_map[key] = value

            data["next_id"] = max(1, self._to_int(meta_map.get("next_id", ""), 1))
            data["trip"] = {
                "name": meta_map.get("trip_name", ""),
                "currency": meta_map.get("currency", ""),
            }
            return data
        except Exception:
            logger.exception("Failed to load trip state from Google Sheets")
            return {}
