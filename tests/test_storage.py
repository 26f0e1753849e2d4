import json

from tripsplit.storage import GoogleSheetsBackend, read_json, write_json_atomic


def test_write_and_read_json(tmp_path):
    path = str(tmp_path / "nested" / "trip.json")
    write_json_atomic(path, {"next_id": 3, "members": [{"id": "m1"}]})
    assert read_json(path) == {"next_id": 3, "members": [{"id": "m1"}]}
    # no temp files left behind
    assert [p.name for p in (tmp_path / "nested").iterdir()] == ["trip.json"]


def test_read_json_missing_file(tmp_path):
    assert read_json(str(tmp_path / "missing.json")) == {}


def test_backend_unavailable_without_sheet_id():
    backend = GoogleSheetsBackend()
    assert backend.available is False
    assert backend.reason == "GOOGLE_SHEET_ID is not set"
    assert backend.load_state() == {}
    assert backend.save_state({"members": []}) is False


def test_expense_record_tolerates_malformed_cells():
    record = {
        "id": " e4 ",
        "amount": "1,234.50",
        "payer_id": "m1",
        "shares_json": "{'m1': '600', 'm2': 'oops', '': 3}",
        "description": " Hotel ",
        "date": "2026-05-02",
    }
    out = GoogleSheetsBackend._record_to_dict("expenses", record)
    assert out == {
        "id": "e4",
        "amount": "1234.50",
        "payer_id": "m1",
        "shares": [
            {"member_id": "m1", "share_amount": "600"},
            {"member_id": "m2", "share_amount": "0"},
        ],
        "description": "Hotel",
        "date": "2026-05-02",
    }


def test_shares_accept_json_and_camel_case():
    cell = json.dumps([{"memberId": "m2", "shareAmount": "12.5"}, "junk", {"member_id": "m3"}])
    assert GoogleSheetsBackend._parse_shares(cell) == [
        {"member_id": "m2", "share_amount": "12.5"},
        {"member_id": "m3", "share_amount": "0"},
    ]
    assert GoogleSheetsBackend._parse_shares("not json") == []
    assert GoogleSheetsBackend._parse_shares("") == []


def test_transfer_and_member_records():
    transfer = GoogleSheetsBackend._record_to_dict(
        "transfers", {"id": "t5", "amount": "nan", "from_member_id": "m3", "to_member_id": "m1"}
    )
    assert transfer == {"id": "t5", "amount": "0", "from_member_id": "m3", "to_member_id": "m1", "date": ""}
    member = GoogleSheetsBackend._record_to_dict("members", {"id": "m1", "name": "", "email": "a@example.com"})
    assert member == {"id": "m1", "name": None, "email": "a@example.com"}


def test_rows_follow_table_headers():
    row = GoogleSheetsBackend._dict_to_row("expenses", {
        "id": "e1",
        "amount": "10.00",
        "payer_id": "m1",
        "shares": [{"member_id": "m1", "share_amount": "10.00"}],
        "description": "Taxi",
        "date": "2026-05-03",
    })
    assert row == ["e1", "10.00", "m1", '[{"member_id": "m1", "share_amount": "10.00"}]', "Taxi", "2026-05-03"]
    assert GoogleSheetsBackend._dict_to_row("members", {"id": "m1", "name": None, "email": "x"}) == ["m1", "", "x"]
