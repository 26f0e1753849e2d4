import pytest

from tripsplit.tracker import TripTracker


@pytest.fixture(autouse=True)
def no_google_sheets(monkeypatch):
    # tests always run against the local JSON backend
    monkeypatch.delenv("GOOGLE_SHEET_ID", raising=False)


@pytest.fixture
def data_file(tmp_path):
    return str(tmp_path / "trip_data.json")


@pytest.fixture
def tracker(data_file):
    return TripTracker(data_file=data_file)
