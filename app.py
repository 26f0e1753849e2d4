"""
app.py - minimal entrypoint for the Streamlit app

Keep this file tiny so streamlit can import it without side-effects.
Run the app with:
    streamlit run app.py

This module simply delegates to tripsplit.ui.dashboard.main().
"""
import json as _json
import os

try:
    # On Streamlit Cloud, copy secrets into env vars so the storage backend can read them
    import streamlit as _st
    _secrets = getattr(_st, "secrets", {}) or {}
    for _k in ("GOOGLE_SHEET_ID", "GOOGLE_SERVICE_ACCOUNT_JSON", "GOOGLE_SERVICE_ACCOUNT_FILE", "TRIPSPLIT_DATA_FILE"):
        if _k in _secrets and _secrets[_k] and _k not in os.environ:
            os.environ[_k] = _secrets[_k]
    # Also support the standard Streamlit table-style service account secret:
    # [gcp_service_account] ...fields...
    if "GOOGLE_SERVICE_ACCOUNT_JSON" not in os.environ and "gcp_service_account" in _secrets:
        _sa = _secrets["gcp_service_account"]
        if _sa:
            os.environ["GOOGLE_SERVICE_ACCOUNT_JSON"] = _json.dumps(dict(_sa))
except Exception:
    # keep import-time side-effects minimal if streamlit or its secrets are unavailable
    pass

from tripsplit.ui import dashboard


def main():
    dashboard.main()


if __name__ == "__main__":
    main()
