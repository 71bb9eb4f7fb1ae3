"""Tests for device-local state: download counter, session, short ids."""

from __future__ import annotations

import re

from atrios_sync.store.kinds import PDF_DOWNLOAD_COUNTER_KEY
from atrios_sync.store.local_state import PdfDownloadCounter, SessionStore, generate_short_id


def test_short_id_format():
    ids = {generate_short_id() for _ in range(50)}
    assert all(re.fullmatch(r"ATR-[0-9A-Z]{6}", value) for value in ids)
    assert len(ids) > 1


def test_pdf_counter_is_per_tenant(store):
    counter = PdfDownloadCounter(store)
    assert counter.get("A") == 0
    assert counter.increment("A") == 1
    assert counter.increment("A") == 2
    assert counter.increment("B") == 1
    assert store.get_value(PDF_DOWNLOAD_COUNTER_KEY) == {"A": 2, "B": 1}


def test_session_save_and_defaults(store):
    sessions = SessionStore(store)
    assert sessions.get() is None

    saved = sessions.save("A", view="dashboard")
    assert saved == {"companyId": "A", "view": "dashboard", "activeTab": "dashboard", "currencyCode": "EUR"}
    assert sessions.get() == saved


def test_session_keeps_previous_fields(store):
    sessions = SessionStore(store)
    sessions.save("A", view="dashboard", active_tab="reports", currency_code="BRL")
    saved = sessions.save("A")
    assert saved["view"] == "dashboard"
    assert saved["activeTab"] == "reports"
    assert saved["currencyCode"] == "BRL"


def test_landing_view_clears_session(store):
    sessions = SessionStore(store)
    sessions.save("A", view="dashboard")
    assert sessions.save("A", view="landing") is None
    assert sessions.get() is None


def test_anonymous_session_only_for_auth_views(store):
    sessions = SessionStore(store)
    assert sessions.save(None, view="login")["companyId"] is None
    assert sessions.save(None, view="master")["view"] == "master"

    assert sessions.save(None, view="dashboard") is None
    assert sessions.get() is None


def test_clear(store):
    sessions = SessionStore(store)
    sessions.save("A", view="dashboard")
    sessions.clear()
    assert sessions.get() is None
