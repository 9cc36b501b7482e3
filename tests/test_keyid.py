import argparse

import pytest

from lead_finder.core.keys import key_id
from lead_finder.core.ledger import InMemoryCreditLedger
from lead_finder.jobs import keyid

API_KEY = "AIzaSyCliKey"


@pytest.fixture
def memory_ledger(monkeypatch, settings):
    ledger = InMemoryCreditLedger.from_settings(settings)
    monkeypatch.setattr(keyid, "build_ledger", lambda: ledger)
    return ledger


def test_build_parser_defaults():
    parser = keyid.build_parser()
    args = parser.parse_args([API_KEY])
    assert isinstance(parser, argparse.ArgumentParser)
    assert args.api_key == API_KEY
    assert args.balance is False
    assert args.add_free == 0
    assert args.add_paid == 0


def test_run_prints_normalized_key_and_ledger_id(capsys, memory_ledger):
    assert keyid.run([f"'{API_KEY}'"]) == 0

    out = capsys.readouterr().out
    assert f"normalized key: {API_KEY}" in out
    assert key_id(API_KEY) in out
    assert "credits:" not in out


def test_run_tops_up_and_prints_balance(capsys, memory_ledger):
    assert keyid.run([API_KEY, "--add-paid", "10", "--add-free", "1"]) == 0

    out = capsys.readouterr().out
    assert "free=3 paid=10 total=13" in out


def test_run_tops_up_both_pools_in_one_call(capsys, memory_ledger, monkeypatch):
    monkeypatch.setattr(memory_ledger, "fund", lambda *args: pytest.fail("fund called per pool"))

    assert keyid.run([API_KEY, "--add-free", "2", "--add-paid", "3"]) == 0

    assert "free=4 paid=3 total=7" in capsys.readouterr().out


def test_run_rejects_blank_key(memory_ledger):
    with pytest.raises(SystemExit):
        keyid.run(["  "])


def test_run_rejects_negative_amounts(memory_ledger):
    with pytest.raises(SystemExit):
        keyid.run([API_KEY, "--add-paid", "-1"])
