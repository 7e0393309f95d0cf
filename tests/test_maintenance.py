"""Tests of the maintenance command line."""

import pytest

from pos_shifts.scripts import maintenance
from pos_shifts.services.assignments import NotFound
from pos_shifts.services.balance_flows import RecalculationResult
from pos_shifts.utils.fanout import FanOutResult


def test_sweep_command(monkeypatch, capsys):
    calls = []

    def fake_sweep(closing_id, register_number):
        calls.append((closing_id, register_number))
        return FanOutResult(affected={"expenses": 2, "bill_counts": 0})

    monkeypatch.setattr(maintenance, "sweep_pending_records", fake_sweep)

    assert maintenance.main(["sweep", "5", "1"]) == 0
    assert calls == [(5, 1)]
    out = capsys.readouterr().out
    assert "Sweep of closing 5: 2 rows" in out
    assert "expenses: 2" in out


def test_cascade_command_reports_failures(monkeypatch, capsys):
    result = FanOutResult(affected={"expenses": 1}, errors={"bill_counts": "locked"})
    monkeypatch.setattr(maintenance, "deactivate_same_day_records", lambda user_id: result)

    assert maintenance.main(["cascade", "7"]) == 1
    assert "bill_counts: ERROR locked" in capsys.readouterr().out


def test_recalculate_command(monkeypatch, capsys):
    monkeypatch.setattr(maintenance, "recompute_all", lambda: RecalculationResult(updated=3))

    assert maintenance.main(["recalculate"]) == 0
    assert "3 updated, 0 errors" in capsys.readouterr().out


def test_service_error_exit_code(monkeypatch):
    def missing(closing_id, register_number):
        raise NotFound(f"Closing {closing_id} not found.")

    monkeypatch.setattr(maintenance, "sweep_pending_records", missing)
    assert maintenance.main(["sweep", "9", "1"]) == 2


def test_unknown_command():
    with pytest.raises(SystemExit):
        maintenance.main(["purge"])
