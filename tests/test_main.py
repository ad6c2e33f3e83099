"""Tests for the one-shot CLI check."""

from __future__ import annotations

from unittest.mock import patch

from meshprobe.main import run_check


def _fake_checker(result: dict[str, str]):
    instance = patch("meshprobe.main.Checker").start().return_value
    instance.last_check_result = result
    return instance


class TestRunCheck:
    def teardown_method(self) -> None:
        patch.stopall()

    def test_all_ok(self) -> None:
        checker = _fake_checker({"me_ingress": "ok", "neighbourhood_state": "skipped"})
        assert run_check() == 0
        checker.run.assert_called_once()
        checker.close.assert_called_once()

    def test_failure_exit_code(self) -> None:
        _fake_checker({"me_ingress": "error: [Errno 111] Connection refused"})
        assert run_check() == 1
