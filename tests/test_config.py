"""Tests for environment-driven settings."""

from __future__ import annotations

from pathlib import Path

import pytest

from meshprobe.config import Settings


class TestSettings:
    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("KUBERNETES_SERVICE_PORT", raising=False)
        s = Settings(_env_file=None)
        assert s.neighbour_limit == 10
        assert s.check_interval == 5.0
        assert s.kubernetes_service_port == "443"
        assert s.use_tls is False
        assert s.token_file == Path("/var/run/secrets/kubernetes.io/serviceaccount/token")

    def test_prefixed_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MESHPROBE_NEIGHBOUR_LIMIT", "3")
        monkeypatch.setenv("MESHPROBE_CHECK_ME_INGRESS", "false")
        monkeypatch.setenv("MESHPROBE_USE_TLS", "true")
        monkeypatch.setenv("MESHPROBE_HISTOGRAM_BUCKETS", "[0.1, 1, 10]")

        s = Settings(_env_file=None)
        assert s.neighbour_limit == 3
        assert s.check_me_ingress is False
        assert s.use_tls is True
        assert s.histogram_buckets == [0.1, 1.0, 10.0]

    def test_kubernetes_env_is_unprefixed(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("KUBERNETES_SERVICE_HOST", "10.96.0.1")
        monkeypatch.setenv("KUBERNETES_SERVICE_PORT", "6443")

        s = Settings(_env_file=None)
        assert s.kubernetes_service_host == "10.96.0.1"
        assert s.kubernetes_service_port == "6443"

    def test_ca_file(self, tmp_path: Path) -> None:
        s = Settings(_env_file=None, service_account_dir=tmp_path)
        assert s.ca_file == tmp_path / "ca.crt"
