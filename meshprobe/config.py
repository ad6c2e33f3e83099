from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "MESHPROBE_",
        "extra": "ignore",
        "populate_by_name": True,
    }

    # Endpoints of this deployment
    ingress_url: str = ""  # e.g. https://meshprobe.example.com
    service_url: str = "http://meshprobe.meshprobe.svc.cluster.local:8080"

    # Injected by the kubelet into every pod, hence unprefixed
    kubernetes_service_host: str = Field(default="", validation_alias="KUBERNETES_SERVICE_HOST")
    kubernetes_service_port: str = Field(default="443", validation_alias="KUBERNETES_SERVICE_PORT")

    # Neighbourhood discovery
    namespace: str = "meshprobe"
    neighbour_filter: str = "app.kubernetes.io/name=meshprobe"
    neighbour_limit: int = 10  # 0 = check every neighbour
    node_name: str = ""  # own node, anchors the neighbour ring
    allow_unschedulable: bool = False

    # Individual checks
    check_api_server_direct: bool = True
    check_api_server_dns: bool = True
    check_me_ingress: bool = True
    check_me_service: bool = True
    check_neighbourhood: bool = True
    check_interval: float = 5.0  # seconds between scheduled runs

    # Transport
    use_tls: bool = False
    extra_ca: str = ""  # path to an additional PEM bundle
    insecure: bool = False
    reuse_connections: bool = False
    request_timeout: float = 5.0
    max_workers: int = 32
    histogram_buckets: list[float] = Field(
        default_factory=lambda: [.0005, .001, .0025, .005, .01, .025, .05, .1, .25, .5, 1, 2.5, 5, 10],
    )
    service_account_dir: Path = Path("/var/run/secrets/kubernetes.io/serviceaccount")

    # Server
    api_host: str = "0.0.0.0"
    http_port: int = 8080
    https_port: int = 8443
    cert_file: str = ""
    key_file: str = ""

    # Logging
    log_level: str = "INFO"

    @property
    def token_file(self) -> Path:
        return self.service_account_dir / "token"

    @property
    def ca_file(self) -> Path:
        return self.service_account_dir / "ca.crt"


settings = Settings()
