"""Shared domain models for failoverlab."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from .constants import (
    MYSQL_PORT,
    PROXIED_DOMAIN_NAME_SUFFIX,
    PROXY_LISTEN_PORT,
    ROLE_INSTANCE,
    ROLE_READER,
    ROLE_WRITER,
)


class LifecycleState(str, Enum):
    IDLE = "idle"
    AUTHORIZED = "authorized"
    PROVISIONED = "provisioned"
    PROXIES_ACTIVE = "proxies_active"
    RUNNING = "running"
    TEARING_DOWN = "tearing_down"


@dataclass(frozen=True)
class Credentials:
    """AWS credentials gating the clustered failover path."""

    access_key_id: str
    secret_access_key: str
    session_token: Optional[str] = None


@dataclass(frozen=True)
class Settings:
    """Tunables for one orchestrated session."""

    region: str = "us-east-2"
    db_port: int = MYSQL_PORT
    instance_count: int = 5
    instance_class: str = "db.r5.large"
    engine: str = "aurora-mysql"
    engine_version: Optional[str] = None
    database_name: str = "test"
    db_username: str = "my_test_username"
    db_password: str = "my_test_password"
    dsn: Optional[str] = None
    cluster_identifier: Optional[str] = None
    reuse_cluster: bool = False
    security_group: str = "default"
    proxy_listen_port: int = PROXY_LISTEN_PORT
    proxied_domain_suffix: str = PROXIED_DOMAIN_NAME_SUFFIX
    toxiproxy_image: str = "ghcr.io/shopify/toxiproxy:2.5.0"
    subject_image: str = "odbc/rds-test-container"
    subject_alias: str = "test-container"
    subject_workdir: str = "/app/integration/bin"
    subject_command: Tuple[str, ...] = ("./integration",)
    subject_idle_command: Tuple[str, ...] = ("tail", "-f", "/dev/null")
    report_file: str = "output/run-report.json"


@dataclass(frozen=True)
class ClusterInfo:
    identifier: str
    writer_endpoint: str
    reader_endpoint: str
    routing_suffix: str
    instances: Tuple[str, ...]


@dataclass(frozen=True)
class ProxyMapping:
    """One fault-injection proxy: where it listens and what it forwards to."""

    role: str
    network_alias: str
    proxied_host: str
    target_host: str
    target_port: int
    listen_port: int

    @property
    def aliases(self) -> Tuple[str, str]:
        return self.network_alias, self.proxied_host


@dataclass(frozen=True)
class Topology:
    cluster: ClusterInfo
    proxies: Tuple[ProxyMapping, ...]
    proxied_domain_suffix: str
    listen_port: int

    @property
    def instance_proxies(self) -> List[ProxyMapping]:
        return [proxy for proxy in self.proxies if proxy.role == ROLE_INSTANCE]

    @property
    def writer_proxy(self) -> ProxyMapping:
        return self._single(ROLE_WRITER)

    @property
    def reader_proxy(self) -> ProxyMapping:
        return self._single(ROLE_READER)

    def _single(self, role: str) -> ProxyMapping:
        for proxy in self.proxies:
            if proxy.role == role:
                return proxy
        raise KeyError(f"Topology has no {role} proxy")


@dataclass
class ProxyHandle:
    """A started proxy container and the host-side URL of its control API."""

    mapping: ProxyMapping
    container_name: str
    api_url: str


@dataclass
class RunContext:
    """Mutable state of one orchestrated session, owned by a single LifecycleManager."""

    run_id: str
    network_name: str
    credentials: Optional[Credentials] = None
    runner_ip: Optional[str] = None
    authorized: bool = False
    cluster_identifier: Optional[str] = None
    cluster_created: bool = False
    topology: Optional[Topology] = None
    proxies: List[ProxyHandle] = field(default_factory=list)
    subject_container: Optional[str] = None
    network_created: bool = False
    state: LifecycleState = LifecycleState.IDLE

    @property
    def cluster_enabled(self) -> bool:
        return self.credentials is not None


@dataclass(frozen=True)
class TeardownFailure:
    step: str
    error: str


@dataclass
class TeardownReport:
    """Outcome of one teardown pass; failures are leak risks, not test failures."""

    steps: List[str] = field(default_factory=list)
    failures: List[TeardownFailure] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.failures
