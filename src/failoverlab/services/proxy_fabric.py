"""Toxiproxy fabric: one proxy per cluster member plus writer/reader aggregates."""

import json
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence

import requests
from packaging import version

from failoverlab.constants import (
    INSTANCE_PROXY_ALIAS,
    MIN_TOXIPROXY_VERSION,
    MYSQL_PORT,
    READER_PROXY_ALIAS,
    ROLE_INSTANCE,
    ROLE_READER,
    ROLE_WRITER,
    TOXIPROXY_API_PORT,
    WRITER_PROXY_ALIAS,
)
from failoverlab.errors import OrchestratorError, ProxyError
from failoverlab.errors_catalog import actionable_error
from failoverlab.models import ClusterInfo, ProxyHandle, ProxyMapping, Topology


class ProxyFabric:
    """Plans, starts and stops the fault-injection proxies of a run."""

    AGGREGATE_ALIASES = {
        ROLE_WRITER: WRITER_PROXY_ALIAS,
        ROLE_READER: READER_PROXY_ALIAS,
    }

    def __init__(
        self,
        docker_runtime,
        logger,
        console,
        image: str,
        proxied_domain_suffix: str,
        run_id: str,
        requests_module=requests,
        max_workers: int = 8,
        api_ready_retries: int = 30,
        api_ready_interval: float = 1.0,
    ):
        self.docker = docker_runtime
        self.logger = logger
        self.console = console
        self.image = image
        self.proxied_domain_suffix = proxied_domain_suffix
        self.run_id = run_id
        self.requests = requests_module
        self.max_workers = max_workers
        self.api_ready_retries = api_ready_retries
        self.api_ready_interval = api_ready_interval
        self._lock = threading.Lock()

    def create_per_instance_proxies(
        self,
        instances: Sequence[str],
        listen_port: int,
        target_port: int = MYSQL_PORT,
    ) -> List[ProxyMapping]:
        return [
            ProxyMapping(
                role=ROLE_INSTANCE,
                network_alias=INSTANCE_PROXY_ALIAS.format(index=index),
                proxied_host=f"{instance}{self.proxied_domain_suffix}",
                target_host=instance,
                target_port=target_port,
                listen_port=listen_port,
            )
            for index, instance in enumerate(instances, start=1)
        ]

    def create_aggregate_proxy(
        self,
        role: str,
        target_host: str,
        target_port: int,
        listen_port: int,
    ) -> ProxyMapping:
        if role not in self.AGGREGATE_ALIASES:
            raise ProxyError(f"Unknown aggregate proxy role: {role}")
        return ProxyMapping(
            role=role,
            network_alias=self.AGGREGATE_ALIASES[role],
            proxied_host=f"{target_host}{self.proxied_domain_suffix}",
            target_host=target_host,
            target_port=target_port,
            listen_port=listen_port,
        )

    def plan(self, cluster: ClusterInfo, listen_port: int, target_port: int = MYSQL_PORT) -> Topology:
        if not cluster.instances:
            raise ProxyError(f"Cluster {cluster.identifier} has no instances to proxy.")

        mappings = self.create_per_instance_proxies(cluster.instances, listen_port, target_port)
        mappings.append(
            self.create_aggregate_proxy(ROLE_WRITER, cluster.writer_endpoint, target_port, listen_port)
        )
        mappings.append(
            self.create_aggregate_proxy(ROLE_READER, cluster.reader_endpoint, target_port, listen_port)
        )

        aliases = [alias for mapping in mappings for alias in mapping.aliases]
        duplicates = sorted({alias for alias in aliases if aliases.count(alias) > 1})
        if duplicates:
            raise ProxyError(f"Proxy aliases must be unique within a run: {', '.join(duplicates)}")

        return Topology(
            cluster=cluster,
            proxies=tuple(mappings),
            proxied_domain_suffix=self.proxied_domain_suffix,
            listen_port=listen_port,
        )

    def start_all(self, mappings: Sequence[ProxyMapping], network: str, started: List[ProxyHandle]):
        """Starts every mapping, appending each running proxy to ``started``.

        All starts are attempted; failures are raised together afterwards.
        """
        self.console.print(f"[blue]Starting {len(mappings)} proxies...[/blue]")

        def start_one(mapping: ProxyMapping) -> Optional[ProxyError]:
            try:
                self.start(mapping, network, started)
            except ProxyError as exc:
                return exc
            except OrchestratorError as exc:
                return ProxyError(self._message(mapping, "started", exc))
            self.logger.info(
                "Proxy %s -> %s:%s is up",
                mapping.network_alias,
                mapping.target_host,
                mapping.target_port,
            )
            return None

        errors = self._fan_out(start_one, mappings)
        if errors:
            raise ProxyError("; ".join(str(error) for error in errors))
        self.console.print("[green]All proxies are active.[/green]")

    def start(self, mapping: ProxyMapping, network: str, started: List[ProxyHandle]) -> ProxyHandle:
        container_name = f"failoverlab_{self.run_id}_{mapping.network_alias}"
        # docker run can leave a created container behind even when it fails.
        handle = ProxyHandle(mapping=mapping, container_name=container_name, api_url="")
        with self._lock:
            started.append(handle)
        self.docker.start_container(
            name=container_name,
            image=self.image,
            network=network,
            aliases=mapping.aliases,
            publish=[f"127.0.0.1::{TOXIPROXY_API_PORT}"],
        )

        host, port = self.docker.published_port(container_name, TOXIPROXY_API_PORT)
        handle.api_url = f"http://{host}:{port}"
        self._wait_for_api(handle)
        self._create_proxy(handle)
        return handle

    def stop_all(self, handles: Sequence[ProxyHandle]) -> List[ProxyError]:
        """Stops every handle; never short-circuits, returns the collected failures."""

        def stop_one(handle: ProxyHandle) -> Optional[ProxyError]:
            try:
                self.docker.stop_container(handle.container_name)
            except OrchestratorError as exc:
                self.logger.warning("Could not stop proxy %s: %s", handle.mapping.network_alias, exc)
                return ProxyError(self._message(handle.mapping, "stopped", exc))
            return None

        return self._fan_out(stop_one, handles)

    def _fan_out(self, func, items) -> List[ProxyError]:
        if not items:
            return []
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(items))) as executor:
            results = list(executor.map(func, items))
        return [result for result in results if result is not None]

    def _wait_for_api(self, handle: ProxyHandle):
        last_error: Optional[Exception] = None
        for _ in range(self.api_ready_retries):
            try:
                response = self.requests.get(f"{handle.api_url}/version", timeout=5)
                response.raise_for_status()
                self._check_version(handle, response.text)
                return
            except self.requests.RequestException as exc:
                last_error = exc
            time.sleep(self.api_ready_interval)

        raise ProxyError(self._message(handle.mapping, "reached", last_error))

    def _check_version(self, handle: ProxyHandle, payload: str):
        raw = payload.strip()
        if raw.startswith("{"):
            try:
                raw = str(json.loads(raw).get("version", ""))
            except ValueError:
                raw = ""
        try:
            server_version = version.parse(raw.lstrip("v"))
        except version.InvalidVersion:
            self.logger.warning("Unrecognized Toxiproxy version '%s' on %s", raw, handle.container_name)
            return
        if server_version < version.parse(MIN_TOXIPROXY_VERSION):
            raise ProxyError(
                self._message(
                    handle.mapping,
                    "used",
                    f"Toxiproxy {server_version} is older than {MIN_TOXIPROXY_VERSION}",
                )
            )

    def _create_proxy(self, handle: ProxyHandle):
        mapping = handle.mapping
        payload = {
            "name": f"{mapping.target_host}:{mapping.target_port}",
            "listen": f"0.0.0.0:{mapping.listen_port}",
            "upstream": f"{mapping.target_host}:{mapping.target_port}",
            "enabled": True,
        }
        try:
            response = self.requests.post(f"{handle.api_url}/proxies", json=payload, timeout=10)
            response.raise_for_status()
        except self.requests.RequestException as exc:
            raise ProxyError(self._message(mapping, "created", exc)) from exc

    @staticmethod
    def _message(mapping: ProxyMapping, action: str, reason) -> str:
        return actionable_error(
            "proxy_failed",
            alias=mapping.network_alias,
            action=action,
            reason=str(reason),
        )
