import pytest
import requests

import failoverlab.services.proxy_fabric as proxy_fabric_module
from failoverlab.errors import OrchestratorError, ProxyError
from failoverlab.models import ClusterInfo
from failoverlab.services.proxy_fabric import ProxyFabric


class DummyLogger:
    def info(self, *_args, **_kwargs):
        return None

    def warning(self, *_args, **_kwargs):
        return None


class DummyConsole:
    def print(self, *_args, **_kwargs):
        return None


class FakeDocker:
    def __init__(self, fail_start_for=(), fail_stop_for=()):
        self.started = []
        self.stopped = []
        self.fail_start_for = set(fail_start_for)
        self.fail_stop_for = set(fail_stop_for)

    def start_container(self, name, image, network, aliases=(), env=None, publish=(), command=()):
        if any(alias in self.fail_start_for for alias in aliases):
            raise OrchestratorError(f"docker run failed for {name}")
        self.started.append({"name": name, "network": network, "aliases": tuple(aliases)})
        return name

    def published_port(self, name, container_port):
        return "127.0.0.1", 40000 + len(self.started)

    def stop_container(self, name):
        self.stopped.append(name)
        if any(name.endswith(alias) for alias in self.fail_stop_for):
            raise OrchestratorError(f"docker rm failed for {name}")


class FakeResponse:
    def __init__(self, text="", status_code=200):
        self.text = text
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"status {self.status_code}")


class FakeRequests:
    RequestException = requests.RequestException

    def __init__(self, version_text="2.5.0"):
        self.version_text = version_text
        self.posts = []

    def get(self, url, timeout=None):
        return FakeResponse(self.version_text)

    def post(self, url, json=None, timeout=None):
        self.posts.append((url, json))
        return FakeResponse()


def _cluster(instances):
    return ClusterInfo(
        identifier="lab",
        writer_endpoint="lab.cluster-123",
        reader_endpoint="lab.cluster-ro-123",
        routing_suffix="cluster-123",
        instances=tuple(instances),
    )


def _fabric(docker=None, requests_module=None):
    return ProxyFabric(
        docker_runtime=docker or FakeDocker(),
        logger=DummyLogger(),
        console=DummyConsole(),
        image="ghcr.io/shopify/toxiproxy:2.5.0",
        proxied_domain_suffix=".proxied",
        run_id="run1",
        requests_module=requests_module or FakeRequests(),
        api_ready_retries=2,
        api_ready_interval=0.0,
    )


@pytest.mark.parametrize("count", [1, 2, 5])
def test_plan_creates_instance_count_plus_two_distinct_proxies(count):
    instances = [f"node-{index}.example" for index in range(count)]

    topology = _fabric().plan(_cluster(instances), listen_port=8666)

    aliases = {proxy.network_alias for proxy in topology.proxies}
    assert len(topology.proxies) == count + 2
    assert len(aliases) == count + 2
    assert {proxy.listen_port for proxy in topology.proxies} == {8666}


def test_plan_matches_worked_example():
    topology = _fabric().plan(_cluster(["a.node", "b.node", "c.node"]), listen_port=8666)

    first = topology.instance_proxies[0]
    assert len(topology.proxies) == 5
    assert first.network_alias == "toxiproxy-instance-1"
    assert first.proxied_host == "a.node.proxied"
    assert first.target_host == "a.node"
    assert first.target_port == 3306
    assert topology.writer_proxy.network_alias == "toxiproxy-instance-cluster"
    assert topology.writer_proxy.proxied_host == "lab.cluster-123.proxied"
    assert topology.reader_proxy.network_alias == "toxiproxy-ro-instance-cluster"
    assert topology.reader_proxy.target_host == "lab.cluster-ro-123"


def test_plan_rejects_duplicate_aliases():
    with pytest.raises(ProxyError, match="unique"):
        _fabric().plan(_cluster(["a.node", "a.node"]), listen_port=8666)


def test_plan_rejects_cluster_without_instances():
    with pytest.raises(ProxyError, match="no instances"):
        _fabric().plan(_cluster([]), listen_port=8666)


def test_aggregate_proxy_rejects_unknown_role():
    with pytest.raises(ProxyError, match="Unknown aggregate proxy role"):
        _fabric().create_aggregate_proxy("primary", "host", 3306, 8666)


def test_start_all_configures_each_proxy():
    docker = FakeDocker()
    fake_requests = FakeRequests()
    fabric = _fabric(docker, fake_requests)
    topology = fabric.plan(_cluster(["a.node", "b.node"]), listen_port=8666)
    started = []

    fabric.start_all(topology.proxies, "net", started)

    assert len(started) == 4
    assert {entry["network"] for entry in docker.started} == {"net"}
    assert ("toxiproxy-instance-1", "a.node.proxied") in [entry["aliases"] for entry in docker.started]
    payloads = {payload["upstream"]: payload for _url, payload in fake_requests.posts}
    assert payloads["a.node:3306"]["listen"] == "0.0.0.0:8666"
    assert payloads["lab.cluster-123:3306"]["enabled"] is True
    assert all(url.endswith("/proxies") for url, _payload in fake_requests.posts)


def test_start_all_attempts_every_proxy_before_failing():
    docker = FakeDocker(fail_start_for={"toxiproxy-instance-1"})
    fabric = _fabric(docker)
    topology = fabric.plan(_cluster(["a.node", "b.node"]), listen_port=8666)
    started = []

    with pytest.raises(ProxyError, match="toxiproxy-instance-1"):
        fabric.start_all(topology.proxies, "net", started)

    assert len(started) == 4


def test_start_rejects_old_toxiproxy(monkeypatch):
    monkeypatch.setattr(proxy_fabric_module.time, "sleep", lambda *_args, **_kwargs: None)
    fabric = _fabric(requests_module=FakeRequests(version_text="1.2.1"))
    topology = fabric.plan(_cluster(["a.node"]), listen_port=8666)

    with pytest.raises(ProxyError, match="older than"):
        fabric.start_all(topology.proxies, "net", [])


def test_start_accepts_json_version_payload():
    fabric = _fabric(requests_module=FakeRequests(version_text='{"version": "2.9.0"}'))
    topology = fabric.plan(_cluster(["a.node"]), listen_port=8666)
    started = []

    fabric.start_all(topology.proxies, "net", started)

    assert len(started) == 3


def test_stop_all_continues_past_failures():
    docker = FakeDocker(fail_stop_for={"toxiproxy-instance-1"})
    fabric = _fabric(docker)
    topology = fabric.plan(_cluster(["a.node", "b.node"]), listen_port=8666)
    started = []
    fabric.start_all(topology.proxies, "net", started)

    errors = fabric.stop_all(started)

    assert len(docker.stopped) == 4
    assert len(errors) == 1
    assert "toxiproxy-instance-1" in str(errors[0])


def test_container_of_failed_start_is_still_removed():
    docker = FakeDocker(fail_start_for={"toxiproxy-instance-1"})
    fabric = _fabric(docker)
    topology = fabric.plan(_cluster(["a.node"]), listen_port=8666)
    started = []

    with pytest.raises(ProxyError):
        fabric.start_all(topology.proxies, "net", started)
    errors = fabric.stop_all(started)

    assert errors == []
    assert "failoverlab_run1_toxiproxy-instance-1" in docker.stopped
    assert len(docker.stopped) == 3


def test_start_warns_on_unrecognized_version():
    fabric = _fabric(requests_module=FakeRequests(version_text="nightly-build"))
    topology = fabric.plan(_cluster(["a.node"]), listen_port=8666)
    started = []

    fabric.start_all(topology.proxies, "net", started)

    assert len(started) == 3
    assert all(handle.api_url.startswith("http://127.0.0.1:") for handle in started)
