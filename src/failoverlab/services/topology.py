"""Translates a provisioned topology into the environment of the subject under test."""

from typing import Dict, Iterator, Mapping, Optional

from failoverlab.models import Credentials, Settings, Topology

INSTANCE_URL_KEY = "MYSQL_INSTANCE_{index}_URL"
INSTANCE_PROXY_KEY = "TOXIPROXY_INSTANCE_{index}_NETWORK_ALIAS"
CLUSTER_KEY_PREFIXES = ("MYSQL_INSTANCE_", "TOXIPROXY_")
CLUSTER_KEYS = frozenset(
    {
        "TEST_SERVER",
        "TEST_RO_SERVER",
        "DB_CONN_STR_SUFFIX",
        "PROXIED_CLUSTER_TEMPLATE",
        "PROXIED_DOMAIN_NAME_SUFFIX",
        "TOXIPROXY_CLUSTER_NETWORK_ALIAS",
        "TOXIPROXY_RO_CLUSTER_NETWORK_ALIAS",
        "MYSQL_PROXY_PORT",
        "TEST_DB_CLUSTER_IDENTIFIER",
    }
)
CREDENTIAL_KEYS = frozenset({"AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY", "AWS_SESSION_TOKEN"})


def is_cluster_key(key: str) -> bool:
    return key in CLUSTER_KEYS or key in CREDENTIAL_KEYS or key.startswith(CLUSTER_KEY_PREFIXES)


class BoundaryConfig(Mapping[str, str]):
    """Immutable key/value configuration handed to the subject under test."""

    def __init__(self, values: Optional[Mapping[str, str]] = None):
        self._values: Dict[str, str] = {key: str(value) for key, value in (values or {}).items()}

    def __getitem__(self, key: str) -> str:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        shown = {
            key: ("***" if key in CREDENTIAL_KEYS or "PASSWORD" in key else value)
            for key, value in self._values.items()
        }
        return f"BoundaryConfig({shown!r})"

    def merged(self, other: Mapping[str, str]) -> "BoundaryConfig":
        values = dict(self._values)
        values.update(other)
        return BoundaryConfig(values)

    def as_env(self) -> Dict[str, str]:
        return dict(self._values)


class TopologyConfigurator:
    """Builds the boundary configuration published to the subject under test."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def base_config(self) -> BoundaryConfig:
        settings = self.settings
        values = {
            "TEST_UID": settings.db_username,
            "TEST_PASSWORD": settings.db_password,
            "TEST_DATABASE": settings.database_name,
            "MYSQL_PORT": str(settings.db_port),
            "ODBCINI": "/etc/odbc.ini",
            "ODBCINST": "/etc/odbcinst.ini",
            "ODBCSYSINI": "/etc",
            "TEST_DRIVER": "/app/lib/libmyodbc8a.so",
        }
        if settings.dsn:
            values["TEST_DSN"] = settings.dsn
        return BoundaryConfig(values)

    def publish(self, topology: Topology, credentials: Optional[Credentials] = None) -> BoundaryConfig:
        cluster = topology.cluster
        suffix = topology.proxied_domain_suffix
        values = {
            "TEST_SERVER": cluster.writer_endpoint,
            "TEST_RO_SERVER": cluster.reader_endpoint,
            "DB_CONN_STR_SUFFIX": f".{cluster.routing_suffix}",
            "PROXIED_CLUSTER_TEMPLATE": f"?.{cluster.routing_suffix}{suffix}",
            "PROXIED_DOMAIN_NAME_SUFFIX": suffix,
            "TOXIPROXY_CLUSTER_NETWORK_ALIAS": topology.writer_proxy.network_alias,
            "TOXIPROXY_RO_CLUSTER_NETWORK_ALIAS": topology.reader_proxy.network_alias,
            "MYSQL_PROXY_PORT": str(topology.listen_port),
        }

        for index, proxy in enumerate(topology.instance_proxies, start=1):
            values[INSTANCE_URL_KEY.format(index=index)] = proxy.target_host
            values[INSTANCE_PROXY_KEY.format(index=index)] = proxy.network_alias

        if credentials is not None:
            values["AWS_ACCESS_KEY_ID"] = credentials.access_key_id
            values["AWS_SECRET_ACCESS_KEY"] = credentials.secret_access_key
            if credentials.session_token:
                values["AWS_SESSION_TOKEN"] = credentials.session_token
            values["TEST_DB_CLUSTER_IDENTIFIER"] = cluster.identifier

        return self.base_config().merged(values)
