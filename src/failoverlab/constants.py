"""Shared constants for failoverlab."""

MYSQL_PORT = 3306
PROXY_LISTEN_PORT = 8666
TOXIPROXY_API_PORT = 8474
MIN_TOXIPROXY_VERSION = "2.0.0"
PROXIED_DOMAIN_NAME_SUFFIX = ".proxied"

INSTANCE_PROXY_ALIAS = "toxiproxy-instance-{index}"
WRITER_PROXY_ALIAS = "toxiproxy-instance-cluster"
READER_PROXY_ALIAS = "toxiproxy-ro-instance-cluster"

ROLE_INSTANCE = "instance"
ROLE_WRITER = "writer"
ROLE_READER = "reader"

DEFAULT_CONFIG_FILE = ".failoverlab.yml"
