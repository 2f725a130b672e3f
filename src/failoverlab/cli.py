import logging
import os

import click
from rich.logging import RichHandler

from .constants import DEFAULT_CONFIG_FILE
from .core import LifecycleManager
from .errors import OrchestratorError
from .models import Settings
from .services.config_loader import ConfigLoader


def _resolve_option(cli_value, config, key, default=None):
    if cli_value is not None:
        return cli_value
    if key in config:
        return config[key]
    return default


def _env(name, default=None):
    value = os.environ.get(name)
    return value if value else default


logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True, show_level=False, show_path=False)],
)


@click.command()
@click.option(
    "--config",
    required=False,
    type=click.Path(),
    help=f"Path to a YAML configuration file. Defaults to {DEFAULT_CONFIG_FILE} if present.",
)
@click.option("--region", required=False, help="AWS region of the test cluster (default: us-east-2)")
@click.option(
    "--instances",
    required=False,
    type=click.IntRange(min=1),
    default=None,
    help="Number of cluster instances to create (default: 5).",
)
@click.option(
    "--cluster-id",
    required=False,
    help="Cluster identifier to use. Defaults to TEST_DB_CLUSTER_IDENTIFIER or a generated one.",
)
@click.option(
    "--reuse-cluster",
    is_flag=True,
    default=None,
    help="Attach to the existing cluster given by --cluster-id instead of creating one.",
)
@click.option(
    "--proxy-port",
    required=False,
    type=click.IntRange(min=1, max=65535),
    default=None,
    help="Listen port shared by every fault-injection proxy (default: 8666).",
)
@click.option("--subject-image", required=False, help="Docker image of the test container.")
@click.option(
    "--report-file",
    required=False,
    type=click.Path(),
    help="Path of the JSON run report (default: output/run-report.json).",
)
@click.option("--verbose", is_flag=True, default=None, help="Enable verbose logging")
@click.option("--log-file", type=click.Path(), help="Path to log file")
def main(
    config,
    region,
    instances,
    cluster_id,
    reuse_cluster,
    proxy_port,
    subject_image,
    report_file,
    verbose,
    log_file,
):
    """Provision a proxied test cluster, run the failover suite against it and tear it down."""
    logger = logging.getLogger("failoverlab")

    try:
        config_loader = ConfigLoader()
        resolved_config = config
        if resolved_config is None:
            default_config_path = os.path.join(os.getcwd(), DEFAULT_CONFIG_FILE)
            if os.path.exists(default_config_path):
                resolved_config = default_config_path

        config_values = config_loader.load(resolved_config)
    except OrchestratorError as exc:
        raise click.ClickException(str(exc)) from exc

    defaults = Settings()
    verbose = bool(_resolve_option(verbose, config_values, "verbose", default=False))
    log_file = _resolve_option(log_file, config_values, "log_file")
    subject_command = _resolve_option(None, config_values, "subject_command", default=defaults.subject_command)
    if isinstance(subject_command, str):
        subject_command = subject_command.split()

    try:
        settings = Settings(
            region=_resolve_option(region, config_values, "region", default=defaults.region),
            instance_count=int(
                _resolve_option(instances, config_values, "instances", default=defaults.instance_count)
            ),
            instance_class=_resolve_option(
                None, config_values, "instance_class", default=defaults.instance_class
            ),
            engine=_resolve_option(None, config_values, "engine", default=defaults.engine),
            engine_version=_resolve_option(None, config_values, "engine_version"),
            database_name=_resolve_option(None, config_values, "database", default=defaults.database_name),
            db_username=_env("TEST_USERNAME", defaults.db_username),
            db_password=_env("TEST_PASSWORD", defaults.db_password),
            dsn=_env("TEST_DSN"),
            cluster_identifier=_resolve_option(
                cluster_id,
                config_values,
                "cluster_id",
                default=_env("TEST_DB_CLUSTER_IDENTIFIER"),
            ),
            reuse_cluster=bool(_resolve_option(reuse_cluster, config_values, "reuse_cluster", default=False)),
            security_group=_resolve_option(
                None, config_values, "security_group", default=defaults.security_group
            ),
            proxy_listen_port=int(
                _resolve_option(proxy_port, config_values, "proxy_port", default=defaults.proxy_listen_port)
            ),
            proxied_domain_suffix=_resolve_option(
                None, config_values, "proxied_domain_suffix", default=defaults.proxied_domain_suffix
            ),
            toxiproxy_image=_resolve_option(
                None, config_values, "toxiproxy_image", default=defaults.toxiproxy_image
            ),
            subject_image=_resolve_option(
                subject_image, config_values, "subject_image", default=defaults.subject_image
            ),
            subject_workdir=_resolve_option(
                None, config_values, "subject_workdir", default=defaults.subject_workdir
            ),
            subject_command=tuple(subject_command),
            report_file=_resolve_option(report_file, config_values, "report_file", default=defaults.report_file),
        )
    except (TypeError, ValueError) as exc:
        raise click.ClickException(f"Invalid configuration value: {exc}") from exc

    if settings.reuse_cluster and not settings.cluster_identifier:
        raise click.ClickException("--reuse-cluster requires --cluster-id (or TEST_DB_CLUSTER_IDENTIFIER).")

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.addHandler(file_handler)

    try:
        manager = LifecycleManager(settings=settings)
    except OrchestratorError as exc:
        raise click.ClickException(str(exc)) from exc

    raise SystemExit(manager.run())


if __name__ == "__main__":
    main()
