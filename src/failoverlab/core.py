import logging
import subprocess
import uuid
from typing import List, Mapping, Optional

import boto3
from rich.console import Console

from .errors import (
    ClusterExistsError,
    LifecycleError,
    NotFoundError,
    OrchestratorError,
    ProvisionError,
    ProxyError,
    StepFailure,
)
from .errors_catalog import actionable_error
from .models import (
    ClusterInfo,
    LifecycleState,
    RunContext,
    Settings,
    TeardownFailure,
    TeardownReport,
)
from .services.access import AccessController
from .services.cluster import ClusterProvisioner
from .services.command_runner import CommandRunner
from .services.credentials import resolve_credentials
from .services.docker_runtime import DockerRuntimeService
from .services.proxy_fabric import ProxyFabric
from .services.report import RunReportService
from .services.topology import BoundaryConfig, TopologyConfigurator

console = Console()
logger = logging.getLogger("failoverlab")


class LifecycleManager:
    """Provisions a failover-test topology, runs the subject and tears everything down."""

    TRANSITIONS = {
        LifecycleState.IDLE: {
            LifecycleState.AUTHORIZED,
            LifecycleState.RUNNING,
            LifecycleState.TEARING_DOWN,
        },
        LifecycleState.AUTHORIZED: {LifecycleState.PROVISIONED, LifecycleState.TEARING_DOWN},
        LifecycleState.PROVISIONED: {LifecycleState.PROXIES_ACTIVE, LifecycleState.TEARING_DOWN},
        LifecycleState.PROXIES_ACTIVE: {LifecycleState.RUNNING, LifecycleState.TEARING_DOWN},
        LifecycleState.RUNNING: {LifecycleState.TEARING_DOWN},
        LifecycleState.TEARING_DOWN: {LifecycleState.IDLE},
    }

    def __init__(
        self,
        settings: Optional[Settings] = None,
        environ: Optional[Mapping[str, str]] = None,
        docker_runtime=None,
        access_controller=None,
        cluster_provisioner=None,
        proxy_fabric=None,
        report_service=None,
    ):
        self.settings = settings or Settings()
        run_id = uuid.uuid4().hex[:10]
        self.context = RunContext(
            run_id=run_id,
            network_name=f"failoverlab_{run_id}_net",
            credentials=resolve_credentials(environ),
        )
        self.boundary_config: Optional[BoundaryConfig] = None

        self.command_runner = CommandRunner(logger=logger)
        self.docker_runtime = docker_runtime or DockerRuntimeService(
            logger=logger,
            console=console,
            run_cmd=self._run_cmd,
        )
        self.proxy_fabric = proxy_fabric or ProxyFabric(
            docker_runtime=self.docker_runtime,
            logger=logger,
            console=console,
            image=self.settings.toxiproxy_image,
            proxied_domain_suffix=self.settings.proxied_domain_suffix,
            run_id=run_id,
        )
        self.configurator = TopologyConfigurator(self.settings)
        self.report_service = report_service or RunReportService(
            report_file=self.settings.report_file,
            logger=logger,
        )

        self.access_controller = access_controller
        self.cluster_provisioner = cluster_provisioner
        if self.context.cluster_enabled and (access_controller is None or cluster_provisioner is None):
            self._build_aws_services()

    def _build_aws_services(self):
        credentials = self.context.credentials
        session = boto3.session.Session(
            aws_access_key_id=credentials.access_key_id,
            aws_secret_access_key=credentials.secret_access_key,
            aws_session_token=credentials.session_token,
            region_name=self.settings.region,
        )
        if self.access_controller is None:
            self.access_controller = AccessController(
                ec2_client=session.client("ec2"),
                security_group=self.settings.security_group,
                port=self.settings.db_port,
                logger=logger,
            )
        if self.cluster_provisioner is None:
            self.cluster_provisioner = ClusterProvisioner(
                rds_client=session.client("rds"),
                logger=logger,
                console=console,
                instance_count=self.settings.instance_count,
                instance_class=self.settings.instance_class,
                engine=self.settings.engine,
                engine_version=self.settings.engine_version,
            )

    @property
    def state(self) -> LifecycleState:
        return self.context.state

    def _transition(self, target: LifecycleState):
        current = self.context.state
        if target not in self.TRANSITIONS[current]:
            raise LifecycleError(f"Illegal lifecycle transition: {current.value} -> {target.value}")
        if current == LifecycleState.IDLE and target == LifecycleState.RUNNING and self.context.cluster_enabled:
            raise LifecycleError("The cluster path must be provisioned before the subject runs.")
        logger.debug("Lifecycle: %s -> %s", current.value, target.value)
        self.context.state = target

    def _run_cmd(
        self,
        cmd: List[str],
        check: bool = True,
        capture_output: bool = False,
    ) -> subprocess.CompletedProcess:
        return self.command_runner.run(cmd, check=check, capture_output=capture_output)

    def _run_step(self, name: str, callback, *args, **kwargs):
        self.report_service.step_started(name)

        try:
            result = callback(*args, **kwargs)
        except Exception as exc:
            self.report_service.step_finished(name, "failed", error=str(exc))
            if isinstance(exc, StepFailure):
                raise
            raise StepFailure(name, exc) from exc

        self.report_service.step_finished(name, "success")
        return result

    def provision(self) -> BoundaryConfig:
        """Runs every setup step in order; on failure rolls back before re-raising."""
        context = self.context
        try:
            self._run_step("create_network", self._create_network)
            if context.cluster_enabled:
                self._run_step("discover_public_ip", self._discover_public_ip)
                self._run_step("authorize_ip", self._authorize)
                self._transition(LifecycleState.AUTHORIZED)
                cluster_info = self._run_step("create_cluster", self._create_cluster)
                self._transition(LifecycleState.PROVISIONED)
                self._run_step("start_proxies", self._start_proxies, cluster_info)
                self._transition(LifecycleState.PROXIES_ACTIVE)
            else:
                console.print(
                    "[yellow]AWS credentials are not set. Skipping cluster, proxies and allowlist.[/yellow]"
                )
                logger.info("Credentials absent; clustered failover path disabled.")
            self.boundary_config = self._run_step("publish_topology", self._publish)
        except OrchestratorError:
            self.teardown()
            raise

        return self.boundary_config

    def _create_network(self):
        self.context.network_created = True
        self.docker_runtime.create_network(self.context.network_name)

    def _discover_public_ip(self):
        self.context.runner_ip = self.access_controller.discover_public_ip()
        logger.info("Runner public IP: %s", self.context.runner_ip)

    def _authorize(self):
        self.context.authorized = True
        self.access_controller.authorize(self.context.runner_ip)

    def _create_cluster(self) -> ClusterInfo:
        settings = self.settings
        provisioner = self.cluster_provisioner

        if settings.reuse_cluster:
            if not settings.cluster_identifier:
                raise ProvisionError("Reusing a cluster requires a cluster identifier.")
            self.context.cluster_identifier = settings.cluster_identifier
            logger.info("Reusing existing cluster %s", settings.cluster_identifier)
            return provisioner.describe(settings.cluster_identifier)

        identifier = settings.cluster_identifier or provisioner.generate_identifier()
        self.context.cluster_identifier = identifier
        self.context.cluster_created = True
        try:
            return provisioner.create(
                settings.db_username,
                settings.db_password,
                identifier=identifier,
                database_name=settings.database_name,
            )
        except ClusterExistsError:
            self.context.cluster_created = False
            raise

    def _start_proxies(self, cluster_info: ClusterInfo):
        topology = self.proxy_fabric.plan(
            cluster_info,
            listen_port=self.settings.proxy_listen_port,
            target_port=self.settings.db_port,
        )
        self.context.topology = topology
        self.proxy_fabric.start_all(topology.proxies, self.context.network_name, self.context.proxies)
        logger.info("Proxies listen on port %s", topology.listen_port)

    def _publish(self) -> BoundaryConfig:
        if self.context.topology is None:
            return self.configurator.base_config()
        return self.configurator.publish(self.context.topology, self.context.credentials)

    def run_subject(self) -> int:
        self._transition(LifecycleState.RUNNING)
        return self._run_step("run_subject", self._run_subject)

    def _run_subject(self) -> int:
        settings = self.settings
        context = self.context
        name = f"failoverlab_{context.run_id}_subject"
        context.subject_container = name

        config = self.boundary_config if self.boundary_config is not None else self.configurator.base_config()
        self.docker_runtime.start_container(
            name=name,
            image=settings.subject_image,
            network=context.network_name,
            aliases=[settings.subject_alias],
            env=config.as_env(),
            command=settings.subject_idle_command,
        )
        console.print("[blue]Running the test executable...[/blue]")
        exit_code = self.docker_runtime.exec_in_container(
            name,
            settings.subject_command,
            workdir=settings.subject_workdir,
        )
        self.report_service.set_subject_exit_code(exit_code)
        return exit_code

    def teardown(self) -> TeardownReport:
        """Releases every provisioned resource in reverse order.

        Every step runs even when an earlier one fails; failures are collected
        and reported as leak warnings, never raised.
        """
        report = TeardownReport()
        if self.context.state == LifecycleState.IDLE and not self._has_resources():
            return report

        self._transition(LifecycleState.TEARING_DOWN)
        console.print("[dim]Tearing down the test topology...[/dim]")

        self._teardown_step(report, "stop_subject", self._stop_subject)
        self._teardown_step(report, "stop_proxies", self._stop_proxies)
        self._teardown_step(report, "delete_cluster", self._delete_cluster)
        self._teardown_step(report, "deauthorize_ip", self._deauthorize)
        self._teardown_step(report, "remove_network", self._remove_network)

        self._transition(LifecycleState.IDLE)

        for failure in report.failures:
            message = actionable_error("teardown_leak", step=failure.step, reason=failure.error)
            console.print(f"[yellow]Warning:[/yellow] {message}")
            logger.warning(message)
        return report

    def _has_resources(self) -> bool:
        context = self.context
        return bool(
            context.network_created
            or context.authorized
            or context.cluster_created
            or context.proxies
            or context.subject_container
        )

    def _teardown_step(self, report: TeardownReport, name: str, callback):
        report.steps.append(name)
        self.report_service.step_started(name, phase="teardown")
        errors = []
        try:
            errors = callback() or []
        except Exception as exc:
            errors = [exc]

        for error in errors:
            report.failures.append(TeardownFailure(step=name, error=str(error)))
            self.report_service.add_leak(name, str(error))

        status = "failed" if errors else "success"
        error_text = "; ".join(str(error) for error in errors) or None
        self.report_service.step_finished(name, status, error=error_text)

    def _stop_subject(self):
        name = self.context.subject_container
        if not name:
            return []
        self.context.subject_container = None
        self.docker_runtime.stop_container(name)
        return []

    def _stop_proxies(self) -> List[ProxyError]:
        handles = list(self.context.proxies)
        self.context.proxies.clear()
        if not handles:
            return []
        return self.proxy_fabric.stop_all(handles)

    def _delete_cluster(self):
        context = self.context
        if not context.cluster_created:
            return []
        context.cluster_created = False
        try:
            self.cluster_provisioner.delete(context.cluster_identifier)
        except NotFoundError:
            logger.info("Cluster %s is already gone.", context.cluster_identifier)
        return []

    def _deauthorize(self):
        context = self.context
        if not context.authorized:
            return []
        context.authorized = False
        self.access_controller.deauthorize(context.runner_ip)
        return []

    def _remove_network(self):
        if not self.context.network_created:
            return []
        self.context.network_created = False
        self.docker_runtime.remove_network(self.context.network_name)
        return []

    def run(self) -> int:
        exit_code = 1
        status = "failed"
        error: Optional[str] = None

        try:
            logger.info("Starting failoverlab session %s...", self.context.run_id)
            self.report_service.start_run(self.context.run_id, self.context.cluster_enabled)

            self._run_step("validate_docker_environment", self.docker_runtime.validate_environment)
            self.provision()
            subject_exit_code = self.run_subject()

            if subject_exit_code == 0:
                console.print("[green]Test executable finished successfully.[/green]")
                status = "success"
                exit_code = 0
            else:
                console.print(f"[bold red]Test executable failed with exit code {subject_exit_code}.[/bold red]")
                status = "test_failed"
                error = f"Test executable exited with {subject_exit_code}"
            return exit_code

        except KeyboardInterrupt:
            console.print("[bold red]Operation cancelled by user.[/bold red]")
            logger.info("Operation cancelled by user")
            status = "aborted"
            error = "Operation cancelled by user."
            return exit_code
        except StepFailure as exc:
            console.print(f"[bold red]Step '{exc.step}' failed:[/bold red] {exc.cause}")
            logger.error(str(exc))
            error = str(exc)
            return exit_code
        except OrchestratorError as exc:
            console.print(f"[bold red]Error:[/bold red] {exc}")
            logger.error(str(exc))
            error = str(exc)
            return exit_code
        except Exception as exc:
            console.print(f"[bold red]Unexpected error:[/bold red] {exc}")
            logger.exception("Unexpected error")
            error = str(exc)
            return exit_code
        finally:
            teardown_report = self.teardown()
            if not teardown_report.clean:
                logger.warning(
                    "Teardown finished with %s leak warning(s).",
                    len(teardown_report.failures),
                )
            self.report_service.finalize(status, error=error)
