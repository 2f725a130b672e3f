"""Aurora cluster provisioning through the RDS control plane."""

import uuid
from typing import Dict, List, Optional, Sequence

import botocore.exceptions

from failoverlab.errors import ClusterExistsError, NotFoundError, ProvisionError
from failoverlab.errors_catalog import actionable_error
from failoverlab.models import ClusterInfo

_CONTROL_PLANE_ERRORS = (botocore.exceptions.ClientError, botocore.exceptions.BotoCoreError)


class ClusterProvisioner:
    """Creates, describes and deletes a disposable database cluster."""

    CLUSTER_EXISTS = "DBClusterAlreadyExistsFault"
    CLUSTER_NOT_FOUND = "DBClusterNotFoundFault"
    INSTANCE_NOT_FOUND = "DBInstanceNotFound"

    def __init__(
        self,
        rds_client,
        logger,
        console,
        instance_count: int = 5,
        instance_class: str = "db.r5.large",
        engine: str = "aurora-mysql",
        engine_version: Optional[str] = None,
    ):
        self.rds = rds_client
        self.logger = logger
        self.console = console
        self.instance_count = instance_count
        self.instance_class = instance_class
        self.engine = engine
        self.engine_version = engine_version

    @staticmethod
    def generate_identifier() -> str:
        return f"failoverlab-{uuid.uuid4().hex[:12]}"

    def create(
        self,
        username: str,
        password: str,
        identifier: Optional[str] = None,
        database_name: str = "test",
    ) -> ClusterInfo:
        identifier = identifier or self.generate_identifier()
        self.console.print(
            f"[blue]Creating cluster {identifier} with {self.instance_count} instance(s)...[/blue]"
        )
        self.logger.info("Creating cluster %s", identifier)

        cluster_args = {
            "DBClusterIdentifier": identifier,
            "DatabaseName": database_name,
            "MasterUsername": username,
            "MasterUserPassword": password,
            "Engine": self.engine,
            "StorageEncrypted": True,
            "EnableIAMDatabaseAuthentication": True,
        }
        if self.engine_version:
            cluster_args["EngineVersion"] = self.engine_version

        instance_ids = [
            f"{identifier}-instance-{index}" for index in range(1, self.instance_count + 1)
        ]
        try:
            self.rds.create_db_cluster(**cluster_args)
        except botocore.exceptions.ClientError as exc:
            if self._error_code(exc) == self.CLUSTER_EXISTS:
                raise ClusterExistsError(actionable_error("cluster_exists", identifier=identifier)) from exc
            raise ProvisionError(
                actionable_error("cluster_create_failed", identifier=identifier, reason=str(exc))
            ) from exc
        except botocore.exceptions.BotoCoreError as exc:
            raise ProvisionError(
                actionable_error("cluster_create_failed", identifier=identifier, reason=str(exc))
            ) from exc

        try:
            for instance_id in instance_ids:
                self.rds.create_db_instance(
                    DBInstanceIdentifier=instance_id,
                    DBClusterIdentifier=identifier,
                    DBInstanceClass=self.instance_class,
                    Engine=self.engine,
                    PubliclyAccessible=True,
                )
            self.rds.get_waiter("db_instance_available").wait(
                Filters=[{"Name": "db-cluster-id", "Values": [identifier]}]
            )
        except _CONTROL_PLANE_ERRORS as exc:
            raise ProvisionError(
                actionable_error("cluster_create_failed", identifier=identifier, reason=str(exc))
            ) from exc

        info = self.describe(identifier, instance_order=instance_ids)
        self.console.print(f"[green]Cluster {identifier} is available.[/green]")
        return info

    def describe(self, identifier: str, instance_order: Optional[Sequence[str]] = None) -> ClusterInfo:
        """Reads the cluster topology.

        Instances follow ``instance_order`` when given, otherwise the writer comes
        first and readers follow in identifier order.
        """
        cluster = self._describe_cluster(identifier)
        members = cluster.get("DBClusterMembers", [])
        if instance_order is None:
            members = sorted(
                members,
                key=lambda member: (not member.get("IsClusterWriter"), member["DBInstanceIdentifier"]),
            )
            instance_order = [member["DBInstanceIdentifier"] for member in members]

        addresses = self._instance_addresses(identifier)
        missing = [instance_id for instance_id in instance_order if instance_id not in addresses]
        if missing:
            raise ProvisionError(
                f"Cluster {identifier} has no endpoint for instance(s): {', '.join(missing)}"
            )

        writer_endpoint = cluster["Endpoint"]
        return ClusterInfo(
            identifier=identifier,
            writer_endpoint=writer_endpoint,
            reader_endpoint=cluster["ReaderEndpoint"],
            routing_suffix=writer_endpoint.split(".", 1)[1] if "." in writer_endpoint else "",
            instances=tuple(addresses[instance_id] for instance_id in instance_order),
        )

    def delete(self, identifier: str):
        """Deletes the cluster and its instances.

        Raises NotFoundError when the cluster is already gone.
        """
        cluster = self._describe_cluster(identifier)
        self.logger.info("Deleting cluster %s", identifier)

        try:
            instance_ids = [member["DBInstanceIdentifier"] for member in cluster.get("DBClusterMembers", [])]
            for instance_id in instance_ids:
                self._delete_instance(instance_id)
            waiter = self.rds.get_waiter("db_instance_deleted")
            for instance_id in instance_ids:
                waiter.wait(DBInstanceIdentifier=instance_id)
            self.rds.delete_db_cluster(DBClusterIdentifier=identifier, SkipFinalSnapshot=True)
        except botocore.exceptions.ClientError as exc:
            if self._error_code(exc) == self.CLUSTER_NOT_FOUND:
                raise NotFoundError(f"Cluster {identifier} does not exist.") from exc
            raise ProvisionError(
                actionable_error("cluster_delete_failed", identifier=identifier, reason=str(exc))
            ) from exc
        except botocore.exceptions.BotoCoreError as exc:
            raise ProvisionError(
                actionable_error("cluster_delete_failed", identifier=identifier, reason=str(exc))
            ) from exc

        self.console.print(f"[green]Cluster {identifier} deleted.[/green]")

    def _delete_instance(self, instance_id: str):
        try:
            self.rds.delete_db_instance(DBInstanceIdentifier=instance_id, SkipFinalSnapshot=True)
        except botocore.exceptions.ClientError as exc:
            if self._error_code(exc) != self.INSTANCE_NOT_FOUND:
                raise
            self.logger.debug("Instance %s already deleted", instance_id)

    def _describe_cluster(self, identifier: str) -> Dict:
        try:
            response = self.rds.describe_db_clusters(DBClusterIdentifier=identifier)
        except botocore.exceptions.ClientError as exc:
            if self._error_code(exc) == self.CLUSTER_NOT_FOUND:
                raise NotFoundError(f"Cluster {identifier} does not exist.") from exc
            raise ProvisionError(f"Could not describe cluster {identifier}: {exc}") from exc
        except botocore.exceptions.BotoCoreError as exc:
            raise ProvisionError(f"Could not describe cluster {identifier}: {exc}") from exc

        clusters = response.get("DBClusters", [])
        if not clusters:
            raise NotFoundError(f"Cluster {identifier} does not exist.")
        return clusters[0]

    def _instance_addresses(self, identifier: str) -> Dict[str, str]:
        addresses: Dict[str, str] = {}
        try:
            paginator = self.rds.get_paginator("describe_db_instances")
            pages = paginator.paginate(Filters=[{"Name": "db-cluster-id", "Values": [identifier]}])
            instances: List[Dict] = [item for page in pages for item in page.get("DBInstances", [])]
        except _CONTROL_PLANE_ERRORS as exc:
            raise ProvisionError(f"Could not list instances of cluster {identifier}: {exc}") from exc

        for instance in instances:
            endpoint = instance.get("Endpoint") or {}
            if endpoint.get("Address"):
                addresses[instance["DBInstanceIdentifier"]] = endpoint["Address"]
        return addresses

    @staticmethod
    def _error_code(exc: botocore.exceptions.ClientError) -> str:
        return exc.response.get("Error", {}).get("Code", "")
