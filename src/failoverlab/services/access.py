"""Security-group allowlist management for the test runner's public address."""

import ipaddress

import botocore.exceptions
import requests

from failoverlab.errors import AccessError
from failoverlab.errors_catalog import actionable_error


class AccessController:
    """Adds and removes the single ``ip/32`` ingress rule scoped to this run."""

    PUBLIC_IP_URL = "https://checkip.amazonaws.com"

    def __init__(self, ec2_client, security_group: str, port: int, logger, requests_module=requests):
        self.ec2 = ec2_client
        self.security_group = security_group
        self.port = port
        self.logger = logger
        self.requests = requests_module

    def discover_public_ip(self) -> str:
        try:
            response = self.requests.get(self.PUBLIC_IP_URL, timeout=10)
            response.raise_for_status()
            address = response.text.strip()
            ipaddress.ip_address(address)
        except (self.requests.RequestException, ValueError) as exc:
            raise AccessError(actionable_error("public_ip_failed", reason=str(exc))) from exc
        return address

    def authorize(self, ip: str):
        try:
            self.ec2.authorize_security_group_ingress(
                GroupName=self.security_group,
                IpPermissions=self._permissions(ip),
            )
        except botocore.exceptions.ClientError as exc:
            if self._error_code(exc) == "InvalidPermission.Duplicate":
                self.logger.info("Ingress rule for %s already present on %s", ip, self.security_group)
                return
            raise AccessError(self._message("authorize", ip, exc)) from exc
        except botocore.exceptions.BotoCoreError as exc:
            raise AccessError(self._message("authorize", ip, exc)) from exc
        self.logger.info("Authorized %s on security group %s", ip, self.security_group)

    def deauthorize(self, ip: str):
        try:
            self.ec2.revoke_security_group_ingress(
                GroupName=self.security_group,
                IpPermissions=self._permissions(ip),
            )
        except botocore.exceptions.ClientError as exc:
            if self._error_code(exc) == "InvalidPermission.NotFound":
                self.logger.info("Ingress rule for %s already absent on %s", ip, self.security_group)
                return
            raise AccessError(self._message("deauthorize", ip, exc)) from exc
        except botocore.exceptions.BotoCoreError as exc:
            raise AccessError(self._message("deauthorize", ip, exc)) from exc
        self.logger.info("Deauthorized %s on security group %s", ip, self.security_group)

    def _permissions(self, ip: str):
        return [
            {
                "IpProtocol": "tcp",
                "FromPort": self.port,
                "ToPort": self.port,
                "IpRanges": [{"CidrIp": f"{ip}/32"}],
            }
        ]

    def _message(self, action: str, ip: str, exc: Exception) -> str:
        return actionable_error(
            "access_failed",
            action=action,
            ip=ip,
            group=self.security_group,
            reason=str(exc),
        )

    @staticmethod
    def _error_code(exc: botocore.exceptions.ClientError) -> str:
        return exc.response.get("Error", {}).get("Code", "")
