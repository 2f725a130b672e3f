"""Actionable error catalog for failoverlab."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "cluster_create_failed": {
        "what": "Could not create cluster '{identifier}': {reason}",
        "next": "Check the AWS credentials, region quotas and the RDS console for partial resources.",
    },
    "cluster_exists": {
        "what": "Cluster '{identifier}' already exists; it was not created by this run and is left untouched.",
        "next": "Pick another --cluster-id, or pass --reuse-cluster to attach to the existing cluster.",
    },
    "cluster_delete_failed": {
        "what": "Could not delete cluster '{identifier}': {reason}",
        "next": "Delete the cluster and its instances manually in the RDS console.",
    },
    "access_failed": {
        "what": "Could not {action} {ip} on security group '{group}': {reason}",
        "next": "Verify the security group exists and the credentials allow ingress changes.",
    },
    "public_ip_failed": {
        "what": "Could not determine the public IP address of this runner: {reason}",
        "next": "Check outbound HTTPS connectivity to checkip.amazonaws.com.",
    },
    "proxy_failed": {
        "what": "Proxy '{alias}' could not be {action}: {reason}",
        "next": "Inspect `docker logs` for the proxy container and make sure the image is available.",
    },
    "teardown_leak": {
        "what": "Teardown step '{step}' failed: {reason}",
        "next": "Resources may have leaked. Clean them up manually before the next run.",
    },
}


def actionable_error(code: str, **kwargs: str) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")

    template = _ERROR_MESSAGES[code]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"
