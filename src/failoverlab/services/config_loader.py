"""Configuration loader for failoverlab."""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from failoverlab.errors import OrchestratorError


class ConfigLoader:
    """Loads YAML configuration files for CLI defaults."""

    SUPPORTED_KEYS = {
        "region",
        "instances",
        "instance_class",
        "engine",
        "engine_version",
        "database",
        "cluster_id",
        "reuse_cluster",
        "security_group",
        "proxy_port",
        "proxied_domain_suffix",
        "toxiproxy_image",
        "subject_image",
        "subject_workdir",
        "subject_command",
        "report_file",
        "verbose",
        "log_file",
    }

    def load(self, config_path: Optional[str]) -> Dict[str, Any]:
        if not config_path:
            return {}

        path = Path(config_path)
        if not path.exists():
            raise OrchestratorError(f"Config file not found: {config_path}")

        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise OrchestratorError(f"Invalid config file '{config_path}': {exc}") from exc

        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise OrchestratorError("Config file must contain a YAML mapping at the root.")

        unknown = sorted(set(parsed.keys()) - self.SUPPORTED_KEYS)
        if unknown:
            unknown_list = ", ".join(unknown)
            raise OrchestratorError(f"Unknown configuration keys: {unknown_list}")

        return parsed
