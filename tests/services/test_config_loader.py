import pytest

from failoverlab.errors import OrchestratorError
from failoverlab.services.config_loader import ConfigLoader


def test_config_loader_loads_yaml_mapping(tmp_path):
    config_file = tmp_path / ".failoverlab.yml"
    config_file.write_text(
        "region: eu-west-1\ninstances: 3\nproxy_port: 9000\n",
        encoding="utf-8",
    )

    loader = ConfigLoader()
    loaded = loader.load(str(config_file))

    assert loaded["region"] == "eu-west-1"
    assert loaded["instances"] == 3
    assert loaded["proxy_port"] == 9000


def test_config_loader_rejects_unknown_keys(tmp_path):
    config_file = tmp_path / ".failoverlab.yml"
    config_file.write_text("unknown_key: true\n", encoding="utf-8")

    loader = ConfigLoader()

    with pytest.raises(OrchestratorError, match="Unknown configuration keys"):
        loader.load(str(config_file))


def test_config_loader_rejects_non_mapping_root(tmp_path):
    config_file = tmp_path / ".failoverlab.yml"
    config_file.write_text("- region\n- instances\n", encoding="utf-8")

    with pytest.raises(OrchestratorError, match="YAML mapping"):
        ConfigLoader().load(str(config_file))
