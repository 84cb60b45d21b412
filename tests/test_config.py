import json
from pathlib import Path
from typing import Any, Dict

import pytest

from grid_node_config.capabilities import CONFIG_UUID, PLATFORM, Capability
from grid_node_config.config import NodeConfig, load_defaults, load_from_json
from grid_node_config.endpoint import HostPort
from grid_node_config.errors import (
    ConfigParseError,
    IncompleteEndpoint,
    LegacyConfigShapeError,
)
from grid_node_config.network import LocalAddress
from grid_node_config.platforms import Platform


def _write(tmp_path: Path, payload: Dict[str, Any]) -> Path:
    path = tmp_path / "node.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def _lookup() -> LocalAddress:
    return LocalAddress(address="192.168.1.20", hostname="node.example")


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in ("CONFIG", "MAX_SESSION", "HUB", "HUB_HOST", "HUB_PORT", "REGISTER"):
        monkeypatch.delenv(f"GRID_NODE_{key}", raising=False)


def test_defaults_are_loaded_once() -> None:
    defaults = load_defaults()
    assert defaults is load_defaults()
    assert defaults.role == "node"
    assert defaults.hub == "http://localhost:4444"
    assert defaults.max_session == 5
    assert defaults.register is True
    assert defaults.capabilities is not None
    assert [cap["browserName"] for cap in defaults.capabilities] == [
        "firefox",
        "chrome",
        "internet explorer",
        "safari",
    ]


def test_load_from_json_merges_over_defaults(tmp_path: Path) -> None:
    path = _write(tmp_path, {"hub": "http://grid.example:4444", "maxSession": 2, "unknownKey": 1})
    config = load_from_json(path)

    assert config.max_session == 2
    assert config.proxy == load_defaults().proxy
    assert config.capabilities == load_defaults().capabilities
    assert config.hub_endpoint() == HostPort(host="grid.example", port=4444)


def test_load_from_json_with_host_and_port_rebuilds_hub(tmp_path: Path) -> None:
    path = _write(tmp_path, {"hubHost": "10.0.0.1", "hubPort": 5000, "host": "10.0.0.7", "port": 6000})
    config = load_from_json(str(path))

    assert config.hub == "http://10.0.0.1:5000"
    assert config.hub_host == "10.0.0.1"
    assert config.hub_port == 5000
    assert config.host == "10.0.0.7"
    assert config.port == 6000
    assert config.hub_endpoint() == HostPort(host="10.0.0.1", port=5000)


def test_load_from_json_requires_hub_port_with_hub_host(tmp_path: Path) -> None:
    path = _write(tmp_path, {"hubHost": "10.0.0.1"})
    with pytest.raises(IncompleteEndpoint, match="hubPort"):
        load_from_json(path)


def test_load_from_json_requires_some_hub(tmp_path: Path) -> None:
    path = _write(tmp_path, {"maxSession": 1})
    with pytest.raises(IncompleteEndpoint, match="hubHost"):
        load_from_json(path)


def test_file_capabilities_replace_defaults_wholesale(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        {"hub": "http://grid.example:4444", "capabilities": [{"browserName": "chrome", "maxInstances": 2}]},
    )
    config = load_from_json(path)
    assert config.capabilities == (Capability(browserName="chrome", maxInstances=2),)


def test_file_with_empty_capability_list_clears_defaults(tmp_path: Path) -> None:
    path = _write(tmp_path, {"hub": "http://grid.example:4444", "capabilities": []})
    assert load_from_json(path).capabilities == ()


def test_load_from_json_accepts_parsed_mapping() -> None:
    config = load_from_json({"hub": "http://grid.example:4444", "register": False})
    assert config.register is False


def test_load_from_json_accepts_packaged_resource_name() -> None:
    assert load_from_json("node.json") == load_defaults()


def test_malformed_json_is_wrapped(tmp_path: Path) -> None:
    path = tmp_path / "broken.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigParseError) as excinfo:
        load_from_json(path)
    assert isinstance(excinfo.value.__cause__, json.JSONDecodeError)


def test_missing_file_is_wrapped(tmp_path: Path) -> None:
    with pytest.raises(ConfigParseError) as excinfo:
        load_from_json(tmp_path / "missing.json")
    assert isinstance(excinfo.value.__cause__, FileNotFoundError)


def test_bad_field_value_is_wrapped(tmp_path: Path) -> None:
    path = _write(tmp_path, {"hub": "http://grid.example:4444", "maxSession": "many"})
    with pytest.raises(ConfigParseError, match="many"):
        load_from_json(path)


def test_legacy_configuration_section_is_rejected(tmp_path: Path) -> None:
    path = _write(tmp_path, {"configuration": {"hub": "http://grid.example:4444"}})
    with pytest.raises(LegacyConfigShapeError, match="configuration"):
        load_from_json(path)


def test_from_mapping_rejects_non_objects() -> None:
    with pytest.raises(ValueError, match="JSON object"):
        NodeConfig.from_mapping(["hub"])


@pytest.mark.parametrize(
    "field,value,error",
    [
        ("hub_port", 0, "hub_port"),
        ("port", 70000, "port"),
        ("max_session", 0, "max_session"),
        ("register_cycle", -1, "register_cycle"),
    ],
)
def test_bounds_enforced(field: str, value: object, error: str) -> None:
    with pytest.raises(ValueError, match=error):
        NodeConfig(**{field: value})


def test_to_dict_uses_json_keys_and_reports_role() -> None:
    config = NodeConfig(hub_host="10.0.0.1", hub_port=5000, capabilities=[{"browserName": "chrome"}])
    data = config.to_dict()

    assert data["role"] == "node"
    assert data["hubHost"] == "10.0.0.1"
    assert data["hubPort"] == 5000
    assert data["capabilities"] == [{"browserName": "chrome"}]
    assert data["maxSession"] is None
    assert NodeConfig.from_mapping(data) == config


def test_logging_dict_masks_secrets() -> None:
    config = NodeConfig(custom={"password": "hunter2", "team": "qa"})
    logged = config.logging_dict()
    assert logged["custom"]["password"] == "***REDACTED***"
    assert logged["custom"]["team"] == "qa"


def test_resolve_runs_every_fix_up() -> None:
    config = NodeConfig(
        hub="http://grid.example:4444",
        host="ip",
        capabilities=[
            {"browserName": "firefox"},
            {"browserName": "internet explorer", "platform": "WINDOWS"},
        ],
        enable_platform_verification=True,
    )
    resolved = config.resolve(lookup=_lookup, current=Platform.LINUX)

    assert resolved.hub_host_port == HostPort(host="grid.example", port=4444)
    assert resolved.host == "192.168.1.20"
    assert resolved.port == 5555
    assert resolved.remote_host == "http://192.168.1.20:5555"
    assert resolved.register is True
    assert [cap["browserName"] for cap in resolved.capabilities] == ["firefox"]
    assert resolved.capabilities[0][PLATFORM] == "LINUX"
    assert CONFIG_UUID in resolved.capabilities[0]
    assert config.host == "ip"


def test_resolve_keeps_capabilities_when_verification_disabled() -> None:
    config = NodeConfig(
        hub_host="10.0.0.1",
        hub_port=5000,
        host="10.0.0.7",
        port=6000,
        remote_host="http://public.example:80",
        capabilities=[{"browserName": "safari", "platform": "MAC"}],
    )
    resolved = config.resolve(lookup=_lookup, current=Platform.LINUX)

    assert resolved.hub == "http://10.0.0.1:5000"
    assert resolved.remote_host == "http://public.example:80"
    assert resolved.enable_platform_verification is False
    assert [cap["browserName"] for cap in resolved.capabilities] == ["safari"]
    assert resolved.to_dict()["remoteHost"] == "http://public.example:80"


def test_resolve_reflects_later_merges() -> None:
    base = NodeConfig(hub="http://grid.example:4444", host="10.0.0.7")
    first = base.resolve(lookup=_lookup, current=Platform.LINUX)
    second = base.merge(NodeConfig(port=7000)).resolve(lookup=_lookup, current=Platform.LINUX)
    assert first.remote_host == "http://10.0.0.7:5555"
    assert second.remote_host == "http://10.0.0.7:7000"


def test_sources_layer_file_env_and_cli(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = _write(tmp_path, {"hub": "http://grid.example:4444", "maxSession": 2, "proxy": "file.Proxy"})
    monkeypatch.setenv("GRID_NODE_MAX_SESSION", "7")
    monkeypatch.setenv("GRID_NODE_REGISTER", "false")

    from_env = NodeConfig.from_sources(["--node-config", str(path)])
    assert from_env.max_session == 7
    assert from_env.register is False
    assert from_env.proxy == "file.Proxy"

    from_cli = NodeConfig.from_sources(["--node-config", str(path), "--max-session", "9", "--register"])
    assert from_cli.max_session == 9
    assert from_cli.register is True


def test_config_file_from_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = _write(tmp_path, {"hub": "http://env-grid.example:4444"})
    monkeypatch.setenv("GRID_NODE_CONFIG", str(path))
    assert NodeConfig.from_sources([]).hub == "http://env-grid.example:4444"


def test_cli_host_and_port_override_inherited_hub() -> None:
    config = NodeConfig.from_sources(["--hub-host", "10.1.1.1", "--hub-port", "4445"])
    assert config.hub is None
    assert config.hub_endpoint() == HostPort(host="10.1.1.1", port=4445)


def test_cli_hub_url_wins_over_cli_host_and_port() -> None:
    config = NodeConfig.from_sources(
        ["--hub", "http://grid.example:4444", "--hub-host", "ignored", "--hub-port", "9999"]
    )
    assert config.hub_endpoint() == HostPort(host="grid.example", port=4444)


def test_cli_capabilities_replace_defaults() -> None:
    config = NodeConfig.from_sources(
        [
            "--capabilities",
            "browserName=chrome,maxInstances=2",
            "--capabilities",
            "browserName=firefox,platform=LINUX",
            "--enable-platform-verification",
        ]
    )
    assert config.capabilities == (
        Capability(browserName="chrome", maxInstances=2),
        Capability(browserName="firefox", platform="LINUX"),
    )
    assert config.enable_platform_verification is True


@pytest.mark.parametrize(
    "payload",
    [
        '{"hub": "http://grid.example:4444", "port": Infinity}',
        '{"hub": "http://grid.example:4444", "port": NaN}',
        '{"hubHost": "grid.example", "hubPort": 4444.9}',
    ],
)
def test_non_integral_numbers_are_wrapped(tmp_path: Path, payload: str) -> None:
    path = tmp_path / "node.json"
    path.write_text(payload, encoding="utf-8")
    with pytest.raises(ConfigParseError):
        load_from_json(path)


def test_whole_float_numbers_are_accepted() -> None:
    config = load_from_json({"hubHost": "grid.example", "hubPort": 4444.0})
    assert config.hub_port == 4444
    assert config.hub == "http://grid.example:4444"


def test_ipv6_hub_host_and_port_resolve() -> None:
    config = load_from_json({"hubHost": "::1", "hubPort": 4444})
    assert config.hub == "http://[::1]:4444"
    assert config.hub_endpoint() == HostPort(host="::1", port=4444)


def test_capabilities_are_not_shared_with_source_document() -> None:
    data = {
        "hub": "http://grid.example:4444",
        "capabilities": [{"browserName": "chrome", "goog:chromeOptions": {"args": []}}],
    }
    config = NodeConfig.from_mapping(data)
    data["capabilities"][0]["goog:chromeOptions"]["args"].append("--headless")

    assert config.capabilities is not None
    assert config.capabilities[0]["goog:chromeOptions"]["args"] == []


def test_custom_mapping_is_read_only() -> None:
    source = {"team": "qa"}
    config = NodeConfig(custom=source)
    source["team"] = "ops"

    with pytest.raises(TypeError):
        config.custom["injected"] = "yes"  # type: ignore[index]
    with pytest.raises(TypeError):
        load_defaults().custom["injected"] = "yes"  # type: ignore[index]
    assert config.custom == {"team": "qa"}
    assert "injected" not in (load_defaults().custom or {})
    assert config.to_dict()["custom"] == {"team": "qa"}
