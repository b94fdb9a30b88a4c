from __future__ import annotations

import pytest

from conftest import make_config
from pathScope.collector.config import EngineConfig
from pathScope.errors import ConfigurationError

YAML = """
domain: example.org
buffer_capacity: 50
targets:
  - name: site
    address: https://example.org
  - name: resolver
    address: 1.1.1.1:53
latency:
  interval_seconds: 2
dns:
  record_types: [A, NS, TXT]
probe:
  dns_transport: udp
  nameservers: [1.1.1.1]
"""


def test_load_yaml(tmp_path) -> None:
    path = tmp_path / "engine.yaml"
    path.write_text(YAML)

    cfg = EngineConfig.load(str(path))

    assert cfg.domain == "example.org"
    assert cfg.buffer_capacity == 50
    assert [t.name for t in cfg.targets] == ["site", "resolver"]
    assert cfg.targets[0].kind == "target"
    assert cfg.latency.interval_seconds == 2
    assert cfg.latency.probes_per_tick == 5
    assert cfg.dns.record_types == ["A", "NS", "TXT"]
    assert cfg.probe.dns_transport == "udp"


def test_empty_file_uses_defaults(tmp_path) -> None:
    path = tmp_path / "empty.yaml"
    path.write_text("")

    cfg = EngineConfig.load(str(path))

    assert len(cfg.targets) == 4
    assert cfg.bandwidth_target_name == "client"


def test_missing_file(tmp_path) -> None:
    with pytest.raises(ConfigurationError, match="not found"):
        EngineConfig.load(str(tmp_path / "nope.yaml"))


def test_invalid_yaml(tmp_path) -> None:
    path = tmp_path / "bad.yaml"
    path.write_text("targets: [unclosed")

    with pytest.raises(ConfigurationError, match="not valid YAML"):
        EngineConfig.load(str(path))


def test_root_must_be_mapping(tmp_path) -> None:
    path = tmp_path / "list.yaml"
    path.write_text("- a\n- b\n")

    with pytest.raises(ConfigurationError, match="mapping"):
        EngineConfig.load(str(path))


@pytest.mark.parametrize(
    "overrides",
    [
        {"targets": []},
        {"buffer_capacity": 0},
        {"latency": {"interval_seconds": 0}},
        {"jitter": {"probes_per_tick": 1}},
        {"probe_timeout_seconds": -1},
        {"domain": " . "},
        {"topology": {"anycast_min_ips": 5, "anycast_max_ips": 2}},
        {"topology": {"origin_lat": 37.7}},
        {"topology": {"origin_lat": 91.0, "origin_lon": 0.0}},
        {"probe": {"dns_transport": "tcp"}},
    ],
)
def test_invalid_values_are_configuration_errors(overrides) -> None:
    with pytest.raises(ConfigurationError):
        make_config(**overrides)


def test_target_names_must_be_unique() -> None:
    targets = [{"name": "a", "address": "a.example"}, {"name": "a", "address": "b.example"}]

    with pytest.raises(ConfigurationError, match="unique"):
        make_config(targets=targets)


def test_bandwidth_name_must_not_collide() -> None:
    targets = [{"name": "client", "address": "a.example"}]

    with pytest.raises(ConfigurationError, match="collides"):
        make_config(targets=targets)
