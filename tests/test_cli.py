from __future__ import annotations

import importlib

import pytest

from fedgraph import SubgraphClient
from fedgraph.cli import app
from fedgraph.cli.config import ConfigError, FedGraphConfig, load_config

from conftest import SUBGRAPHS, SubgraphTransport, build_services

cli_main = importlib.import_module("fedgraph.cli.main")


def test_config_round_trip(tmp_path):
    path = tmp_path / "fedgraph.yaml"
    config = FedGraphConfig()
    config.add_subgraph("identity", "http://identity/graphql")
    config.add_subgraph("project", "http://project/graphql")
    config.add_subgraph("identity", "http://identity-v2/graphql")
    config.save(path)

    loaded = load_config(path)

    assert [(s.name, s.url) for s in loaded.subgraphs] == [
        ("project", "http://project/graphql"),
        ("identity", "http://identity-v2/graphql"),
    ]


def test_missing_config_is_none(tmp_path):
    assert load_config(tmp_path / "absent.yaml") is None


def test_config_validation(tmp_path):
    with pytest.raises(ConfigError):
        FedGraphConfig.from_dict({"subgraphs": [{"name": "identity"}]})
    with pytest.raises(ConfigError):
        FedGraphConfig.from_dict({"subgraphs": [
            {"name": "identity", "url": "http://a/graphql"},
            {"name": "identity", "url": "http://b/graphql"},
        ]})

    path = tmp_path / "list.yaml"
    path.write_text("- just\n- a list\n")
    with pytest.raises(ConfigError):
        load_config(path)


def test_init_writes_starter_config(tmp_path):
    path = tmp_path / "fedgraph.yaml"

    assert app(["init", "--config", str(path)]) == 0
    assert [s.name for s in load_config(path).subgraphs] == ["identity", "project", "task"]

    assert app(["init", "--config", str(path)]) == 1
    assert app(["init", "--config", str(path), "--force"]) == 0


def _write_registry(tmp_path):
    config = FedGraphConfig()
    for name, url in SUBGRAPHS.items():
        config.add_subgraph(name, url)
    path = tmp_path / "fedgraph.yaml"
    config.save(path)
    return path


def test_compose_prints_supergraph_sdl(tmp_path, monkeypatch, capsys):
    transport = SubgraphTransport(build_services())
    monkeypatch.setattr(cli_main, "SubgraphClient", lambda timeout: SubgraphClient(http_client=transport.client()))
    path = _write_registry(tmp_path)

    assert app(["compose", "--config", str(path)]) == 0

    out = capsys.readouterr().out
    assert "type Project" in out
    assert "@key" not in out


def test_compose_fails_on_unreachable_subgraph(tmp_path, monkeypatch, capsys):
    transport = SubgraphTransport(build_services())
    transport.down.add("identity")
    monkeypatch.setattr(cli_main, "SubgraphClient", lambda timeout: SubgraphClient(http_client=transport.client()))
    path = _write_registry(tmp_path)

    assert app(["compose", "--config", str(path)]) == 1
    assert "SUBGRAPH_UNAVAILABLE" in capsys.readouterr().err


def test_compose_without_config(tmp_path):
    assert app(["compose", "--config", str(tmp_path / "absent.yaml")]) == 1
