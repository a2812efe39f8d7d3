"""
Configuration loading for fedgraph gateways.

The subgraph registry is a static YAML file:

    # fedgraph.yaml
    version: 1
    subgraphs:
      - name: identity
        url: http://identity:8001/graphql
      - name: project
        url: http://project:8002/graphql
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from ..core.query_types import SubgraphConfig


class ConfigError(ValueError):
    """Raised when the registry file is malformed."""
    pass


@dataclass
class FedGraphConfig:
    """Main gateway configuration."""
    version: int = 1
    subgraphs: list[SubgraphConfig] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FedGraphConfig":
        """Create config from dictionary."""
        subgraphs = []
        seen: set[str] = set()
        for index, item in enumerate(data.get("subgraphs") or []):
            if not isinstance(item, dict) or not item.get("name") or not item.get("url"):
                raise ConfigError(f"subgraphs[{index}] needs a name and a url")
            if item["name"] in seen:
                raise ConfigError(f"Subgraph '{item['name']}' is listed twice")
            seen.add(item["name"])
            subgraphs.append(SubgraphConfig(name=item["name"], url=item["url"]))

        return cls(version=data.get("version", 1), subgraphs=subgraphs)

    def add_subgraph(self, name: str, url: str) -> SubgraphConfig:
        """Add (or replace) a subgraph registration."""
        self.subgraphs = [s for s in self.subgraphs if s.name != name]
        subgraph = SubgraphConfig(name=name, url=url)
        self.subgraphs.append(subgraph)
        return subgraph

    def to_dict(self) -> dict[str, Any]:
        """Convert config to dictionary for YAML serialization."""
        return {
            "version": self.version,
            "subgraphs": [{"name": s.name, "url": s.url} for s in self.subgraphs],
        }

    def save(self, path: Path | str = "fedgraph.yaml") -> None:
        """Save configuration to YAML file."""
        path = Path(path)
        content = yaml.dump(self.to_dict(), default_flow_style=False, sort_keys=False)
        path.write_text(content)


def load_config(path: Path | str = "fedgraph.yaml") -> Optional[FedGraphConfig]:
    """Load configuration from YAML file."""
    path = Path(path)
    if not path.exists():
        return None

    data = yaml.safe_load(path.read_text()) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping")
    return FedGraphConfig.from_dict(data)
