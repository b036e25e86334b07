from __future__ import annotations

import os
import sys
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml

DEFAULT_CONTROL_PLANE_URL = "https://relay.example.com"


def base_dir() -> Path:
    raw = os.environ.get("RELAYLINK_HOME")
    path = Path(raw).expanduser() if raw else Path.home() / ".relaylink"
    path.mkdir(parents=True, exist_ok=True)
    return path


def _config_path(root: Path | None = None) -> Path:
    return (root or base_dir()) / "node.yaml"


@dataclass
class HeartbeatSettings:
    initial_delay: float = 30.0
    interval: float = 300.0


@dataclass
class TunnelSettings:
    script: str | None = None
    elevate: bool = sys.platform == "darwin"


@dataclass
class NodeConfig:
    control_plane_url: str = DEFAULT_CONTROL_PLANE_URL
    device_name_prefix: str = "Mac"
    setup_complete: bool = False
    # server linkage
    server_id: str | None = None
    server_address: str | None = None
    webhook_id: str | None = None
    # legacy fallbacks from before secrets moved to the keychain
    password: str | None = None
    webhook_secret: str | None = None
    password_stored_in_keychain: bool = False
    webhook_secret_stored_in_keychain: bool = False
    heartbeat: HeartbeatSettings = field(default_factory=HeartbeatSettings)
    tunnel: TunnelSettings = field(default_factory=TunnelSettings)

    def endpoint(self, path: str) -> str:
        return f"{self.control_plane_url.rstrip('/')}/{path.lstrip('/')}"

    def webhook_url(self, webhook_id: str) -> str:
        return self.endpoint(f"api/webhook/relay/{webhook_id}")

    def clear_linkage(self) -> None:
        self.setup_complete = False
        self.server_id = None
        self.server_address = None
        self.webhook_id = None
        self.password = None
        self.webhook_secret = None
        self.password_stored_in_keychain = False
        self.webhook_secret_stored_in_keychain = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def normalize_server_address(host: str) -> str:
    host = host.strip()
    if not host.startswith(("http://", "https://")):
        return f"https://{host}"
    return host


def _section(settings_cls: type, payload: Any):
    if not isinstance(payload, dict):
        return settings_cls()
    known = {name for name in settings_cls.__dataclass_fields__}
    return settings_cls(**{k: v for k, v in payload.items() if k in known})


def _from_dict(data: dict[str, Any]) -> NodeConfig:
    known = {name for name in NodeConfig.__dataclass_fields__} - {"heartbeat", "tunnel"}
    conf = NodeConfig(**{k: v for k, v in data.items() if k in known})
    conf.heartbeat = _section(HeartbeatSettings, data.get("heartbeat"))
    conf.tunnel = _section(TunnelSettings, data.get("tunnel"))
    return conf


def load_config(root: Path | None = None) -> NodeConfig:
    path = _config_path(root)
    if not path.exists():
        conf = NodeConfig()
    else:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        conf = _from_dict(data if isinstance(data, dict) else {})
    override = os.environ.get("RELAYLINK_CONTROL_PLANE_URL")
    if override:
        conf.control_plane_url = override
    return conf


def save_config(conf: NodeConfig, root: Path | None = None) -> None:
    path = _config_path(root)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        yaml.safe_dump(conf.to_dict(), allow_unicode=True, sort_keys=False),
        encoding="utf-8",
    )


class ConfigStore:
    """Holds the loaded ``node.yaml`` and writes it back on update."""

    def __init__(self, root: Path | None = None, *, conf: NodeConfig | None = None) -> None:
        self._root = root
        self._conf = conf if conf is not None else load_config(root)

    @property
    def config(self) -> NodeConfig:
        return self._conf

    def save(self) -> None:
        save_config(self._conf, self._root)

    def update(self, **changes: Any) -> NodeConfig:
        for key, value in changes.items():
            if not hasattr(self._conf, key):
                raise AttributeError(f"unknown config field: {key}")
            setattr(self._conf, key, value)
        self.save()
        return self._conf
