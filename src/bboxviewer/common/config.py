from __future__ import annotations
import logging, math
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urljoin

import yaml

log = logging.getLogger("config")

@dataclass(frozen=True)
class ViewerConfig:
    base_url: str = "http://192.168.4.1"
    image_path: str = "/jpg"
    bbox_path: str = "/bbox"
    image_timeout_ms: int = 2000
    bbox_timeout_ms: int = 200
    idle_ms: int = 30
    zoom: float = 1.0
    label: str = "frame"
    save_dir: str = "./snapshots"
    record_seconds: float = 30.0
    record_fps: int = 10
    user_agent: str = "bboxviewer/0.1"

    @property
    def image_url(self) -> str:
        return urljoin(self.base_url.rstrip("/") + "/", self.image_path.lstrip("/"))

    @property
    def bbox_url(self) -> str:
        return urljoin(self.base_url.rstrip("/") + "/", self.bbox_path.lstrip("/"))

    def validate(self) -> "ViewerConfig":
        if not self.base_url.startswith(("http://", "https://")):
            raise ValueError(f"base_url must be http(s): {self.base_url!r}")
        for name in ("image_timeout_ms", "bbox_timeout_ms", "record_fps"):
            if int(getattr(self, name)) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.idle_ms < 0:
            raise ValueError("idle_ms must not be negative")
        if not math.isfinite(self.zoom) or self.zoom <= 0:
            raise ValueError(f"zoom must be a positive number, got {self.zoom!r}")
        if not math.isfinite(self.record_seconds) or self.record_seconds <= 0:
            raise ValueError("record_seconds must be positive")
        return self


def _coerce(overrides: Dict[str, Any]) -> Dict[str, Any]:
    known = {f.name: f for f in fields(ViewerConfig)}
    unknown = sorted(set(overrides) - set(known))
    if unknown:
        raise ValueError(f"Unknown config keys: {', '.join(unknown)}")
    out: Dict[str, Any] = {}
    for key, value in overrides.items():
        if value is None:
            continue
        default = getattr(ViewerConfig, key)
        try:
            out[key] = type(default)(value)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Bad value for {key}: {value!r}") from e
    return out


def load_config(path: Optional[Path] = None, **overrides: Any) -> ViewerConfig:
    """Defaults, then the YAML file (if any), then explicit overrides."""
    cfg = ViewerConfig()
    if path is not None:
        path = Path(path).expanduser()
        if not path.exists():
            raise ValueError(f"Config file not found: {path}")
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file must hold a mapping: {path}")
        cfg = replace(cfg, **_coerce(data))
        log.info("Loaded config from %s", path)
    cfg = replace(cfg, **_coerce(overrides))
    return cfg.validate()
