"""Simple JSON-based config store."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

DEFAULT_MODEL_NAME = "model-hi"
DEFAULT_STOP_TIMEOUT_S = 1.0
DEFAULT_CHUNK_BYTES = 4096


@dataclass
class ServiceSettings:
    model_name: str = DEFAULT_MODEL_NAME
    assets_dir: Path = Path("assets")
    models_dir: Path = Path.home() / ".local" / "share" / "vosk_transcriber" / "models"
    stop_timeout_s: float = DEFAULT_STOP_TIMEOUT_S
    chunk_bytes: int = DEFAULT_CHUNK_BYTES


class JsonConfigStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or Path.home() / ".config" / "vosk_transcriber" / "config.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def get_model_name(self) -> str:
        data = self._read_all()
        return str(data.get("model_name", DEFAULT_MODEL_NAME))

    def set_model_name(self, name: str) -> None:
        data = self._read_all()
        data["model_name"] = name
        self._write_all(data)

    def get_assets_dir(self) -> Path:
        data = self._read_all()
        return Path(data.get("assets_dir", ServiceSettings.assets_dir))

    def set_assets_dir(self, path: Path) -> None:
        data = self._read_all()
        data["assets_dir"] = str(path)
        self._write_all(data)

    def get_models_dir(self) -> Path:
        data = self._read_all()
        return Path(data.get("models_dir", ServiceSettings.models_dir))

    def get_stop_timeout(self) -> float:
        data = self._read_all()
        try:
            return float(data.get("stop_timeout_s", DEFAULT_STOP_TIMEOUT_S))
        except (TypeError, ValueError):
            return DEFAULT_STOP_TIMEOUT_S

    def get_chunk_bytes(self) -> int:
        data = self._read_all()
        try:
            value = int(data.get("chunk_bytes", DEFAULT_CHUNK_BYTES))
        except (TypeError, ValueError):
            return DEFAULT_CHUNK_BYTES
        return value if value > 0 else DEFAULT_CHUNK_BYTES

    def load_settings(self) -> ServiceSettings:
        return ServiceSettings(
            model_name=self.get_model_name(),
            assets_dir=self.get_assets_dir(),
            models_dir=self.get_models_dir(),
            stop_timeout_s=self.get_stop_timeout(),
            chunk_bytes=self.get_chunk_bytes(),
        )

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
