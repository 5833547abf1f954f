"""Locates the bundled speech model and copies it to a writable directory."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from errors import MODEL_DOWNLOAD_URL, MODEL_LOAD_FAILED, MODEL_NOT_FOUND, TranscriptionError

log = logging.getLogger("vst.model_store")


class ModelStore:
    def __init__(self, assets_dir: Path, models_dir: Path, model_name: str = "model-hi") -> None:
        self.assets_dir = Path(assets_dir)
        self.models_dir = Path(models_dir)
        self.model_name = model_name

    @property
    def target_path(self) -> Path:
        return self.models_dir / self.model_name

    def locate(self) -> Path:
        """Return the bundled model directory, or raise MODEL_NOT_FOUND."""
        source = self.assets_dir / self.model_name
        if not source.is_dir():
            raise TranscriptionError(
                MODEL_NOT_FOUND,
                f"Model folder '{self.model_name}' not found in {self.assets_dir}. "
                f"Download a Vosk model from {MODEL_DOWNLOAD_URL} and extract it there "
                f"(it should contain am/, conf/ and graph/).",
            )
        return source

    def materialize(self) -> Path:
        """Copy the model into ``models_dir`` on first use and return its path.

        The bundled asset must exist even when a copy is already present;
        an existing copy is then reused as-is.
        """
        source = self.locate()
        target = self.target_path
        if target.is_dir():
            log.debug("Model already present at %s", target)
            return target
        log.info("Copying model from %s to %s", source, target)
        try:
            self.models_dir.mkdir(parents=True, exist_ok=True)
            shutil.copytree(source, target)
        except OSError as exc:
            shutil.rmtree(target, ignore_errors=True)
            raise TranscriptionError(MODEL_LOAD_FAILED, f"Failed to copy model to {target}: {exc}") from exc
        return target
