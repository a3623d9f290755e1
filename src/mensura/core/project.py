"""Project files for Mensura.

A project stores the images of a session with their calibration and
measurements, so the work can be reopened later. The image files
themselves are referenced by path, not embedded.

Project files use the .mensura extension and are stored as JSON.
"""

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

from mensura.version import __version__

if TYPE_CHECKING:
    from mensura.core.session import MeasurementSession


PROJECT_EXTENSION = ".mensura"
PROJECT_FILE_VERSION = 1


@dataclass
class Project:
    """Where a session is saved and whether it changed since."""

    name: str = "Untitled"
    path: Path | None = None
    dirty: bool = False

    def save(self, session: "MeasurementSession", path: Path | str | None = None) -> Path:
        """Write the session to disk as JSON."""
        save_path = path or self.path
        if save_path is None:
            raise ValueError("No save path specified")

        save_path = Path(save_path)
        if save_path.suffix != PROJECT_EXTENSION:
            save_path = save_path.with_suffix(PROJECT_EXTENSION)

        data = {
            "_mensura_project": PROJECT_FILE_VERSION,
            "_app_version": __version__,
            "_saved_at": datetime.now(timezone.utc).isoformat(),
            "images": session.to_portable(),
        }

        save_path.parent.mkdir(parents=True, exist_ok=True)
        with open(save_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)

        self.path = save_path
        self.name = save_path.stem
        self.dirty = False
        logger.info(f"Project saved: {save_path}")
        return save_path

    @classmethod
    def load(cls, path: Path | str, session: "MeasurementSession") -> "Project":
        """Read a .mensura file into ``session``, replacing its content."""
        path = Path(path)
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)

        file_ver = data.get("_mensura_project", 0) if isinstance(data, dict) else 0
        if not isinstance(file_ver, int) or isinstance(file_ver, bool) or file_ver < 1:
            raise ValueError(f"Unknown project file version: {file_ver}")

        images = data.get("images", [])
        loaded = session.from_portable(images)
        if loaded < len(images):
            session.set_status(f"Opened {path.name}: {len(images) - loaded} image(s) could not be found")
        logger.info(f"Project loaded: {path} ({loaded} image(s))")
        return cls(name=path.stem, path=path)

    @classmethod
    def new(cls, name: str = "Untitled") -> "Project":
        """Create a fresh project."""
        return cls(name=name)


def save_session(session: "MeasurementSession", path: Path | str) -> Path:
    return Project().save(session, path)


def load_session(session: "MeasurementSession", path: Path | str) -> Project:
    return Project.load(path, session)
