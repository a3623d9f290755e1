"""Shared test fixtures for Mensura."""

import pytest
from pathlib import Path

import numpy as np


@pytest.fixture
def tmp_config_dir(tmp_path):
    """Provide a temporary configuration directory."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def config_manager(tmp_config_dir):
    """Provide a ConfigManager with a temp directory."""
    from mensura.config.manager import ConfigManager

    mgr = ConfigManager(config_dir=tmp_config_dir)
    mgr.load()
    return mgr


class FakeLoader:
    """Image collaborator that serves blank images without touching the disk.

    Every path is an image of ``size`` unless it is listed in ``missing``.
    """

    def __init__(self, size=(200, 100), missing=()):
        self.size = size
        self.missing = {str(p) for p in missing}
        self.loads = []

    def _check(self, path):
        from mensura.core.errors import ImageUnavailableError

        if str(path) in self.missing:
            raise ImageUnavailableError(f"Image not found: {path}")

    def probe(self, path):
        self._check(path)
        return self.size

    def load(self, path):
        from mensura.importers.image import LoadedImage

        self._check(path)
        self.loads.append(str(path))
        width, height = self.size
        return LoadedImage(path=Path(path), pixels=np.zeros((height, width), dtype=np.uint8))


@pytest.fixture
def fake_loader():
    return FakeLoader()


@pytest.fixture
def surface():
    from mensura.core.render import RecordingSurface

    return RecordingSurface()


@pytest.fixture
def session(config_manager, fake_loader, surface):
    """Empty session wired to a fake loader and a recording surface."""
    from mensura.core.session import MeasurementSession

    return MeasurementSession(config_manager, loader=fake_loader, surface=surface)


@pytest.fixture
def loaded_session(session):
    """Session with three 200x100 images; the first one is current."""
    session.add_images(["a.png", "b.png", "c.png"])
    return session


@pytest.fixture
def project_root():
    """Return the project root directory."""
    return Path(__file__).parent.parent
