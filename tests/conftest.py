from __future__ import annotations
import sys
from pathlib import Path

import pytest

# Ensure project root import
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from retroshelf.models import LibraryPaths


def touch(p: Path, data: bytes = b"") -> Path:
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_bytes(data or b"stub")
    return p


class FakeProcess:
    """Stands in for subprocess.Popen; exits as soon as it is waited on."""
    calls = []

    def __init__(self, *a, **kw):
        FakeProcess.calls.append((a, kw))
        self.returncode = None

    def wait(self, timeout=None):
        self.returncode = 0
        return 0


@pytest.fixture
def paths(tmp_path) -> LibraryPaths:
    root = tmp_path / "data"
    root.mkdir()
    return LibraryPaths(data_root=root)


@pytest.fixture
def fake_popen(monkeypatch):
    import retroshelf.launch as L
    FakeProcess.calls = []
    monkeypatch.setattr(L.subprocess, "Popen", FakeProcess)
    return FakeProcess.calls
