from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from .utils import quote_if_needed


class MediaType(str, Enum):
    NATIVE = "native"
    EMULATOR = "emulator"
    COMMAND = "command"


class MediaFileKind(str, Enum):
    ABSOLUTE = "absolute"
    MOUNT_RELATIVE = "mount_relative"     # reserved, never resolved
    LIBRARY_RELATIVE = "library_relative"


class WrapperMode(str, Enum):
    INHERIT = "inherit"
    NONE = "none"
    OVERRIDE = "override"


@dataclass
class MediaFileRef:
    path: str
    kind: MediaFileKind = MediaFileKind.ABSOLUTE
    label: Optional[str] = None
    index: Optional[int] = None


@dataclass
class LaunchWrapper:
    path: str
    args: str = ""                  # empty means "{file}"


@dataclass
class EmulatorConfig:
    path: str
    arguments: str = "{file}"
    id: str = ""
    name: str = ""
    uses_wine_prefix: bool = False
    use_playlist_for_multi_disc: bool = False
    environment_overrides: Dict[str, str] = field(default_factory=dict)
    runtime: Optional[str] = None   # "wine" | "proton" | "umu"; None = guess
    native_wrapper_mode: WrapperMode = WrapperMode.INHERIT
    native_wrappers_override: Optional[List[LaunchWrapper]] = None


@dataclass
class MediaItem:
    id: str
    title: str
    media_type: MediaType = MediaType.NATIVE
    files: List[MediaFileRef] = field(default_factory=list)
    emulator_id: Optional[str] = None
    launcher_path: Optional[str] = None
    launcher_args: Optional[str] = None
    working_directory: Optional[str] = None
    prefix_path: Optional[str] = None
    wine_arch_override: Optional[str] = None
    environment_overrides: Dict[str, str] = field(default_factory=dict)
    override_watch_process: Optional[str] = None
    native_wrappers_override: Optional[List[LaunchWrapper]] = None  # None=inherit
    last_played: Optional[datetime] = None
    play_count: int = 0
    total_play_time: float = 0.0    # seconds


@dataclass
class MediaNode:
    id: str
    name: str
    children: List["MediaNode"] = field(default_factory=list)
    items: List[MediaItem] = field(default_factory=list)
    default_emulator_id: Optional[str] = None
    native_wrappers_override: Optional[List[LaunchWrapper]] = None


@dataclass
class LibraryPaths:
    """Portable roots. Everything persisted is stored relative to these."""
    data_root: Path

    @property
    def library_root(self) -> Path:
        return self.data_root / "Library"

    def resolve_data_path(self, path: str) -> Path:
        if not path:
            return self.data_root
        p = Path(path)
        if p.is_absolute():
            return p
        return Path(os.path.normpath(self.data_root / p))

    def resolve_library_path(self, path: str) -> Path:
        p = Path(path)
        if p.is_absolute():
            return p
        return Path(os.path.normpath(self.library_root / p))


@dataclass
class LaunchPlan:
    executable: str
    args: str
    working_directory: Optional[str]
    env: Dict[str, str]
    use_shell: bool
    launch_target: str              # primary file or playlist
    prefix_root: Optional[Path] = None
    prefix_was_initialized: Optional[bool] = None
    argv: List[str] = field(default_factory=list)   # what actually gets spawned

    @property
    def command_line(self) -> str:
        return f"{quote_if_needed(self.executable)} {self.args}".strip()
