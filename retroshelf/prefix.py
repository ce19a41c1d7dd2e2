# retroshelf/prefix.py
from __future__ import annotations

import logging
import os
from enum import Enum
from pathlib import Path
from typing import Dict, Mapping, Optional, Sequence, Tuple

from .models import EmulatorConfig, LibraryPaths, MediaItem
from .utils import is_pfx_path, is_prefix_initialized, is_within, sanitize_folder_name, sanitize_node_path

log = logging.getLogger(__name__)

PREFIX_DIR = "Prefixes"
PFX_DIR = "pfx"
SHARED_GAMES_DIR = "Games"


class RuntimeFamily(str, Enum):
    WINE = "wine"
    PROTON = "proton"
    UMU = "umu"

# ──────────────────────────────────────────────────────────────────────────────
# Runtime family: declared -> env hints -> path heuristics -> wine
# ──────────────────────────────────────────────────────────────────────────────

def _declared_family(emulator: Optional[EmulatorConfig]) -> Optional[RuntimeFamily]:
    if emulator is None or not emulator.runtime:
        return None
    try:
        return RuntimeFamily(emulator.runtime.strip().lower())
    except ValueError:
        log.warning("Unknown runtime %r on emulator %s", emulator.runtime, emulator.name or emulator.id)
        return None

def _family_from_env(overrides: Mapping[str, str]) -> Optional[RuntimeFamily]:
    keys = {k.upper() for k in overrides}
    if "GAMEID" in keys or any(k.startswith("UMU_") for k in keys):
        return RuntimeFamily.UMU
    if "PROTONPATH" in keys or "STEAM_COMPAT_DATA_PATH" in keys:
        return RuntimeFamily.PROTON
    return None

def _family_from_path(emulator: Optional[EmulatorConfig], item: Optional[MediaItem]) -> Optional[RuntimeFamily]:
    # the item's own launcher is what actually runs, when it has one
    path = (item.launcher_path if item else "") or (emulator.path if emulator else "") or ""
    name = path.lower()
    if "umu" in name:
        return RuntimeFamily.UMU
    if "proton" in name:
        return RuntimeFamily.PROTON
    return None

def detect_runtime_family(emulator: Optional[EmulatorConfig], overrides: Mapping[str, str],
                          item: Optional[MediaItem] = None) -> RuntimeFamily:
    """`overrides` are the profile and item env overrides only, not os.environ."""
    family = _declared_family(emulator)
    if family:
        return family
    family = _family_from_env(overrides)
    if family:
        return family
    family = _family_from_path(emulator, item)
    if family:
        return family
    return RuntimeFamily.WINE

# ──────────────────────────────────────────────────────────────────────────────
# Prefix path selection
# ──────────────────────────────────────────────────────────────────────────────

def stored_prefix_path(item: MediaItem, paths: LibraryPaths) -> Optional[Path]:
    if not (item.prefix_path or "").strip():
        return None
    return paths.resolve_library_path(item.prefix_path)

def generated_prefix_path(item: MediaItem, paths: LibraryPaths,
                          node_path: Optional[Sequence[str]]) -> Tuple[Path, str]:
    """Return (absolute path, library-relative path to persist)."""
    parts = sanitize_node_path(list(node_path or [])) + [
        PREFIX_DIR, f"{item.id}_{sanitize_folder_name(item.title)}"
    ]
    relative = os.path.join(*parts)
    return paths.resolve_library_path(relative), relative

def _layout(candidate: Path, is_proton: bool, is_umu: bool) -> Tuple[Path, Path]:
    """Return (compat root, actual wine prefix) for the runtime family."""
    if is_umu:
        root = candidate.parent if is_pfx_path(candidate) else candidate
        return root, root

    if is_proton:
        if is_pfx_path(candidate):
            return candidate.parent, candidate
        pfx = candidate / PFX_DIR
        # keep using a legacy root-level prefix if pfx was never set up
        if is_prefix_initialized(candidate) and not is_prefix_initialized(pfx):
            return candidate, candidate
        return candidate, pfx

    pfx = candidate / PFX_DIR
    if not (candidate / "drive_c").is_dir() and (pfx / "drive_c").is_dir():
        return candidate, pfx
    return candidate, candidate

# ──────────────────────────────────────────────────────────────────────────────
# Filesystem (best effort)
# ──────────────────────────────────────────────────────────────────────────────

def _mkdir(path: Path) -> bool:
    try:
        path.mkdir(parents=True, exist_ok=True)
        return True
    except OSError as e:
        log.warning("Could not create %s: %s", path, e)
        return False

def _ensure_link(link: Path, target: str) -> None:
    if os.path.lexists(link):
        return
    try:
        os.symlink(target, link)
    except (OSError, NotImplementedError) as e:
        log.warning("Could not map %s -> %s: %s", link, target, e)

def ensure_prefix_layout(root: Path, actual: Path, paths: LibraryPaths) -> None:
    for d in (root, actual, actual / "drive_c", actual / "dosdevices"):
        _mkdir(d)

    dosdevices = actual / "dosdevices"
    if not dosdevices.is_dir():
        return

    _ensure_link(dosdevices / "c:", "../drive_c")

    if is_within(actual, paths.library_root):
        games = paths.library_root / SHARED_GAMES_DIR
        if _mkdir(games):
            _ensure_link(dosdevices / "d:", os.path.relpath(games, dosdevices))

# ──────────────────────────────────────────────────────────────────────────────
# Public API
# ──────────────────────────────────────────────────────────────────────────────

def configure_prefix(
    item: MediaItem,
    paths: LibraryPaths,
    node_path: Optional[Sequence[str]],
    env: Dict[str, str],
    is_proton: bool = False,
    is_umu: bool = False,
) -> bool:
    """
    Pick (or create) the compatibility prefix for `item` and point `env` at it.

    Sets WINEPREFIX, plus STEAM_COMPAT_DATA_PATH for Proton/UMU. A freshly
    generated location is persisted on the item as a library-relative path.
    Returns True if the prefix was already initialized before this call.
    """
    candidate = stored_prefix_path(item, paths)
    relative_to_save: Optional[str] = None
    if candidate is None:
        candidate, relative_to_save = generated_prefix_path(item, paths, node_path)

    root, actual = _layout(candidate, is_proton or is_umu, is_umu)
    was_initialized = is_prefix_initialized(actual)

    ensure_prefix_layout(root, actual, paths)

    env["WINEPREFIX"] = str(actual)
    if is_proton or is_umu:
        env["STEAM_COMPAT_DATA_PATH"] = str(root)

    if relative_to_save is not None:
        item.prefix_path = relative_to_save

    log.info("Prefix for %s: %s (initialized=%s)", item.title, actual, was_initialized)
    return was_initialized


def preview_prefix(
    item: MediaItem,
    paths: LibraryPaths,
    node_path: Optional[Sequence[str]],
    env: Dict[str, str],
    is_proton: bool = False,
    is_umu: bool = False,
) -> Path:
    """configure_prefix without touching disk or the item; returns WINEPREFIX."""
    candidate = stored_prefix_path(item, paths)
    if candidate is None:
        candidate, _ = generated_prefix_path(item, paths, node_path)
    root, actual = _layout(candidate, is_proton or is_umu, is_umu)
    env["WINEPREFIX"] = str(actual)
    if is_proton or is_umu:
        env["STEAM_COMPAT_DATA_PATH"] = str(root)
    return actual
