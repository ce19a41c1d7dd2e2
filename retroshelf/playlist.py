# retroshelf/playlist.py
from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from .models import LibraryPaths, MediaFileKind, MediaFileRef, MediaItem
from .utils import sanitize_folder_name, sanitize_node_path

log = logging.getLogger(__name__)

PLAYLIST_DIR = "Playlists"


def _sort_key(ref: MediaFileRef):
    return (
        ref.index is None,
        ref.index if ref.index is not None else sys.maxsize,
        (ref.label or "").casefold(),
        (ref.path or "").casefold(),
    )


def ordered_files(item: MediaItem) -> List[MediaFileRef]:
    """Index ascending (unindexed last), then label, then path, both case-insensitive."""
    return sorted(item.files or [], key=_sort_key)


def primary_file_ref(item: MediaItem) -> Optional[MediaFileRef]:
    files = [f for f in (item.files or []) if (f.path or "").strip()]
    if not files:
        return None
    indexed = [f for f in files if f.index is not None]
    if indexed:
        # min() keeps the first on ties, so insertion order breaks them
        return min(indexed, key=lambda f: f.index)
    return files[0]


def resolve_file_ref(ref: MediaFileRef, paths: LibraryPaths) -> Optional[str]:
    if not (ref.path or "").strip():
        return None
    if ref.kind == MediaFileKind.ABSOLUTE:
        return ref.path
    if ref.kind == MediaFileKind.LIBRARY_RELATIVE:
        return str(paths.resolve_data_path(ref.path))
    return None


def primary_file_path(item: MediaItem, paths: LibraryPaths) -> Optional[str]:
    ref = primary_file_ref(item)
    return resolve_file_ref(ref, paths) if ref else None


def playlist_path_for(item: MediaItem, paths: LibraryPaths, node_path: Optional[Sequence[str]]) -> Path:
    folder = paths.library_root.joinpath(*sanitize_node_path(list(node_path or [])), PLAYLIST_DIR)
    return folder / f"{item.id}_{sanitize_folder_name(item.title)}.m3u"


def render_playlist(item: MediaItem, paths: LibraryPaths) -> List[str]:
    lines: List[str] = []
    for ref in ordered_files(item):
        resolved = resolve_file_ref(ref, paths)
        if resolved:
            lines.append(resolved)
    return lines


def build_playlist(item: MediaItem, paths: LibraryPaths,
                   node_path: Optional[Sequence[str]] = None) -> Optional[Path]:
    """
    Write an .m3u listing every disc of a multi-file item and return its path.

    Returns None (and writes nothing) for single-file items, when no file
    reference resolves, or when the write fails. An existing playlist is
    overwritten.
    """
    if not item.files or len(item.files) <= 1:
        return None

    lines = render_playlist(item, paths)
    if not lines:
        log.info("No usable files for playlist of %s", item.title)
        return None

    target = playlist_path_for(item, paths, node_path)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "w", encoding="utf-8", newline="\n") as f:
            f.write("\n".join(lines) + "\n")
    except OSError as e:
        log.warning("Could not write playlist %s: %s", target, e)
        return None

    log.debug("Wrote playlist %s (%d entries)", target, len(lines))
    return target
