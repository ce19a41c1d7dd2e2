import json
import logging
import threading
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .models import EmulatorConfig, LaunchWrapper, MediaFileKind, MediaFileRef, MediaItem, MediaNode, MediaType
from .settings import AppSettings, str_map, wrappers_from_json
from .wrappers import resolve_effective_wrappers

log = logging.getLogger(__name__)

# ──────────────────────────────────────────────────────────────────────────────
# JSON <-> model
# ──────────────────────────────────────────────────────────────────────────────

def _file_from_json(raw) -> Optional[MediaFileRef]:
    if not isinstance(raw, dict) or not raw.get("path"):
        return None
    try:
        kind = MediaFileKind(raw.get("kind") or MediaFileKind.ABSOLUTE.value)
    except ValueError:
        kind = MediaFileKind.ABSOLUTE
    index = raw.get("index")
    return MediaFileRef(
        path=raw["path"],
        kind=kind,
        label=raw.get("label"),
        index=index if isinstance(index, int) else None,
    )

def _parse_date(value) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None

def item_from_json(raw: dict) -> Optional[MediaItem]:
    if not isinstance(raw, dict) or not raw.get("id"):
        return None
    try:
        media_type = MediaType(raw.get("media_type") or MediaType.NATIVE.value)
    except ValueError:
        media_type = MediaType.NATIVE
    files = [_file_from_json(f) for f in raw.get("files") or []]
    return MediaItem(
        id=str(raw["id"]),
        title=raw.get("title") or str(raw["id"]),
        media_type=media_type,
        files=[f for f in files if f is not None],
        emulator_id=raw.get("emulator_id"),
        launcher_path=raw.get("launcher_path"),
        launcher_args=raw.get("launcher_args"),
        working_directory=raw.get("working_directory"),
        prefix_path=raw.get("prefix_path"),
        wine_arch_override=raw.get("wine_arch_override"),
        environment_overrides=str_map(raw.get("environment_overrides")),
        override_watch_process=raw.get("override_watch_process"),
        native_wrappers_override=wrappers_from_json(raw.get("native_wrappers_override")),
        last_played=_parse_date(raw.get("last_played")),
        play_count=int(raw.get("play_count") or 0),
        total_play_time=float(raw.get("total_play_time") or 0.0),
    )

def node_from_json(raw: dict) -> Optional[MediaNode]:
    if not isinstance(raw, dict):
        return None
    children = [node_from_json(c) for c in raw.get("children") or []]
    items = [item_from_json(i) for i in raw.get("items") or []]
    return MediaNode(
        id=str(raw.get("id") or raw.get("name") or ""),
        name=raw.get("name") or "",
        children=[c for c in children if c is not None],
        items=[i for i in items if i is not None],
        default_emulator_id=raw.get("default_emulator_id"),
        native_wrappers_override=wrappers_from_json(raw.get("native_wrappers_override")),
    )

def _json_default(o):
    if isinstance(o, datetime):
        return o.isoformat()
    raise TypeError(f"Not JSON serializable: {type(o).__name__}")

# ──────────────────────────────────────────────────────────────────────────────
# Library file
# ──────────────────────────────────────────────────────────────────────────────

class Library:
    """The library tree as read from library.json. Saves are serialized."""

    def __init__(self, library_file: Path, roots: Optional[List[MediaNode]] = None):
        self.library_file = Path(library_file)
        self.roots: List[MediaNode] = roots or []
        self._save_lock = threading.Lock()

    @classmethod
    def load(cls, library_file: Path) -> "Library":
        library_file = Path(library_file)
        roots: List[MediaNode] = []
        try:
            if library_file.exists():
                data = json.loads(library_file.read_text("utf-8"))
                parsed = [node_from_json(n) for n in data.get("nodes", [])]
                roots = [n for n in parsed if n is not None]
        except (OSError, ValueError, AttributeError) as e:
            log.warning("Could not read library %s: %s", library_file, e)
        return cls(library_file, roots)

    def save(self) -> None:
        data = {"nodes": [asdict(n) for n in self.roots]}
        text = json.dumps(data, indent=2, default=_json_default)
        with self._save_lock:
            try:
                self.library_file.parent.mkdir(parents=True, exist_ok=True)
                tmp = self.library_file.with_suffix(".tmp")
                tmp.write_text(text, encoding="utf-8")
                tmp.replace(self.library_file)
            except OSError as e:
                log.error("Could not save library %s: %s", self.library_file, e)

    def iter_items(self):
        stack = list(reversed(self.roots))
        while stack:
            node = stack.pop()
            yield from node.items
            stack.extend(reversed(node.children))

    def find_item(self, item_id: str) -> Tuple[Optional[MediaItem], List[MediaNode]]:
        """Return the item and its node chain (root first)."""
        def walk(node: MediaNode, chain: List[MediaNode]):
            chain = chain + [node]
            for item in node.items:
                if item.id == item_id:
                    return item, chain
            for child in node.children:
                found = walk(child, chain)
                if found:
                    return found
            return None

        for root in self.roots:
            found = walk(root, [])
            if found:
                return found
        return None, []

# ──────────────────────────────────────────────────────────────────────────────
# Launch context
# ──────────────────────────────────────────────────────────────────────────────

def node_path(chain: List[MediaNode]) -> List[str]:
    return [n.name for n in chain]

def resolve_emulator(item: MediaItem, chain: List[MediaNode], settings: AppSettings) -> Optional[EmulatorConfig]:
    """Item's own profile first, then the nearest node default."""
    emulator = settings.emulator(item.emulator_id)
    if emulator is not None:
        return emulator
    for node in reversed(chain):
        emulator = settings.emulator(node.default_emulator_id)
        if emulator is not None:
            return emulator
    return None

def launch_options(item: MediaItem, chain: List[MediaNode], settings: AppSettings) -> Dict:
    """Keyword arguments for Launcher.launch / resolve_plan."""
    emulator = resolve_emulator(item, chain, settings)
    wrappers: List[LaunchWrapper] = resolve_effective_wrappers(
        item, emulator, chain, settings.default_native_wrappers
    )
    return {
        "emulator": emulator,
        "wrappers": wrappers,
        "node_path": node_path(chain),
        "use_playlist": bool(emulator and emulator.use_playlist_for_multi_disc),
    }
