# retroshelf/launch.py
from __future__ import annotations

import logging
import os
import subprocess
import threading
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .models import EmulatorConfig, LaunchPlan, LaunchWrapper, LibraryPaths, MediaItem, MediaType
from .placeholders import combine_template_arguments, expand_argument_tokens, expand_arguments, native_arguments, FILE_TOKEN
from .playlist import build_playlist, playlist_path_for, primary_file_path
from .prefix import RuntimeFamily, configure_prefix, detect_runtime_family, preview_prefix
from .supervisor import (
    LaunchAttempt,
    ProcessWatcher,
    StatsWriter,
    WatchResult,
    evaluate_session,
    wait_for_process,
)
from .utils import default_opener, normalize_data_root_path, quote_if_needed, shell_command_line, strip_outer_quotes
from .wrappers import fold_wrapper_tokens, fold_wrappers

log = logging.getLogger(__name__)

WINE_ARCHES = {"win32", "win64"}

# ──────────────────────────────────────────────────────────────────────────────
# Small helpers
# ──────────────────────────────────────────────────────────────────────────────

def _is_shell_script(token: str) -> bool:
    t = strip_outer_quotes(token or "")
    return Path(t).suffix.lower() == ".sh"

def _compose_env(item: MediaItem, emulator: Optional[EmulatorConfig], paths: LibraryPaths,
                 base_env: Optional[Dict[str, str]]) -> Tuple[Dict[str, str], Dict[str, str]]:
    """Base env, then profile overrides, then item overrides (later wins).

    Returns (env, overrides); `overrides` holds only the user-set keys.
    """
    env = dict(os.environ if base_env is None else base_env)
    overrides: Dict[str, str] = {}
    for layer in ((emulator.environment_overrides if emulator else None), item.environment_overrides):
        for key, value in (layer or {}).items():
            if not key:
                continue
            overrides[key] = normalize_data_root_path(key, value, paths.data_root)
    env.update(overrides)
    return env, overrides

def _working_directory(item: MediaItem, executable: str, target: Optional[str]) -> Optional[str]:
    if item.working_directory and item.working_directory.strip():
        return item.working_directory
    if executable and os.path.isfile(executable):
        return os.path.dirname(os.path.abspath(executable))
    if target and os.path.isfile(target):
        return os.path.dirname(os.path.abspath(target))
    return None

def _uses_prefix(item: MediaItem, emulator: Optional[EmulatorConfig], native: bool) -> bool:
    if emulator is not None and emulator.uses_wine_prefix:
        return True
    return not native and bool((item.prefix_path or "").strip())

def resolve_launch_target(item: MediaItem, paths: LibraryPaths, node_path: Optional[Sequence[str]],
                          use_playlist: bool, dry_run: bool = False) -> Optional[str]:
    """Primary file, or the generated playlist for multi-disc items."""
    primary = primary_file_path(item, paths)
    if primary and "://" not in primary:
        primary = os.path.abspath(primary)

    if use_playlist and len(item.files or []) > 1:
        if dry_run:
            return str(playlist_path_for(item, paths, node_path))
        playlist = build_playlist(item, paths, node_path)
        if playlist is not None:
            return str(playlist)
        log.info("Playlist unavailable for %s, using primary file", item.title)

    return primary

# ──────────────────────────────────────────────────────────────────────────────
# Plan resolution
# ──────────────────────────────────────────────────────────────────────────────

def resolve_plan(
    item: MediaItem,
    paths: LibraryPaths,
    emulator: Optional[EmulatorConfig] = None,
    wrappers: Optional[Sequence[LaunchWrapper]] = None,
    node_path: Optional[Sequence[str]] = None,
    use_playlist: bool = False,
    base_env: Optional[Dict[str, str]] = None,
    dry_run: bool = False,
) -> Optional[LaunchPlan]:
    """
    Turn an item into a concrete process invocation.

    Branches, first match wins: the item's own launcher, the inherited
    emulator profile, then running the primary file itself. Command items
    (URLs, store protocols) are handed to the platform opener. With
    `dry_run` nothing is written to disk (no prefix, no playlist).
    Returns None when there is nothing to launch.
    """
    target = resolve_launch_target(item, paths, node_path, use_playlist, dry_run=dry_run)
    native = False
    use_shell = False

    # `args` is the display form, `argv` what gets spawned.
    if item.media_type == MediaType.COMMAND:
        executable = (item.launcher_path or "").strip() or default_opener()
        if not target and not (item.launcher_args or "").strip():
            log.info("Nothing to open for %s", item.title)
            return None
        template = item.launcher_args if (item.launcher_args or "").strip() else FILE_TOKEN
        args = expand_arguments(target, template)
        argv = [executable] + expand_argument_tokens(target, template)
        use_shell = True
    elif (item.launcher_path or "").strip():
        executable = item.launcher_path.strip()
        template = item.launcher_args if (item.launcher_args or "").strip() else FILE_TOKEN
        args = expand_arguments(target, template)
        argv = [executable] + expand_argument_tokens(target, template)
    elif emulator is not None:
        executable = (emulator.path or "").strip()
        if not executable:
            log.warning("Emulator profile %s has no path", emulator.name or emulator.id)
            return None
        template = combine_template_arguments(emulator.arguments, item.launcher_args)
        args = expand_arguments(target, template)
        argv = [executable] + expand_argument_tokens(target, template)
    else:
        if not target:
            log.warning("No launchable file for %s", item.title)
            return None
        native = True
        executable = target
        args = native_arguments(item.launcher_args)
        argv = [executable] + (expand_argument_tokens(target, args) if args else [])
        use_shell = not _is_shell_script(executable)

    env, overrides = _compose_env(item, emulator, paths, base_env)
    working_dir = _working_directory(item, executable, target)

    prefix_root: Optional[Path] = None
    was_initialized: Optional[bool] = None
    uses_prefix = item.media_type != MediaType.COMMAND and _uses_prefix(item, emulator, native)
    if uses_prefix:
        # Only user overrides count as hints, never the ambient environment.
        family = detect_runtime_family(emulator, overrides, item)
        is_proton = family in (RuntimeFamily.PROTON, RuntimeFamily.UMU)
        is_umu = family == RuntimeFamily.UMU
        if dry_run:
            prefix_root = preview_prefix(item, paths, node_path, env, is_proton=is_proton, is_umu=is_umu)
        else:
            was_initialized = configure_prefix(item, paths, node_path, env, is_proton=is_proton, is_umu=is_umu)
            prefix_root = Path(env["WINEPREFIX"])
            arch = (item.wine_arch_override or "").strip().lower()
            if not was_initialized and arch in WINE_ARCHES:
                env["WINEARCH"] = arch

    chain = [w for w in (wrappers or []) if (w.path or "").strip()]
    if chain:
        inner = f"{quote_if_needed(executable)} {args}".strip()
        executable, args = fold_wrappers(inner, chain)
        argv = fold_wrapper_tokens(argv, chain)

    # Shell mediation can drop env vars and mangle argument splitting.
    if uses_prefix or overrides or chain or args:
        use_shell = False

    return LaunchPlan(
        executable=executable,
        args=args,
        working_directory=working_dir,
        env=env,
        use_shell=use_shell,
        launch_target=target or "",
        prefix_root=prefix_root,
        prefix_was_initialized=was_initialized,
        argv=argv,
    )


def preview_command_line(item: MediaItem, paths: LibraryPaths, **kwargs) -> str:
    plan = resolve_plan(item, paths, dry_run=True, **kwargs)
    return plan.command_line if plan else ""

# ──────────────────────────────────────────────────────────────────────────────
# Spawning
# ──────────────────────────────────────────────────────────────────────────────

def plan_argv(plan: LaunchPlan) -> List[str]:
    return list(plan.argv) or [plan.executable]

def spawn(plan: LaunchPlan) -> Tuple[Optional[subprocess.Popen], str]:
    """Start the planned process. Returns (process, message); process is None on failure."""
    cwd = plan.working_directory
    if cwd and not os.path.isdir(cwd):
        log.warning("Working directory %s missing, using current directory", cwd)
        cwd = None

    argv = plan_argv(plan)
    if plan.use_shell:
        argv = shell_command_line(argv)
    try:
        p = subprocess.Popen(argv, cwd=cwd, shell=plan.use_shell, env=plan.env)
    except (OSError, ValueError) as e:
        return None, str(e)
    return p, "Launched."

# ──────────────────────────────────────────────────────────────────────────────
# Public API
# ──────────────────────────────────────────────────────────────────────────────

class Launcher:
    """
    Runs launch attempts and records play sessions.

    Each attempt carries its own cancel event. Prefix and playlist setup for
    an item is serialized by a per-item lock; an item that is still running
    cannot be launched a second time.
    """

    def __init__(
        self,
        paths: LibraryPaths,
        writer: Optional[StatsWriter] = None,
        on_library_changed: Optional[Callable[[MediaItem], None]] = None,
        watcher: Optional[ProcessWatcher] = None,
        handle_poll: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.paths = paths
        self.writer = writer or StatsWriter()
        self.on_library_changed = on_library_changed
        self.watcher = watcher or ProcessWatcher()
        self.handle_poll = handle_poll
        self._clock = clock
        self._guard = threading.Lock()
        self._item_locks: Dict[str, threading.Lock] = {}
        self._active: Dict[str, LaunchAttempt] = {}

    def _item_lock(self, item_id: str) -> threading.Lock:
        with self._guard:
            return self._item_locks.setdefault(item_id, threading.Lock())

    def active(self) -> List[LaunchAttempt]:
        with self._guard:
            return list(self._active.values())

    def is_running(self, item_id: str) -> bool:
        with self._guard:
            return item_id in self._active

    def cancel(self, item_id: str) -> bool:
        with self._guard:
            attempt = self._active.get(item_id)
        if attempt is None:
            return False
        attempt.cancel()
        return True

    def _register(self, item: MediaItem) -> Optional[LaunchAttempt]:
        with self._guard:
            if item.id in self._active:
                return None
            attempt = LaunchAttempt(item=item)
            self._active[item.id] = attempt
            return attempt

    def launch(self, item: MediaItem, **kwargs) -> Optional[LaunchAttempt]:
        """Launch and block until the session is evaluated. None if already running."""
        attempt = self._register(item)
        if attempt is None:
            log.info("%s is already running", item.title)
            return None
        self._run(attempt, **kwargs)
        return attempt

    def launch_in_background(self, item: MediaItem, **kwargs) -> Optional[LaunchAttempt]:
        attempt = self._register(item)
        if attempt is None:
            log.info("%s is already running", item.title)
            return None
        threading.Thread(target=self._run, args=(attempt,), kwargs=kwargs, daemon=True).start()
        return attempt

    def _run(
        self,
        attempt: LaunchAttempt,
        emulator: Optional[EmulatorConfig] = None,
        wrappers: Optional[Sequence[LaunchWrapper]] = None,
        node_path: Optional[Sequence[str]] = None,
        use_playlist: bool = False,
    ) -> None:
        item = attempt.item
        try:
            watch_name = (item.override_watch_process or "").strip()
            already_running = bool(watch_name) and self.watcher.is_running(watch_name)

            with self._item_lock(item.id):
                stored_prefix = item.prefix_path
                plan = resolve_plan(item, self.paths, emulator=emulator, wrappers=wrappers,
                                    node_path=node_path, use_playlist=use_playlist)
            if item.prefix_path != stored_prefix:
                # a new prefix location must survive a failed start
                self._library_changed(item)
            if plan is None:
                attempt.error = "Nothing to launch."
                return
            attempt.plan = plan

            if attempt.cancelled:
                log.info("Launch of %s cancelled before start", item.title)
                return

            log.info("Launching %s: %s", item.title, plan.command_line)
            attempt.started_at = self._clock()
            process, msg = spawn(plan)
            if process is None:
                attempt.error = msg
                log.error("Failed to start %s: %s", item.title, msg)
                return
            attempt.process = process

            elapsed = self._track(attempt, watch_name, already_running)
            attempt.outcome = evaluate_session(item, elapsed, self.writer, self.on_library_changed)
        except Exception as e:
            attempt.error = str(e)
            log.exception("Launch of %s failed", item.title)
        finally:
            with self._guard:
                if self._active.get(item.id) is attempt:
                    del self._active[item.id]
            attempt.done.set()

    def _library_changed(self, item: MediaItem) -> None:
        if self.on_library_changed is None:
            return
        try:
            self.on_library_changed(item)
        except Exception:
            log.exception("Saving library after change to %s failed", item.title)

    def _track(self, attempt: LaunchAttempt, watch_name: str, already_running: bool) -> Optional[float]:
        if watch_name:
            if already_running:
                log.info("%s was already running, not tracking", watch_name)
                return None
            found = self.watcher.wait_for_start(watch_name, attempt.cancel_event)
            if found != WatchResult.FOUND:
                return None
            self.watcher.wait_for_exit(watch_name, attempt.cancel_event)
        else:
            wait_for_process(attempt.process, attempt.cancel_event, self.handle_poll)
        return self._clock() - attempt.started_at
