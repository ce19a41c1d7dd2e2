# retroshelf/wrappers.py
from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

from .models import EmulatorConfig, LaunchWrapper, MediaItem, MediaNode, MediaType, WrapperMode
from .placeholders import FILE_TOKEN
from .utils import quote_if_needed, shell_command_line, split_command_line

log = logging.getLogger(__name__)

# ──────────────────────────────────────────────────────────────────────────────
# Folding
# ──────────────────────────────────────────────────────────────────────────────

def fold_wrappers(inner_command: str, wrappers: Optional[Sequence[LaunchWrapper]]) -> Tuple[str, str]:
    """
    Wrap `inner_command` in the chain and return (executable, args).

    The chain is outer-to-inner: wrappers[0] ends up as the executable, the
    last wrapper sits right in front of the inner command. A wrapper whose
    args contain {file} gets the accumulated command at that spot, otherwise
    the command is appended after its literal args.
    """
    current = inner_command or ""
    outer: Optional[Tuple[str, str]] = None

    for wrapper in reversed(list(wrappers or [])):
        path = (wrapper.path or "").strip()
        if not path:
            log.debug("Skipping wrapper without a path")
            continue

        template = wrapper.args if wrapper.args and wrapper.args.strip() else FILE_TOKEN
        if FILE_TOKEN in template:
            expanded = template.replace(FILE_TOKEN, current)
        else:
            expanded = f"{template} {current}"

        expanded = expanded.strip()
        outer = (path, expanded)
        current = f"{quote_if_needed(path)} {expanded}".strip()

    if outer is not None:
        return outer

    # No usable wrapper: split the raw inner command.
    tokens = split_command_line(inner_command)
    if not tokens:
        return "", ""
    return tokens[0], " ".join(quote_if_needed(t) for t in tokens[1:])


def fold_wrapper_tokens(inner_argv: Sequence[str], wrappers: Optional[Sequence[LaunchWrapper]]) -> List[str]:
    """
    argv form of fold_wrappers. The inner command stays a token list, so
    paths are never re-split; a {file} token is replaced by the whole inner
    argv, a {file} embedded in a larger token gets it shell-quoted.
    """
    current = list(inner_argv or [])
    for wrapper in reversed(list(wrappers or [])):
        path = (wrapper.path or "").strip()
        if not path:
            continue

        template = split_command_line(wrapper.args) or [FILE_TOKEN]
        expanded: List[str] = []
        placed = False
        for token in template:
            if token == FILE_TOKEN:
                expanded.extend(current)
                placed = True
            elif FILE_TOKEN in token:
                expanded.append(token.replace(FILE_TOKEN, shell_command_line(current)))
                placed = True
            else:
                expanded.append(token)
        if not placed:
            expanded.extend(current)

        current = [path] + expanded
    return current

# ──────────────────────────────────────────────────────────────────────────────
# Inheritance: global defaults -> emulator -> node chain -> item
# ──────────────────────────────────────────────────────────────────────────────

def resolve_effective_wrappers(
    item: MediaItem,
    emulator: Optional[EmulatorConfig],
    node_chain: Sequence[MediaNode],
    default_wrappers: Optional[Sequence[LaunchWrapper]],
) -> List[LaunchWrapper]:
    """
    Work out the wrapper chain for a launch.

    Only native items are wrapped. `node_chain` is root-first; the nearest
    node with an override wins. For the node and item levels None means
    inherit and an empty list means "no wrappers".
    """
    if item.media_type != MediaType.NATIVE:
        return []

    wrappers: Optional[Sequence[LaunchWrapper]] = default_wrappers

    if emulator is not None:
        if emulator.native_wrapper_mode == WrapperMode.NONE:
            wrappers = []
        elif emulator.native_wrapper_mode == WrapperMode.OVERRIDE:
            wrappers = list(emulator.native_wrappers_override or [])

    for node in reversed(list(node_chain)):
        if node.native_wrappers_override is None:
            continue
        wrappers = node.native_wrappers_override
        break

    if item.native_wrappers_override is not None:
        wrappers = item.native_wrappers_override

    return [w for w in (wrappers or []) if (w.path or "").strip()]
