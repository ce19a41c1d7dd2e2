import os
import re
import shlex
import subprocess
import sys
from pathlib import Path
from typing import List, Optional, Sequence

_INVALID_NAME_CHARS = set('<>:"/\\|?*') | {chr(c) for c in range(32)}

# Env keys whose relative values point into the portable data root.
DATA_ROOT_PATH_KEYS = {"PROTONPATH", "STEAM_COMPAT_DATA_PATH"}

def is_windows() -> bool:
    return os.name == "nt"

def default_opener() -> str:
    if is_windows():
        return "explorer"
    if sys.platform == "darwin":
        return "open"
    return "xdg-open"

def strip_outer_quotes(s: str) -> str:
    if len(s) >= 2 and s[0] == s[-1] and s[0] in ("'", '"'):
        return s[1:-1]
    return s

def quote_if_needed(path: str) -> str:
    if path and any(c.isspace() for c in path):
        return f'"{path}"'
    return path or ""

def normalize_whitespace(value: str) -> str:
    if not value or not value.strip():
        return ""
    return re.sub(r"\s+", " ", value).strip()

def split_command_line(command: str) -> List[str]:
    """Split on whitespace, honouring '...' and "..." groups.

    Backslashes are kept literally so Windows paths survive. Not shell-safe.
    """
    tokens: List[str] = []
    buf: List[str] = []
    quote: Optional[str] = None
    in_token = False

    for ch in command or "":
        if quote:
            if ch == quote:
                quote = None
            else:
                buf.append(ch)
        elif ch in ("'", '"'):
            quote = ch
            in_token = True
        elif ch.isspace():
            if in_token:
                tokens.append("".join(buf))
                buf = []
                in_token = False
        else:
            buf.append(ch)
            in_token = True

    if in_token:
        tokens.append("".join(buf))
    return tokens

def shell_command_line(argv: Sequence[str]) -> str:
    """Join argv into a string the platform shell hands back unchanged."""
    if is_windows():
        return subprocess.list2cmdline(list(argv))
    return " ".join(shlex.quote(t) for t in argv)

def sanitize_folder_name(value: Optional[str], max_len: int = 80) -> str:
    if not value or not value.strip():
        return "Unknown"
    safe = "".join(c for c in value.replace(" ", "_") if c not in _INVALID_NAME_CHARS)
    while "__" in safe:
        safe = safe.replace("__", "_")
    safe = safe[:max_len]
    return safe or "Unknown"

def sanitize_node_path(node_path: Optional[List[str]]) -> List[str]:
    return [sanitize_folder_name(part) for part in (node_path or [])]

def is_pfx_path(path: Optional[Path]) -> bool:
    if not path:
        return False
    return Path(str(path).rstrip("/\\")).name.lower() == "pfx"

def is_prefix_initialized(path: Optional[Path]) -> bool:
    """Heuristic: a prefix counts as initialized once wine wrote system.reg or drive_c."""
    if not path:
        return False
    p = Path(path)
    if not p.is_dir():
        return False
    return (p / "system.reg").is_file() or (p / "drive_c").is_dir()

def is_within(child: Path, parent: Path) -> bool:
    try:
        Path(os.path.abspath(child)).relative_to(os.path.abspath(parent))
        return True
    except ValueError:
        return False

def normalize_data_root_path(key: str, value: Optional[str], data_root: Path) -> str:
    raw = value or ""
    if not key or key.upper() not in DATA_ROOT_PATH_KEYS:
        return raw
    if not raw.strip() or os.path.isabs(raw):
        return raw
    return os.path.normpath(os.path.join(str(data_root), raw))
