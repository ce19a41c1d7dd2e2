# retroshelf/placeholders.py
from __future__ import annotations

import os
from typing import Dict, List, Optional

from .utils import normalize_whitespace, quote_if_needed, split_command_line

FILE_TOKEN = "{file}"
QUOTED_FILE_TOKEN = '"{file}"'


def expand_arguments(primary_path: Optional[str], template: Optional[str]) -> str:
    """
    Expand an argument template against the launch file.

      {file}     -> full path (quoted if it contains whitespace)
      {fileDir}  -> directory of the file
      {fileName} -> file name with extension
      {fileBase} -> file name without extension (e.g. a MAME short name)

    A template that already spells out "{file}" keeps the user's quotes and
    gets the bare path inside them. Never raises.
    """
    full_path = primary_path or ""
    file_dir = file_name = file_base = ""
    if full_path:
        file_dir = os.path.dirname(full_path)
        file_name = os.path.basename(full_path)
        file_base = os.path.splitext(file_name)[0] if file_name else ""

    if not template or not template.strip():
        return quote_if_needed(full_path)

    result = (
        template.replace("{fileDir}", file_dir)
        .replace("{fileName}", file_name)
        .replace("{fileBase}", file_base)
    )

    if QUOTED_FILE_TOKEN in result:
        return result.replace(FILE_TOKEN, full_path).strip()

    return result.replace(FILE_TOKEN, quote_if_needed(full_path)).strip()


def combine_template_arguments(base_args: Optional[str], item_args: Optional[str]) -> str:
    """Merge a profile template with item-level args.

    When both carry {file}, the item template takes the profile's {file} slot,
    so "-L {file}" + "--fast {file}" gives "-L --fast {file}".
    """
    base_args = base_args or ""
    item_args = item_args or ""

    if not item_args.strip():
        return base_args

    if FILE_TOKEN in base_args and FILE_TOKEN in item_args:
        return base_args.replace(FILE_TOKEN, item_args)

    return f"{base_args} {item_args}".strip()


def native_arguments(template: Optional[str]) -> str:
    # A {file} left over in native args (from an emulator template) is dropped
    # together with everything before it.
    if not template or not template.strip():
        return ""

    args = template
    idx = args.find(QUOTED_FILE_TOKEN)
    if idx >= 0:
        args = args[idx + len(QUOTED_FILE_TOKEN):]
    else:
        idx = args.find(FILE_TOKEN)
        if idx >= 0:
            args = args[idx + len(FILE_TOKEN):]

    return normalize_whitespace(args)


def _path_parts(primary_path: Optional[str]) -> Dict[str, str]:
    full_path = primary_path or ""
    file_name = os.path.basename(full_path) if full_path else ""
    return {
        "{fileDir}": os.path.dirname(full_path) if full_path else "",
        "{fileName}": file_name,
        "{fileBase}": os.path.splitext(file_name)[0] if file_name else "",
        FILE_TOKEN: full_path,
    }


def expand_argument_tokens(primary_path: Optional[str], template: Optional[str]) -> List[str]:
    """
    Token form of expand_arguments, used to build argv.

    The template is split before substitution, so paths are inserted as
    whole tokens and never re-split (apostrophes, parentheses and runs of
    spaces survive). Tokens that expand to nothing are dropped.
    """
    parts = _path_parts(primary_path)
    if not template or not template.strip():
        return [parts[FILE_TOKEN]] if parts[FILE_TOKEN] else []

    out: List[str] = []
    for token in split_command_line(template):
        for placeholder, value in parts.items():
            token = token.replace(placeholder, value)
        if token:
            out.append(token)
    return out
