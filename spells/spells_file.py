from __future__ import annotations
import os
from typing import Optional

from spells.spells_serialize import dump_tome, serialize, snapshot
from spells.spells_datatypes import Scope, Constant
# NOTE: ScriptRunner is imported lazily in functions
# to avoid circular import during module load.

APP_NAME = "spells"
TOME_EXTENSION = ".tome"
DEFAULT_TITLE = "untitled"
# Session state kept between runs, itself stored as a tome.
CACHE_TITLE = "_cache"
SAVE_PATH_VAR = "SAVE_PATH"


def data_directory() -> str:
    """Where titled tomes live: $XDG_DATA_HOME/spells, else ~/.local/share/spells."""
    xdg = os.environ.get("XDG_DATA_HOME")
    if xdg:
        return os.path.join(xdg, APP_NAME)
    home = os.environ.get("HOME")
    if home:
        return os.path.join(home, ".local", "share", APP_NAME)
    raise RuntimeError("$HOME not defined. Unsure where to save.")


def _untitled_name(index: int) -> str:
    return DEFAULT_TITLE if index == 0 else f"{DEFAULT_TITLE}{index}"


def resolve_target(target: Optional[str]) -> str:
    """Maps a save/load target to a file path.

    Anything with a '.' or a path separator is a path; any other word is a
    title under the data directory. No target picks the first unused
    "untitled" name.
    """
    if target and ("." in target or "/" in target or os.sep in target):
        return os.path.expanduser(target)
    base = data_directory()
    if target:
        return os.path.join(base, target + TOME_EXTENSION)
    i = 0
    while os.path.exists(os.path.join(base, _untitled_name(i) + TOME_EXTENSION)):
        i += 1
    return os.path.join(base, _untitled_name(i) + TOME_EXTENSION)


def read_tome(target: str) -> tuple[str, str]:
    """Returns (text, path) for a tome; FileNotFoundError when it does not exist."""
    path = resolve_target(target)
    with open(path, "r", encoding="utf-8") as f:
        return f.read(), path


def write_text(path: str, text: str) -> str:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)
    return path


def save_tome(runner, target: Optional[str] = None) -> str:
    """Writes the runner's environment as a tome; returns the path written."""
    return write_text(resolve_target(target), dump_tome(runner.root_scope))


def load_tome(target: str, rng=None, output=None):
    """Builds a fresh runner from a saved tome. Returns (runner, result, path)."""
    from spells.spells_runtime import ScriptRunner
    text, path = read_tome(target)
    # A saved tome already carries the defaults it was built on.
    runner = ScriptRunner(load_default=False, rng=rng, output=output)
    result = runner.load_tome(text)
    return runner, result, path


def export_constants(runner, path: str) -> str:
    """Writes the runner's constants as JSON or YAML, chosen by extension."""
    ext = os.path.splitext(path)[1].lower()
    if ext == ".json":
        fmt = "json"
    elif ext in (".yaml", ".yml"):
        fmt = "yaml"
    else:
        raise ValueError(f"cannot export to {path!r}: use .json, .yaml or .yml")
    return write_text(path, serialize(snapshot(runner.root_scope), fmt=fmt))


def read_cache() -> Optional[str]:
    """The save path remembered from the last session, if any."""
    from spells.spells_runtime import ScriptRunner
    try:
        text, _ = read_tome(CACHE_TITLE)
    except FileNotFoundError:
        return None
    runner = ScriptRunner(load_default=False)
    runner.load_tome(text)
    binding = runner.root_scope.get(SAVE_PATH_VAR)
    if isinstance(binding, Constant) and isinstance(binding.value, str):
        return binding.value
    return None


def write_cache(save_path: str) -> str:
    scope = Scope()
    scope.define(SAVE_PATH_VAR, Constant(save_path))
    return write_text(resolve_target(CACHE_TITLE), dump_tome(scope))
