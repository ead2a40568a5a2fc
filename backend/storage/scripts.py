"""Script library (merged presets + user scripts).

Scripts are `.twee` files found anywhere under the scripts directory, except
inside a directory named `archived`. A script's name is its path relative to
the root, without the suffix ("chapters/one"). A user script shadows a preset
of the same name.
"""

from pathlib import Path
from typing import Any

from .core import preset_scripts_dir, scripts_dir

SCRIPT_SUFFIX = ".twee"
ARCHIVE_DIR = "archived"


def _scan(root: Path) -> dict[str, Path]:
    found: dict[str, Path] = {}
    if not root.is_dir():
        return found
    for path in sorted(root.rglob(f"*{SCRIPT_SUFFIX}")):
        rel = path.relative_to(root)
        if ARCHIVE_DIR in rel.parts[:-1]:
            continue
        found[rel.with_suffix("").as_posix()] = path
    return found


def list_scripts() -> list[dict[str, Any]]:
    by_name: dict[str, dict[str, Any]] = {}
    # Presets first (lower priority)
    for name, path in _scan(preset_scripts_dir()).items():
        by_name[name] = {"name": name, "source": "preset", "size": path.stat().st_size}
    # User scripts override
    for name, path in _scan(scripts_dir()).items():
        by_name[name] = {"name": name, "source": "user", "size": path.stat().st_size}
    return [by_name[name] for name in sorted(by_name)]


def script_path(name: str) -> Path | None:
    # Data dir first, then preset fallback
    for root in (scripts_dir(), preset_scripts_dir()):
        matches = _scan(root)
        if name in matches:
            return matches[name]
    return None


def read_script(name: str) -> str | None:
    path = script_path(name)
    if path is None:
        return None
    return path.read_text(encoding="utf-8")


def save_script(name: str, text: str) -> dict[str, Any]:
    """Write a user script. Nested names create subdirectories."""
    rel = Path(name)
    if rel.is_absolute() or ".." in rel.parts or not rel.parts:
        raise ValueError(f"Invalid script name: {name!r}")
    path = scripts_dir() / rel.with_suffix(SCRIPT_SUFFIX)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return {"name": rel.as_posix(), "source": "user", "size": path.stat().st_size}


def delete_script(name: str) -> bool:
    """Delete a user script (revealing any preset of the same name)."""
    path = _scan(scripts_dir()).get(name)
    if path is None:
        return False
    path.unlink()
    return True
