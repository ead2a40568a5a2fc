"""File-based storage for the game service.

Data layout:
  data/
    scripts/             User scripts (*.twee, nested folders allowed)
    saves/
      game_state.json    Persisted GameState of the running session
    config.json          App settings (typing delay, default script, autoload)
  presets/
    scripts/             Bundled read-only scripts (merged at read time)

Preset merging: list_scripts() and read_script() merge preset + user scripts;
the user script wins on name collision. Deleting a user script reveals the
preset. Anything under a directory named `archived` is ignored.

Config: get_config() returns defaults merged with stored values.
update_config() overwrites the keys it is given and ignores unknown ones.
"""

# Re-export all public symbols so `from backend import storage` keeps working.

from .core import (  # noqa: F401
    data_dir,
    init_storage,
    preset_scripts_dir,
    presets_dir,
    saves_dir,
    scripts_dir,
    state_path,
)

from .scripts import (  # noqa: F401
    delete_script,
    list_scripts,
    read_script,
    save_script,
    script_path,
)

from .config import (  # noqa: F401
    get_config,
    update_config,
)
