import dataclasses
import logging
from pathlib import Path
from typing import Any, Dict, get_type_hints

import orjson
import polars as pl

from citysim.server.io.save_writer import SAVE_FORMAT_VERSION, sanitize_save_name
from citysim.server.state import WorldState
from citysim.shared.config import SimulationConfig
from citysim.shared.environment import CityEnvironment
from citysim.shared.errors import SaveNotFoundError

logger = logging.getLogger(__name__)


def _build_dataclass(target_type: type, data: Any):
    """Rebuilds a nested dataclass, ignoring keys this build does not know."""
    if not isinstance(data, dict):
        return target_type()
    if target_type is CityEnvironment:
        return CityEnvironment.from_dict(data)
    known = {f.name for f in dataclasses.fields(target_type)}
    return target_type(**{k: v for k, v in data.items() if k in known})


class SaveStateLoader:
    """
    Responsible strictly for reconstructing WorldState from save files (Parquet/JSON).
    Uses reflection to map disk data back to the WorldState dataclass structure.
    """

    def __init__(self, config: SimulationConfig):
        self.save_root = config.save_dir

    def load(self, save_name: str) -> WorldState:
        """
        Loads a specific save directory into a WorldState object.
        """
        save_dir = self.save_root / sanitize_save_name(save_name)
        if not save_dir.exists():
            raise SaveNotFoundError(f"Save '{save_name}' not found at {save_dir}")

        logger.info("[SaveLoader] Restoring save '%s'...", save_name)

        # 1. Load Metadata (globals, economy, drift, environment)
        meta: Dict[str, Any] = {}
        meta_path = save_dir / "meta.json"
        if meta_path.exists():
            with open(meta_path, "rb") as f:
                meta = orjson.loads(f.read())
        else:
            logger.warning("[SaveLoader] meta.json missing for '%s'. Using defaults.", save_name)

        version = int(meta.get("version", SAVE_FORMAT_VERSION))
        if version > SAVE_FORMAT_VERSION:
            logger.warning("[SaveLoader] Save '%s' has format v%d (this build writes v%d).",
                           save_name, version, SAVE_FORMAT_VERSION)

        # 2. Reflection: Build Constructor Arguments
        constructor_args: Dict[str, Any] = {}
        type_hints = get_type_hints(WorldState)

        for field in dataclasses.fields(WorldState):
            key = field.name
            target_type = type_hints.get(key)

            # Strategy A: The 'tables' dictionary (folder of .parquet files)
            if key == "tables":
                constructor_args[key] = self._load_tables_dir(save_dir / "tables")

            # Strategy B: Nested Dataclasses
            elif dataclasses.is_dataclass(target_type):
                constructor_args[key] = _build_dataclass(target_type, meta.get(key, {}))

            # Strategy C: Primitives (globals)
            elif key in meta:
                constructor_args[key] = meta[key]

        state = WorldState(**constructor_args)
        logger.info("[SaveLoader] Save loaded successfully. Cycle: %d", state.cycle)
        return state

    def _load_tables_dir(self, path: Path) -> Dict[str, pl.DataFrame]:
        """
        Key = Filename (without extension), Value = DataFrame.
        """
        tables = {}
        if path.exists() and path.is_dir():
            for p_file in sorted(path.glob("*.parquet")):
                tables[p_file.stem] = pl.read_parquet(p_file)
        return tables
