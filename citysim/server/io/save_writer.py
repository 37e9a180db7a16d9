import dataclasses
import logging
import shutil
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List

import orjson
import polars as pl

from citysim.server.state import WorldState
from citysim.shared.config import SimulationConfig

logger = logging.getLogger(__name__)

SAVE_FORMAT_VERSION = 1

# Per-cycle fields that never survive a save.
TRANSIENT_FIELDS = ("events", "current_actions")


def sanitize_save_name(save_name: str) -> str:
    return "".join(c for c in save_name if c.isalnum() or c in (" ", "_", "-")).strip()


class SaveWriter:
    """
    Manages the persistence of WorldState snapshots to disk.
    Handles Atomic Writes (Save) and Disk Management (Delete/List).

    This class complements SaveStateLoader. While Loader focuses on
    object reconstruction, Writer focuses on serialization and file I/O.
    """

    def __init__(self, config: SimulationConfig):
        self.config = config
        self.save_root = config.save_dir
        self.save_root.mkdir(parents=True, exist_ok=True)

    def save(self, state: WorldState, save_name: str) -> bool:
        """
        Serializes the WorldState atomically using Parquet and orjson.
        Atomic Write: Writes to a tmp folder first, then renames.
        """
        safe_name = sanitize_save_name(save_name)
        if not safe_name:
            logger.error("[SaveWriter] Invalid save name '%s'", save_name)
            return False

        target_path = self.save_root / safe_name
        temp_path = self.save_root / f"{safe_name}_tmp"

        logger.info("[SaveWriter] Saving '%s'...", safe_name)

        try:
            # 1. Clean Workspace
            if temp_path.exists():
                shutil.rmtree(temp_path)
            temp_path.mkdir()

            # 2. Serialize Data
            self._write_state_to_disk(state, temp_path)

            # 3. Atomic Commit (Rename)
            if target_path.exists():
                shutil.rmtree(target_path)
            temp_path.rename(target_path)

            logger.info("[SaveWriter] Saved '%s' (cycle %d).", safe_name, state.cycle)
            return True

        except (OSError, pl.exceptions.PolarsError, TypeError) as e:
            logger.error("[SaveWriter] Save failed for '%s': %s", safe_name, e)
            if temp_path.exists():
                shutil.rmtree(temp_path)
            return False

    def _write_state_to_disk(self, state: WorldState, path: Path):
        """
        Internal serialization logic using Reflection.
        """
        meta_data: Dict[str, Any] = {
            "version": SAVE_FORMAT_VERSION,
            "timestamp": datetime.now().isoformat(),
        }

        for field in dataclasses.fields(state):
            key = field.name
            if key in TRANSIENT_FIELDS:
                continue
            value = getattr(state, key)

            # Strategy A: Dict[str, DataFrame] -> Folder of Parquets
            if key == "tables":
                sub_dir = path / key
                sub_dir.mkdir(exist_ok=True)
                for tbl_name, df in value.items():
                    # Column-less frames carry no data and cannot round-trip through parquet.
                    if df.width == 0:
                        continue
                    df.write_parquet(sub_dir / f"{tbl_name}.parquet")

            # Strategy B: Dataclasses -> Dict (for JSON)
            elif dataclasses.is_dataclass(value):
                meta_data[key] = dataclasses.asdict(value)

            # Strategy C: Primitives -> JSON
            else:
                meta_data[key] = value

        with open(path / "meta.json", "wb") as f:
            f.write(orjson.dumps(meta_data, option=orjson.OPT_INDENT_2 | orjson.OPT_SERIALIZE_NUMPY))

    def delete_save(self, save_name: str) -> bool:
        """
        Permanently removes a save directory.
        """
        target_path = self.save_root / sanitize_save_name(save_name)
        if target_path.exists() and target_path.is_dir():
            try:
                shutil.rmtree(target_path)
                logger.info("[SaveWriter] Deleted save '%s'.", save_name)
                return True
            except OSError as e:
                logger.error("[SaveWriter] Failed to delete '%s': %s", save_name, e)
        return False

    def get_available_saves(self) -> List[Dict[str, Any]]:
        """
        Scans the save directory and returns metadata for listings.
        Sorted by timestamp (newest first).
        """
        saves = []
        for p in self.save_root.iterdir():
            if not p.is_dir() or p.name.endswith("_tmp"):
                continue

            meta_file = p / "meta.json"
            if not meta_file.exists():
                continue
            try:
                with open(meta_file, "rb") as f:
                    data = orjson.loads(f.read())
            except (OSError, orjson.JSONDecodeError) as e:
                logger.warning("[SaveWriter] Skipping unreadable save '%s': %s", p.name, e)
                continue

            saves.append({
                "name": p.name,
                "timestamp": data.get("timestamp", ""),
                "cycle": data.get("globals", {}).get("cycle", 0),
            })

        return sorted(saves, key=lambda x: x["timestamp"], reverse=True)
