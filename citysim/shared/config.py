import dataclasses
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, TypeVar

import rtoml

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RngSettings:
    seed: Optional[int] = None
    # A previously captured RandomSource state; takes priority over the seed.
    resume_state: Optional[Dict[str, Any]] = None


@dataclass
class DriftSettings:
    """Toggles for the drift engine and its feedback into the economy."""
    economy_feedback: bool = True
    district_feedback: bool = True
    feedback_scale: float = 0.1
    feedback_max_delta: float = 2.0
    district_feedback_scale: float = 0.5
    district_feedback_max_delta: float = 3.0
    # Replaces the calendar's sports phase for drift purposes only.
    sports_override: Optional[str] = None
    crowd_intensity: float = 1.0
    district_bias: Dict[str, float] = field(default_factory=dict)


class SimulationConfig:
    """
    Central configuration handler for the simulation core.

    Responsibilities:
    1. Resolve the ledger and save directories relative to the project root.
    2. Read the optional 'simulation.toml' (RNG, drift toggles, tuning).
    3. Hand out per-engine tuning objects with overrides applied.
    """
    def __init__(self, project_root: Path, config_file: Optional[Path] = None):
        self.project_root = Path(project_root)
        self.config_file = config_file or self.project_root / "simulation.toml"

        # Standard directory structure definitions
        self.ledger_dir = self.project_root / "ledger"
        self.save_dir = self.project_root / "user_data" / "saves"

        self.rng = RngSettings()
        self.drift = DriftSettings()
        # Raw override tables, e.g. {"arcs": {"active_cap": 12}}
        self.tuning: Dict[str, Dict[str, Any]] = {}

        self._load_config_file()

    def _load_config_file(self):
        """Attempts to read overrides from simulation.toml."""
        if not self.config_file.exists():
            return

        try:
            data = rtoml.load(self.config_file)
        except (rtoml.TomlParsingError, OSError) as e:
            logger.warning("[Config] Failed to parse %s: %s. Using defaults.", self.config_file.name, e)
            return

        self.apply(data)
        logger.info("[Config] Loaded %s", self.config_file)

    def apply(self, data: Dict[str, Any]):
        """Applies a parsed configuration mapping on top of the current values."""
        rng = data.get("rng", {})
        if "seed" in rng:
            self.rng.seed = int(rng["seed"])
        if isinstance(rng.get("resume_state"), dict):
            self.rng.resume_state = rng["resume_state"]

        drift = data.get("drift", {})
        for f in dataclasses.fields(DriftSettings):
            if f.name in drift:
                setattr(self.drift, f.name, drift[f.name])
        if self.drift.sports_override in ("", "none"):
            self.drift.sports_override = None
        self.drift.crowd_intensity = max(0.0, min(3.0, float(self.drift.crowd_intensity)))
        self.drift.district_bias = {
            str(k): float(v) for k, v in dict(self.drift.district_bias).items()
        }

        ledger = data.get("ledger", {})
        if "directory" in ledger:
            self.ledger_dir = self._resolve(ledger["directory"])

        saves = data.get("saves", {})
        if "directory" in saves:
            self.save_dir = self._resolve(saves["directory"])

        tuning = data.get("tuning", {})
        if isinstance(tuning, dict):
            self.tuning = {k: dict(v) for k, v in tuning.items() if isinstance(v, dict)}

    def _resolve(self, path: str) -> Path:
        p = Path(path)
        return p if p.is_absolute() else self.project_root / p

    def tuning_for(self, section: str, defaults: T) -> T:
        """
        Returns a copy of a tuning dataclass with the [tuning.<section>]
        overrides applied. Unknown keys are reported and ignored.
        """
        overrides = self.tuning.get(section, {})
        known = {f.name for f in dataclasses.fields(defaults)}
        unknown = set(overrides) - known
        if unknown:
            logger.warning("[Config] Unknown keys in [tuning.%s]: %s", section, sorted(unknown))
        return dataclasses.replace(defaults, **{k: v for k, v in overrides.items() if k in known})
