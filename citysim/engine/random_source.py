import logging
from typing import Any, Dict, Optional, Sequence, TypeVar

import numpy as np

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _encode(value: Any) -> Any:
    # PCG64 state holds 128-bit integers, which JSON (and orjson) cannot carry.
    if isinstance(value, dict):
        return {k: _encode(v) for k, v in value.items()}
    if isinstance(value, np.ndarray):
        # Arrays keep their dtype: MT19937 keys are uint32, SFC64 and Philox words uint64.
        return {"dtype": value.dtype.name, "values": [hex(int(v)) for v in value.tolist()]}
    if isinstance(value, (int, np.integer)) and not isinstance(value, bool):
        return hex(int(value))
    return value


def _decode(value: Any) -> Any:
    if isinstance(value, dict) and set(value) == {"dtype", "values"}:
        return np.asarray([int(v, 16) for v in value["values"]], dtype=np.dtype(value["dtype"]))
    if isinstance(value, dict):
        return {k: _decode(v) for k, v in value.items()}
    if isinstance(value, list):
        # Snapshots written before arrays carried a dtype held MT19937 keys only.
        return np.asarray(value, dtype=np.uint32)
    if isinstance(value, str) and value.startswith(("0x", "-0x")):
        return int(value, 16)
    return value


class RandomSource:
    """
    The single source of randomness for every engine.

    Architecture Note:
        The generator is chosen once, when the session is built, by walking
        an ordered chain: a captured resume state, then a configured seed,
        then a Generator handed in by the host, then OS entropy. Engines never
        probe for alternatives per call; they receive this object.

        The state is captured after every committed cycle and restored when a
        cycle aborts, so replaying the same inputs from the same seed yields
        the same arcs, ripples, drift values and votes.
    """

    def __init__(self, generator: np.random.Generator, source: str):
        self._gen = generator
        # Which branch of the resolution chain produced the generator.
        self.source = source

    @classmethod
    def resolve(cls,
                seed: Optional[int] = None,
                resume_state: Optional[Dict[str, Any]] = None,
                external: Optional[np.random.Generator] = None) -> "RandomSource":
        if resume_state:
            source = cls(np.random.Generator(np.random.PCG64()), "resume")
            source.restore(resume_state)
        elif seed is not None:
            source = cls(np.random.default_rng(seed), "seed")
        elif external is not None:
            source = cls(external, "external")
        else:
            source = cls(np.random.default_rng(), "entropy")

        logger.info("[RandomSource] Using %s generator", source.source)
        return source

    def random(self) -> float:
        """Uniform float in [0, 1)."""
        return float(self._gen.random())

    def uniform(self, low: float, high: float) -> float:
        return float(self._gen.uniform(low, high))

    def uniforms(self, shape) -> np.ndarray:
        """A block of [0, 1) draws for vectorised per-district terms."""
        return self._gen.random(shape)

    def chance(self, probability: float) -> bool:
        return self.random() < probability

    def pick(self, options: Sequence[T]) -> T:
        if not options:
            raise ValueError("Cannot pick from an empty sequence")
        return options[int(self._gen.integers(len(options)))]

    def token(self, length: int = 8) -> str:
        """Random lowercase hex identifier (arc ids)."""
        raw = self._gen.bytes((length + 1) // 2)
        return raw.hex()[:length]

    def capture(self) -> Dict[str, Any]:
        """JSON-safe snapshot of the bit generator state."""
        return _encode(self._gen.bit_generator.state)

    def restore(self, snapshot: Dict[str, Any]):
        state = _decode(snapshot)
        name = state.get("bit_generator", "PCG64")
        if name != type(self._gen.bit_generator).__name__:
            self._gen = np.random.Generator(getattr(np.random, name)())
        self._gen.bit_generator.state = state
