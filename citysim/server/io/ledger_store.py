import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import orjson
import polars as pl

from citysim.server.io.migrations import migrate
from citysim.shared.config import SimulationConfig
from citysim.shared.records import LEDGER_RECORDS, LEDGER_SCHEMA_VERSION, normalize_frame

logger = logging.getLogger(__name__)


class LedgerStore:
    """
    The tabular ledger collaborator: one TSV file per ledger in a directory.

    Architecture Note:
        Ledgers are read in bulk at session start and written in bulk after a
        committed cycle; nothing is written mid-cycle. Every cell is read as a
        string and typed through the record classes, so a hand-edited sheet
        with a missing column or a blank cell degrades to field defaults
        instead of a parse failure.
    """

    SCHEMA_FILE = "schema.json"

    def __init__(self, config: SimulationConfig, directory: Optional[Path] = None):
        self.root = Path(directory) if directory is not None else config.ledger_dir
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, name: str) -> Path:
        return self.root / f"{name}.tsv"

    # --- Schema Version ---

    def _read_schema(self) -> Dict[str, Any]:
        path = self.root / self.SCHEMA_FILE
        if not path.exists():
            return {}
        with open(path, "rb") as f:
            return orjson.loads(f.read())

    def schema_version(self) -> int:
        """Version recorded in schema.json; ledgers without one are treated as v1."""
        return int(self._read_schema().get("version", 1))

    def last_cycle(self) -> int:
        """The last cycle written back to these ledgers (0 for a fresh city)."""
        return int(self._read_schema().get("cycle", 0))

    def _write_schema_version(self, cycle: Optional[int] = None):
        if cycle is None:
            cycle = self.last_cycle()
        payload = orjson.dumps({"version": LEDGER_SCHEMA_VERSION, "cycle": cycle}, option=orjson.OPT_INDENT_2)
        self._atomic_write_bytes(self.root / self.SCHEMA_FILE, payload)

    # --- Reading ---

    def read_raw(self, name: str) -> pl.DataFrame:
        """Reads a ledger with every column as a string. Missing file -> empty frame."""
        path = self.path_for(name)
        if not path.exists():
            logger.info("[LedgerStore] Ledger '%s' not found at %s; treating as empty.", name, path)
            return pl.DataFrame()

        df = pl.read_csv(path, separator="\t", infer_schema_length=0)
        # Blank cells read as null; the records treat null and "" alike.
        df = df.fill_null("")
        # Columns prefixed with '_' are sheet annotations.
        return df.select([c for c in df.columns if not c.startswith("_")])

    def read_all(self, name: str) -> pl.DataFrame:
        """Reads one ledger, typed through its record class when one is registered."""
        df = self.read_raw(name)
        record_cls = LEDGER_RECORDS.get(name)
        if record_cls is None or df.width == 0:
            return df
        return normalize_frame(record_cls, df)

    def load_all(self) -> Dict[str, pl.DataFrame]:
        """
        Reads every known ledger, applies pending schema migrations and
        types the rows. Ledgers that do not exist are simply absent.
        """
        version = self.schema_version()
        raw = {name: self.read_raw(name) for name in LEDGER_RECORDS}
        raw = migrate(raw, version)

        tables = {}
        for name, df in raw.items():
            if df.width == 0:
                continue
            tables[name] = normalize_frame(LEDGER_RECORDS[name], df)
            logger.debug("[LedgerStore] Loaded '%s' (%d rows)", name, tables[name].height)

        if version < LEDGER_SCHEMA_VERSION:
            self._write_schema_version()
        return tables

    # --- Writing ---

    def write_all(self, name: str, df: pl.DataFrame):
        """Replaces a single ledger file atomically (temp file, then rename)."""
        self._commit(self._stage({name: df}))

    def write_tables(self, tables: Dict[str, pl.DataFrame], cycle: Optional[int] = None):
        """
        Writes every ledger table present in `tables`; derived tables are skipped.

        All ledgers are staged to temp files before any of them is swapped in,
        and schema.json (which records the cycle) is written last, so a fault
        leaves the previous cycle's ledgers on disk.
        """
        ledgers = {name: df for name, df in tables.items() if name in LEDGER_RECORDS}
        self._commit(self._stage(ledgers))
        self._write_schema_version(cycle)
        logger.info("[LedgerStore] Wrote %d ledgers to %s", len(ledgers), self.root)

    def _stage(self, tables: Dict[str, pl.DataFrame]) -> List[Tuple[Path, Path]]:
        staged = []
        try:
            for name, df in tables.items():
                path = self.path_for(name)
                if path.exists() and not path.is_file():
                    raise IsADirectoryError(f"Ledger path is not a file: {path}")
                tmp = path.with_name(path.name + ".tmp")
                staged.append((tmp, path))
                df.write_csv(tmp, separator="\t")
        except Exception:
            self._discard(tmp for tmp, _ in staged)
            raise
        return staged

    def _commit(self, staged: List[Tuple[Path, Path]]):
        """Swaps staged files in; on a failed swap the ledgers already replaced are put back."""
        swapped = []
        try:
            for tmp, path in staged:
                backup = path.with_name(path.name + ".bak") if path.exists() else None
                if backup is not None:
                    path.replace(backup)
                swapped.append((path, backup))
                tmp.replace(path)
        except Exception:
            logger.error("[LedgerStore] Ledger swap failed; restoring previous files.")
            for path, backup in reversed(swapped):
                if backup is not None and backup.exists():
                    backup.replace(path)
                elif backup is None and path.exists():
                    path.unlink()
            self._discard(tmp for tmp, _ in staged)
            raise
        self._discard(backup for _, backup in swapped if backup is not None)

    @staticmethod
    def _discard(paths: Iterable[Path]):
        for path in paths:
            if path.exists():
                path.unlink()

    def _atomic_write_bytes(self, path: Path, payload: bytes):
        tmp = path.with_name(path.name + ".tmp")
        with open(tmp, "wb") as f:
            f.write(payload)
        tmp.replace(path)
