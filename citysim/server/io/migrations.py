import logging
from typing import Callable, Dict, List, Tuple

import polars as pl

from citysim.shared.errors import LedgerSchemaError
from citysim.shared.records import LEDGER_SCHEMA_VERSION

logger = logging.getLogger(__name__)

Tables = Dict[str, pl.DataFrame]


def _v1_to_v2(tables: Tables) -> Tables:
    """Arc ledger: 'ArcID' header becomes 'ArcId'; legacy phase 'decline' becomes 'falling'."""
    df = tables.get("arc_ledger")
    if df is None or df.width == 0:
        return tables

    if "ArcID" in df.columns:
        if "ArcId" in df.columns:
            # Both headers present: keep the populated one per row.
            df = df.with_columns(
                pl.when(pl.col("ArcId").is_null() | (pl.col("ArcId") == ""))
                .then(pl.col("ArcID"))
                .otherwise(pl.col("ArcId"))
                .alias("ArcId")
            ).drop("ArcID")
        else:
            df = df.rename({"ArcID": "ArcId"})

    if "Phase" in df.columns:
        df = df.with_columns(
            pl.when(pl.col("Phase") == "decline")
            .then(pl.lit("falling"))
            .otherwise(pl.col("Phase"))
            .alias("Phase")
        )

    tables["arc_ledger"] = df
    return tables


def _v2_to_v3(tables: Tables) -> Tables:
    """Initiative tracker gains the second swing-voter slot."""
    df = tables.get("initiative_tracker")
    if df is None or df.width == 0:
        return tables

    missing = [c for c in ("SwingVoter2", "SwingVoter2Lean") if c not in df.columns]
    if missing:
        df = df.with_columns([pl.lit("", dtype=pl.String).alias(c) for c in missing])
    tables["initiative_tracker"] = df
    return tables


# (from_version, step). Each step upgrades from_version -> from_version + 1.
MIGRATIONS: List[Tuple[int, Callable[[Tables], Tables]]] = [
    (1, _v1_to_v2),
    (2, _v2_to_v3),
]


def migrate(tables: Tables, version: int) -> Tables:
    """
    Upgrades raw ledger tables written at `version` to LEDGER_SCHEMA_VERSION.
    Raises LedgerSchemaError for ledgers written by a newer build.
    """
    if version > LEDGER_SCHEMA_VERSION:
        raise LedgerSchemaError(
            f"Ledger schema v{version} is newer than supported v{LEDGER_SCHEMA_VERSION}"
        )

    for from_version, step in MIGRATIONS:
        if from_version >= version:
            logger.info("[Migrations] Upgrading ledgers v%d -> v%d", from_version, from_version + 1)
            tables = step(tables)
    return tables
