from pathlib import Path

import orjson
import polars as pl
import pytest

from conftest import write_ledger

from citysim.server.io.ledger_store import LedgerStore
from citysim.shared.errors import LedgerSchemaError
from citysim.shared.records import LEDGER_SCHEMA_VERSION, Arc, frame_to_records, records_to_frame


def test_missing_ledger_reads_as_empty(config):
    store = LedgerStore(config)

    assert store.read_all("arc_ledger").is_empty()
    assert store.load_all() == {}


def test_blank_cells_take_field_defaults(config):
    write_ledger(config.ledger_dir, "arc_ledger", [
        {"ArcId": "a1", "Type": "crisis", "Phase": "rising", "Tension": "", "Age": "3", "_comment": "check"},
    ])

    df = LedgerStore(config).read_all("arc_ledger")
    arc = frame_to_records(Arc, df)[0]

    assert "_comment" not in df.columns
    assert arc.tension == 0.0
    assert arc.age == 3
    assert arc.district == ""
    assert arc.cycle_resolved is None


def test_v1_ledgers_are_migrated(config):
    write_ledger(config.ledger_dir, "arc_ledger", [
        {"ArcID": "old1", "Type": "strain", "Phase": "decline", "Tension": "2.5"},
    ])
    write_ledger(config.ledger_dir, "initiative_tracker", [
        {"InitiativeID": "I1", "Name": "Parks Levy", "SwingVoter": "Member 8"},
    ])
    store = LedgerStore(config)

    tables = store.load_all()

    arc = frame_to_records(Arc, tables["arc_ledger"])[0]
    assert arc.arc_id == "old1"
    assert arc.phase == "falling"
    assert "SwingVoter2Lean" in tables["initiative_tracker"].columns
    assert store.schema_version() == LEDGER_SCHEMA_VERSION


def test_newer_schema_is_rejected(config):
    config.ledger_dir.mkdir(parents=True, exist_ok=True)
    (config.ledger_dir / "schema.json").write_bytes(orjson.dumps({"version": LEDGER_SCHEMA_VERSION + 1}))

    with pytest.raises(LedgerSchemaError):
        LedgerStore(config).load_all()


def test_write_tables_persists_ledgers_and_cycle(config):
    store = LedgerStore(config)
    arcs = records_to_frame(Arc, [Arc(arc_id="a1", arc_type="festival", tension=3.25, hold=True)])

    store.write_tables({"arc_ledger": arcs, "district_economies": arcs}, cycle=4)

    assert store.path_for("arc_ledger").exists()
    assert not store.path_for("district_economies").exists()
    assert not list(config.ledger_dir.glob("*.tmp"))
    assert store.last_cycle() == 4

    arc = frame_to_records(Arc, store.read_all("arc_ledger"))[0]
    assert (arc.arc_id, arc.tension, arc.hold) == ("a1", 3.25, True)


def test_blank_cells_read_as_empty_strings(config):
    write_ledger(config.ledger_dir, "initiative_tracker", [
        {"InitiativeID": "I1", "Name": "Parks Levy", "SwingVoter": "", "Notes": ""},
    ])

    df = LedgerStore(config).read_raw("initiative_tracker")

    assert df.null_count().sum_horizontal().item() == 0
    assert df.row(0, named=True)["SwingVoter"] == ""


def _arcs(tension: float):
    return records_to_frame(Arc, [Arc(arc_id="a1", arc_type="festival", tension=tension)])


def test_unwritable_ledger_leaves_previous_cycle_on_disk(config):
    store = LedgerStore(config)
    store.write_tables({"arc_ledger": _arcs(2.0)}, cycle=1)
    before = store.path_for("arc_ledger").read_bytes()
    store.path_for("population").mkdir()

    with pytest.raises(OSError):
        store.write_tables({"arc_ledger": _arcs(7.5), "population": pl.DataFrame({"totalPopulation": ["1"]})}, cycle=2)

    assert store.path_for("arc_ledger").read_bytes() == before
    assert store.last_cycle() == 1
    assert not list(config.ledger_dir.glob("*.tmp"))


def test_failed_swap_restores_ledgers_already_replaced(config, monkeypatch):
    store = LedgerStore(config)
    store.write_tables({"arc_ledger": _arcs(2.0)}, cycle=1)
    before = store.path_for("arc_ledger").read_bytes()

    real_replace = Path.replace

    def flaky_replace(self, target):
        if Path(target).name == "population.tsv":
            raise PermissionError("sheet locked")
        return real_replace(self, target)

    monkeypatch.setattr(Path, "replace", flaky_replace)
    with pytest.raises(OSError):
        store.write_tables({"arc_ledger": _arcs(7.5), "population": pl.DataFrame({"totalPopulation": ["1"]})}, cycle=2)
    monkeypatch.undo()

    assert store.path_for("arc_ledger").read_bytes() == before
    assert not store.path_for("population").exists()
    assert store.last_cycle() == 1
    assert not list(config.ledger_dir.glob("*.tmp")) + list(config.ledger_dir.glob("*.bak"))
