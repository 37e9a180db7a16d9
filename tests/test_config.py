import logging

from citysim.engine.mechanics.arcs import ArcTuning
from citysim.shared.config import SimulationConfig


def test_defaults_without_file(tmp_path):
    config = SimulationConfig(tmp_path)

    assert config.rng.seed is None
    assert config.drift.economy_feedback is True
    assert config.ledger_dir == tmp_path / "ledger"
    assert config.save_dir == tmp_path / "user_data" / "saves"


def test_reads_simulation_toml(tmp_path):
    (tmp_path / "simulation.toml").write_text(
        "[rng]\nseed = 17\n\n"
        "[drift]\ncrowd_intensity = 9.0\nsports_override = \"none\"\n\n"
        "[drift.district_bias]\nFruitvale = 1\n\n"
        "[ledger]\ndirectory = \"sheets\"\n\n"
        "[tuning.arcs]\nactive_cap = 12\n",
        encoding="utf-8",
    )

    config = SimulationConfig(tmp_path)

    assert config.rng.seed == 17
    assert config.drift.crowd_intensity == 3.0
    assert config.drift.sports_override is None
    assert config.drift.district_bias == {"Fruitvale": 1.0}
    assert config.ledger_dir == tmp_path / "sheets"
    assert config.tuning_for("arcs", ArcTuning()).active_cap == 12


def test_malformed_file_falls_back_to_defaults(tmp_path, caplog):
    (tmp_path / "simulation.toml").write_text("[rng\nseed = ", encoding="utf-8")

    with caplog.at_level(logging.WARNING):
        config = SimulationConfig(tmp_path)

    assert config.rng.seed is None
    assert "Failed to parse" in caplog.text


def test_unknown_tuning_keys_are_ignored(tmp_path, caplog):
    config = SimulationConfig(tmp_path)
    config.apply({"tuning": {"arcs": {"active_cap": 4, "not_a_knob": 1}}})

    with caplog.at_level(logging.WARNING):
        tuning = config.tuning_for("arcs", ArcTuning())

    assert tuning.active_cap == 4
    assert "not_a_knob" in caplog.text
