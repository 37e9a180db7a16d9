from pathlib import Path
from typing import Dict, List

import pytest

from citysim.engine.random_source import RandomSource
from citysim.shared.config import SimulationConfig
from citysim.shared.environment import CityEnvironment


class ScriptedRandom:
    """
    Stand-in for RandomSource in vote tests: records every probability it is
    asked about and answers from a fixed script.
    """

    def __init__(self, answers: List[bool]):
        self.answers = list(answers)
        self.asked: List[float] = []

    def chance(self, probability: float) -> bool:
        self.asked.append(probability)
        return self.answers.pop(0) if self.answers else False


def write_ledger(directory: Path, name: str, rows: List[Dict[str, object]]):
    """Writes a TSV ledger by hand, the way an operator's sheet export looks."""
    directory.mkdir(parents=True, exist_ok=True)
    columns = list(rows[0])
    lines = ["\t".join(columns)]
    for row in rows:
        lines.append("\t".join(str(row.get(c, "")) for c in columns))
    (directory / f"{name}.tsv").write_text("\n".join(lines) + "\n", encoding="utf-8")


@pytest.fixture
def rng() -> RandomSource:
    return RandomSource.resolve(seed=1234)


@pytest.fixture
def env() -> CityEnvironment:
    return CityEnvironment(season="spring", month=4)


@pytest.fixture
def config(tmp_path) -> SimulationConfig:
    cfg = SimulationConfig(tmp_path)
    cfg.apply({"rng": {"seed": 42}})
    return cfg


def seed_city(root: Path) -> Path:
    """A small but complete city: population, districts, council and one initiative."""
    write_ledger(root, "population", [
        {"totalPopulation": 400000, "illnessRate": 0.05, "employmentRate": 0.91, "migration": 1200, "economy": "stable"},
    ])
    write_ledger(root, "district_map", [
        {"Neighborhood": name, "CrimeIndex": crime, "Sentiment": 0.1, "RetailVitality": 1.0,
         "EventAttractiveness": 1.0, "MigrationFlow": 0}
        for name, crime in (("Downtown", 1.1), ("Fruitvale", 1.3), ("Temescal", 0.7), ("Jack London", 1.0))
    ])
    roster = [{"OfficeId": "MAYOR-01", "Title": "Mayor", "Holder": "Avery Chen", "Status": "active",
               "Faction": "OPP", "VotingPower": "no"}]
    for i, faction in enumerate(("OPP", "OPP", "OPP", "OPP", "CRC", "CRC", "CRC", "IND", "IND"), start=1):
        roster.append({"OfficeId": f"COUNCIL-{i:02d}", "Title": "Council Member", "Holder": f"Member {i}",
                       "Status": "active", "Faction": faction, "VotingPower": "yes"})
    write_ledger(root, "council_roster", roster)
    write_ledger(root, "initiative_tracker", [
        {"InitiativeID": "INIT-001", "Name": "Transit Hub Expansion", "Type": "vote", "Status": "pending-vote",
         "Budget": "$4M", "VoteRequirement": "5-4", "VoteCycle": 1, "Projection": "likely pass",
         "LeadFaction": "OPP", "OppositionFaction": "CRC", "SwingVoter": "Member 8",
         "SwingVoter2": "Member 9", "SwingVoter2Lean": "lean-yes", "Outcome": "", "Consequences": "",
         "Notes": "", "LastUpdated": "", "AffectedNeighborhoods": "Downtown,Jack London"},
    ])
    return root


@pytest.fixture
def city_ledgers(config) -> Path:
    return seed_city(config.ledger_dir)
