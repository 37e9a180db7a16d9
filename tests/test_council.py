import pytest

from conftest import ScriptedRandom

from citysim.engine.mechanics.council import (
    CouncilState, FactionCount, advance_status, apply_initiative_ripples, assemble_council,
    demographic_influence, external_probability, lean_probability, parse_requirement, projection_probability,
    resolve_council_vote, resolve_initiative, start_initiative_ripple,
)
from citysim.shared.environment import CityEnvironment
from citysim.shared.records import CouncilMember, DistrictDemographics, Initiative


def _member(i, faction, status="active", holder=None, title="Council Member") -> CouncilMember:
    return CouncilMember(office_id=f"COUNCIL-{i:02d}", title=title, holder=holder or f"Member {i}",
                         status=status, faction=faction, voting_power="yes")


def _council(opp=4, crc=3, independents=("Swing",)) -> CouncilState:
    return CouncilState(
        filled_seats=opp + crc + len(independents),
        available_votes=opp + crc + len(independents),
        factions={
            "OPP": FactionCount(opp, opp),
            "CRC": FactionCount(crc, crc),
            "IND": FactionCount(len(independents), len(independents), list(independents)),
        },
        independents=list(independents),
    )


def _initiative(**kwargs) -> Initiative:
    defaults = dict(initiative_id="INIT-1", name="Budget Amendment", kind="vote", status="pending-vote",
                    vote_requirement="5-4", vote_cycle=3, projection="likely passes",
                    lead_faction="OPP", opposition_faction="CRC", swing_voter="Swing")
    defaults.update(kwargs)
    return Initiative(**defaults)


@pytest.mark.parametrize("answer, status, count", [(True, "passed", "5-3"), (False, "failed", "4-4")])
def test_swing_voter_decides_close_vote(answer, status, count):
    rng = ScriptedRandom([answer])

    result = resolve_council_vote(_initiative(), _council(), 0.0, rng)

    assert rng.asked == [pytest.approx(0.70)]
    assert result.status == status
    assert result.vote_count == count
    assert result.swing_votes[0].name == "Swing"


def test_vote_delayed_without_quorum():
    council = _council(opp=2, crc=1, independents=())

    result = resolve_council_vote(_initiative(), council, 0.0, ScriptedRandom([]))

    assert result.status == "delayed"
    assert result.outcome == "DELAYED"
    assert "3 votes available" in result.notes


def test_never_more_votes_than_seats():
    roster = [_member(i, f) for i, f in enumerate(("OPP", "OPP", "OPP", "CRC", "CRC", "IND", "IND", "IND", "IND",
                                                   "IND", "OPP"), start=1)]
    council = assemble_council(roster)

    result = resolve_council_vote(_initiative(swing_voter="Member 6"), council, 0.2, ScriptedRandom([True] * 20))

    assert council.filled_seats == 9
    assert result.yes + result.no <= 9


def test_assemble_council():
    roster = [
        CouncilMember(office_id="MAYOR-01", title="Mayor", holder="Avery Chen", faction="OPP"),
        CouncilMember(office_id="CLERK-01", title="City Clerk", holder="Sam Ortiz"),
        _member(1, "OPP", title="Council President"),
        _member(2, "CRC", status="hospitalized"),
        _member(3, "IND"),
        _member(4, "IND", holder="TBD"),
    ]

    council = assemble_council(roster)

    assert council.mayor.holder == "Avery Chen"
    assert council.president == "Member 1"
    assert council.filled_seats == 3
    assert council.vacant_seats == 6
    assert council.available_votes == 2
    assert council.independents == ["Member 3"]
    assert [(u.name, u.reason) for u in council.unavailable] == [("Member 2", "hospitalized")]


def test_unavailable_swing_voter_is_skipped():
    council = _council(independents=("Swing", "Other"))
    council.independents = ["Other"]

    rng = ScriptedRandom([True])
    result = resolve_council_vote(_initiative(), council, 0.0, rng)

    # Only the unnamed independent votes, from sentiment.
    assert rng.asked == [pytest.approx(0.5)]
    assert [sv.source for sv in result.swing_votes] == ["sentiment"]


def test_secondary_swing_uses_lean():
    council = _council(independents=("Swing", "Second"))
    rng = ScriptedRandom([True, False])

    resolve_council_vote(_initiative(swing_voter_2="Second", swing_voter_2_lean="lean-no"), council, 0.0, rng)

    assert rng.asked == [pytest.approx(0.70), pytest.approx(0.35)]


def test_probability_tiers():
    assert projection_probability("Lean pass", 0.0, False) == pytest.approx(0.60)
    assert projection_probability("likely fail", 0.0, True) == pytest.approx(0.25)
    assert projection_probability("Needs swing votes", 0.0, False) == pytest.approx(0.45)
    assert projection_probability("likely pass", 1.0, False) == pytest.approx(0.80)
    assert lean_probability("likely-yes", 0.0) == pytest.approx(0.75)
    assert lean_probability("", 1.0) == 0.5
    assert external_probability("likely approved", 1.0) == pytest.approx(0.75)
    assert external_probability("unlikely", -1.0) == pytest.approx(0.25)
    assert parse_requirement("6-3") == 6
    assert parse_requirement("") == 5


def test_grant_and_visioning_paths():
    grant = resolve_initiative(_initiative(kind="grant", projection="competitive"), _council(), 0.0,
                               ScriptedRandom([True]), {})
    visioning = resolve_initiative(_initiative(kind="visioning"), _council(), 0.0, ScriptedRandom([]), {})

    assert (grant.status, grant.outcome) == ("passed", "APPROVED")
    assert (visioning.status, visioning.outcome) == ("visioning-complete", "COMPLETED")


def test_demographic_influence():
    demographics = {
        "Fruitvale": DistrictDemographics(district="Fruitvale", students=100, adults=600, seniors=300,
                                          unemployed=150, sick=20),
    }

    assert demographic_influence("Housing Stabilization Fund", ["Fruitvale"], demographics) == pytest.approx(0.15)
    assert demographic_influence("Housing Stabilization Fund", [], demographics) == 0.0
    assert demographic_influence("Housing Stabilization Fund", ["Fruitvale"], {}) == 0.0


def test_status_auto_advance():
    initiative = _initiative(status="proposed", vote_cycle=10)

    assert not advance_status(initiative, "proposed", 5)
    assert advance_status(initiative, "proposed", 7)
    assert initiative.status == "active"
    assert advance_status(initiative, "active", 9)
    assert initiative.status == "pending-vote"


def test_initiative_ripple_lifecycle():
    env = CityEnvironment()

    ripple = start_initiative_ripple("Transit Hub Expansion", True, ["Downtown"], 4, env)

    assert ripple.ripple_type == "transit"
    assert ripple.end_cycle == 14
    assert env.sentiment == pytest.approx(0.025)

    active, expired = apply_initiative_ripples([ripple], env, 5)
    assert active == [ripple]
    assert expired == 0
    assert env.retail > 1.0

    active, expired = apply_initiative_ripples([ripple], env, 14)
    assert active == []
    assert expired == 1
    assert ripple.status == "expired"


def test_members_outside_the_known_factions_hold_no_vote():
    roster = [_member(i, f) for i, f in enumerate(("OPP", "OPP", "OPP", "CRC", "CRC", "", "GRN"), start=1)]

    council = assemble_council(roster)

    assert council.filled_seats == 7
    assert council.available_votes == 5
    assert "GRN" not in council.factions
    assert council.independents == []

    result = resolve_council_vote(_initiative(vote_requirement="6-3"), council, 0.0, ScriptedRandom([]))
    assert result.status == "delayed"
