# tests/test_results.py
import pytest

from campusvote.exceptions import NotFound
from campusvote.security.token_manager import VoterSession
from campusvote.database.models import utcnow
from campusvote.voting.results import rank_position, tabulate_election


def _ranks(candidates):
    return [(r.id, r.rank, r.is_tied) for r in rank_position(candidates)]


def test_rank_position_orders_by_votes():
    ranked = rank_position([
        {"id": "a", "name": "Ada", "votes": 10},
        {"id": "b", "name": "Ben", "votes": 30},
        {"id": "c", "name": "Cleo", "votes": 20},
    ])
    assert [r.id for r in ranked] == ["b", "c", "a"]
    assert [r.rank for r in ranked] == [1, 2, 3]
    assert not any(r.is_tied for r in ranked)
    assert ranked[0].percentage == pytest.approx(50.0)
    assert sum(r.percentage for r in ranked) == pytest.approx(100.0)


def test_first_place_tie_uses_competition_ranking():
    assert _ranks([
        {"id": "a", "votes": 5},
        {"id": "b", "votes": 5},
        {"id": "c", "votes": 3},
        {"id": "d", "votes": 1},
    ]) == [("a", 1, True), ("b", 1, True), ("c", 3, False), ("d", 4, False)]


def test_tie_below_first_place():
    assert _ranks([
        {"id": "a", "votes": 9},
        {"id": "b", "votes": 4},
        {"id": "c", "votes": 4},
    ]) == [("a", 1, False), ("b", 2, True), ("c", 2, True)]


def test_ties_keep_input_order():
    ranked = rank_position([{"id": x, "votes": 2} for x in ("z", "y", "x")])
    assert [r.id for r in ranked] == ["z", "y", "x"]
    assert {r.rank for r in ranked} == {1}


def test_zero_votes_everyone_tied_with_zero_percentage():
    ranked = rank_position([{"id": "a", "votes": 0}, {"id": "b", "votes": 0}])
    assert [(r.rank, r.is_tied, r.percentage) for r in ranked] == [(1, True, 0.0), (1, True, 0.0)]


def test_single_candidate():
    ranked = rank_position([{"id": "solo", "votes": 7}])
    assert (ranked[0].rank, ranked[0].is_tied, ranked[0].percentage) == (1, False, 100.0)


def test_empty_input():
    assert rank_position([]) == []


def _cast(app, services, seed, voter_id, president, secretary):
    session = VoterSession(voter_id=voter_id, association_id=seed.association_id, issued_at=utcnow())
    with app.app_context():
        services.ballots.cast_ballot(session, seed.election_id, [
            (seed.president_id, president),
            (seed.secretary_id, secretary),
        ])


def test_tabulate_election_counts_and_flags_ties(app, services, seed):
    _cast(app, services, seed, seed.voter_id, seed.ada_id, seed.cleo_id)
    _cast(app, services, seed, seed.second_voter_id, seed.ben_id, seed.cleo_id)

    with app.app_context():
        results = tabulate_election(seed.election_id)
        data = results.to_dict()

    president, secretary = results.positions
    assert president.name == "President"
    assert president.total_votes == 2
    assert president.first_place_tie is True
    assert [c.rank for c in president.candidates] == [1, 1]

    assert secretary.first_place_tie is False
    assert [(c.name, c.votes, c.rank) for c in secretary.candidates] == [("Cleo Uche", 2, 1), ("Dayo Ade", 0, 2)]
    assert data["election"]["id"] == seed.election_id
    assert data["positions"][1]["firstPlaceTie"] is False


def test_tabulate_without_votes(app, seed):
    with app.app_context():
        results = tabulate_election(seed.election_id)
    assert [p.total_votes for p in results.positions] == [0, 0]
    assert all(p.first_place_tie for p in results.positions)


def test_tabulate_unknown_election(app, seed):
    with app.app_context():
        with pytest.raises(NotFound):
            tabulate_election("does-not-exist")
