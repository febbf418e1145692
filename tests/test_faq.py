# tests/test_faq.py
import pytest

from campusvote import db
from campusvote.database.models import Candidate, FrequentlyAskedQuestion
from campusvote.exceptions import NotFound
from campusvote.manifesto.faq import FAQGenerator

QUESTIONS = [
    "What are the plans for student housing?",
    "How will the library change?",
    "What about transport?",
]
HOUSING = "Student housing comes first: a new hostel, fair housing fees and a transport shuttle. " * 15


@pytest.fixture
def faq(services):
    return FAQGenerator(services.qa, questions=QUESTIONS, pause_seconds=0)


@pytest.fixture
def indexed(app, services, seed):
    with app.app_context():
        candidate = db.session.get(Candidate, seed.ada_id)
        candidate.manifesto_text = HOUSING
        db.session.commit()
        services.vector_store.add_manifesto(seed.ada_id, seed.election_id, HOUSING)
    return seed


def _faq_count(app, election_id):
    with app.app_context():
        return db.session.query(FrequentlyAskedQuestion).filter_by(election_id=election_id).count()


def test_generate_stores_answers(app, faq, indexed, llm):
    with app.app_context():
        generated = faq.generate(indexed.election_id)
        rows = faq.list_faqs(indexed.election_id)

        assert generated == len(QUESTIONS)
        assert [r.question for r in rows] == QUESTIONS
        assert rows[0].answer == llm.answer
        assert rows[0].sources[0]["candidateName"] == "Ada Obi"


def test_generate_skips_existing_faq(app, faq, indexed, llm):
    with app.app_context():
        faq.generate(indexed.election_id)
    calls = len(llm.prompts)
    with app.app_context():
        assert faq.generate(indexed.election_id) == 0
    assert len(llm.prompts) == calls


def test_generate_skips_unanswerable_questions(app, faq, seed):
    # No indexed manifestos, so every answer lacks sources
    with app.app_context():
        assert faq.generate(seed.election_id) == 0
    assert _faq_count(app, seed.election_id) == 0


def test_generate_skips_short_answers(app, faq, indexed, llm):
    llm.answer = "Not sure."
    with app.app_context():
        assert faq.generate(indexed.election_id) == 0


def test_regenerate_replaces_entries(app, faq, indexed, llm):
    with app.app_context():
        faq.generate(indexed.election_id)
    llm.answer = "Ada Obi now also promises a night shuttle between the hostels and the main library."
    with app.app_context():
        assert faq.regenerate(indexed.election_id) == len(QUESTIONS)
        answers = {r.answer for r in faq.list_faqs(indexed.election_id)}
    assert answers == {llm.answer}
    assert _faq_count(app, indexed.election_id) == len(QUESTIONS)


def test_unknown_election(app, faq, seed):
    with app.app_context():
        with pytest.raises(NotFound):
            faq.generate("missing")
        with pytest.raises(NotFound):
            faq.regenerate("missing")


def test_generate_for_active_elections(app, faq, indexed):
    with app.app_context():
        counts = faq.generate_for_active_elections()
    assert counts == {indexed.election_id: len(QUESTIONS)}


def test_generate_faq_command(app, services, indexed):
    services.faq.pause_seconds = 0
    runner = app.test_cli_runner()
    result = runner.invoke(args=["generate-faq", "--election", indexed.election_id])
    assert result.exit_code == 0
    assert "Generated 10 FAQ entries" in result.output

    result = runner.invoke(args=["generate-faq", "--election", "missing"])
    assert result.exit_code != 0
