from expert_match.parsing import VocabularyQueryParser
from expert_match.types import QueryIntent

VOCABULARY = {
    "skills": {"Java", "Architecture"},
    "technologies": {"Java", "Spring Boot", "Kafka", "C#"},
    "domains": {"Banking", "Healthcare"},
    "customers": {"Acme Bank"},
}


def _parser() -> VocabularyQueryParser:
    return VocabularyQueryParser(lambda: VOCABULARY)


def test_extracts_whole_terms_case_insensitively() -> None:
    parsed = _parser().parse("Looking for java and spring boot experts, not JavaScript")

    assert parsed.technologies == frozenset({"Java", "Spring Boot"})
    assert parsed.skills == frozenset()
    assert parsed.intent is QueryIntent.EXPERT_SEARCH


def test_detects_team_and_rfp_intents() -> None:
    assert _parser().parse("Form a team with Kafka and C# skills").intent is QueryIntent.TEAM_FORMATION
    assert _parser().parse("RFP for Acme Bank needs Architecture").intent is QueryIntent.RFP_RESPONSE


def test_domain_only_query_is_domain_inquiry() -> None:
    parsed = _parser().parse("Who has worked in healthcare?")

    assert parsed.domains == frozenset({"Healthcare"})
    assert parsed.intent is QueryIntent.DOMAIN_INQUIRY


def test_query_without_terms_keeps_text() -> None:
    parsed = _parser().parse("  anyone available?  ")

    assert parsed.text == "anyone available?"
    assert parsed.terms() == frozenset()
    assert not parsed.is_empty()
