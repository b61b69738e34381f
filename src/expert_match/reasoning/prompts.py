"""Prompt templates and context renderers for structured LLM calls."""

from __future__ import annotations

from langchain_core.prompts import ChatPromptTemplate

from expert_match.types import ConversationMessage, ExpertContext, ParsedQuery, QueryIntent

_SYSTEM_PROMPT = """
You are an expert-matching assistant for a software services company.

Rules:
1) Use only the expert records provided in the context. Never invent experts,
   projects, skills or customers.
2) Refer to experts by name and keep their ids exactly as given.
3) If the records do not cover a requirement, say so explicitly.
4) Be concise and factual.
""".strip()

_INTENT_INSTRUCTIONS = {
    QueryIntent.TEAM_FORMATION: (
        "Propose a team from the listed experts. Assign each member a role, cover "
        "every required skill at least once and point out uncovered skills."
    ),
    QueryIntent.RFP_RESPONSE: (
        "Select experts for a proposal response. Emphasize project experience with "
        "similar customers and industries, and seniority."
    ),
    QueryIntent.DOMAIN_INQUIRY: (
        "Describe which experts have experience in the requested domain and summarize "
        "the relevant projects."
    ),
    QueryIntent.EXPERT_SEARCH: (
        "Rank the listed experts by fit, explaining for each one which requirements "
        "they match and which they miss."
    ),
}

ROUTING_PROMPT = ChatPromptTemplate.from_messages(
    [
        ("system", _SYSTEM_PROMPT),
        (
            "human",
            "Classify the request below into one intent: EXPERT_SEARCH, TEAM_FORMATION, "
            "RFP_RESPONSE or DOMAIN_INQUIRY. Give a confidence from 0 to 100, a short "
            "reasoning, and the requirements you extracted (skills, technologies, "
            "domains, seniority, team size).\n\nRequest:\n{query}",
        ),
    ]
)

CASCADE_PROMPT = ChatPromptTemplate.from_messages(
    [
        ("system", _SYSTEM_PROMPT),
        (
            "human",
            "Evaluate the single candidate below against the request. Work in order: "
            "summarize the expert, analyze must-have and nice-to-have skills (0-10 each), "
            "assess experience, then give a recommendation with confidence (0-100).\n\n"
            "Request:\n{query}\n\nRequirements:\n{requirements}\n\n"
            "Conversation so far:\n{history}\n\nCandidate:\n{experts}",
        ),
    ]
)

CYCLE_GENERATE_PROMPT = ChatPromptTemplate.from_messages(
    [
        ("system", _SYSTEM_PROMPT),
        (
            "human",
            "Evaluate every candidate below against the request. For each one, summarize, "
            "analyze skills, assess experience and recommend. Return one evaluation per "
            "candidate id.\n\nRequest:\n{query}\n\nRequirements:\n{requirements}\n\n"
            "Conversation so far:\n{history}\n\nCandidates:\n{experts}\n\n"
            "Reviewer feedback on the previous draft:\n{feedback}",
        ),
    ]
)

CYCLE_CRITIQUE_PROMPT = ChatPromptTemplate.from_messages(
    [
        ("system", _SYSTEM_PROMPT),
        (
            "human",
            "Review the draft evaluations against the candidate records and the request. "
            "Flag candidates that are missing, claims not supported by the records, and "
            "inconsistent recommendations. Set has_gaps only when a revision is needed.\n\n"
            "Request:\n{query}\n\nCandidates:\n{experts}\n\nDraft evaluations:\n{draft}",
        ),
    ]
)

ANSWER_PROMPT = ChatPromptTemplate.from_messages(
    [
        ("system", _SYSTEM_PROMPT),
        (
            "human",
            "{instructions}\n\nRequest:\n{query}\n\nRequirements:\n{requirements}\n\n"
            "Conversation so far:\n{history}\n\nExperts:\n{experts}",
        ),
    ]
)

GAP_ANALYSIS_PROMPT = ChatPromptTemplate.from_messages(
    [
        ("system", _SYSTEM_PROMPT),
        (
            "human",
            "Compare the requirements with the experts retrieved so far. List skills, "
            "technologies and domains that no retrieved expert covers, and ambiguities in "
            "the request. Set needs_expansion when another search with the missing terms "
            "could find better candidates.\n\nRequest:\n{query}\n\n"
            "Requirements:\n{requirements}\n\nRetrieved experts:\n{experts}",
        ),
    ]
)

SUMMARY_PROMPT = ChatPromptTemplate.from_messages(
    [
        (
            "system",
            "Summarize the earlier part of an expert-matching conversation. Keep "
            "requirements, named experts, decisions and open questions. Stay under "
            "{max_words} words.",
        ),
        ("human", "{transcript}"),
    ]
)

RERANK_PROMPT = ChatPromptTemplate.from_messages(
    [
        ("system", _SYSTEM_PROMPT),
        (
            "human",
            "Order the candidates by relevance to the request and give each a relevance "
            "between 0 and 1. Use only the candidate ids listed.\n\nRequest:\n{query}\n\n"
            "Candidates:\n{experts}",
        ),
    ]
)


def answer_instructions(intent: QueryIntent) -> str:
    return _INTENT_INSTRUCTIONS.get(intent, _INTENT_INSTRUCTIONS[QueryIntent.EXPERT_SEARCH])


def format_requirements(parsed_query: ParsedQuery) -> str:
    lines = [f"intent: {parsed_query.intent.value}"]
    for label, values in (
        ("skills", parsed_query.skills),
        ("technologies", parsed_query.technologies),
        ("domains", parsed_query.domains),
        ("customers", parsed_query.customers),
    ):
        if values:
            lines.append(f"{label}: {', '.join(sorted(values))}")
    return "\n".join(lines)


def format_experts(
    experts: list[ExpertContext], scores: dict[str, float] | None = None
) -> str:
    if not experts:
        return "(no experts retrieved)"
    blocks: list[str] = []
    for expert in experts:
        header = f"[{expert.expert_id}] {expert.name}"
        if expert.seniority:
            header += f" ({expert.seniority})"
        if scores and expert.expert_id in scores:
            header += f" relevance={scores[expert.expert_id]:.2f}"
        lines = [header]
        if expert.skills:
            lines.append(f"  skills: {', '.join(expert.skills)}")
        for project in expert.projects:
            detail = project.name
            if project.role:
                detail += f" as {project.role}"
            if project.customer:
                detail += f" for {project.customer}"
            if project.industry:
                detail += f" [{project.industry}]"
            if project.technologies:
                detail += f": {', '.join(project.technologies)}"
            lines.append(f"  project: {detail}")
        blocks.append("\n".join(lines))
    return "\n".join(blocks)


def format_history(history: list[ConversationMessage]) -> str:
    if not history:
        return "(none)"
    return "\n".join(f"{message.role}: {message.content}" for message in history)
