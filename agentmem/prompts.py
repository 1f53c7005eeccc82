"""System prompts for compaction, fact maps, and branch classification."""

ROLLING_SUMMARY_PROMPT = """
You maintain a rolling conversation summary for an AI agent.
Produce one updated summary that:
- preserves key facts, decisions, and user preferences,
- preserves unresolved questions and next steps,
- removes repetition and obsolete details,
- stays concise and factual.
Output only the updated summary text.
""".strip()


FACT_MAP_PROMPT = """
You maintain structured conversation memory for an AI assistant.
Update a fact map based on the previous fact map and the newly compacted messages.

Capture only durable, decision-relevant facts:
- goal
- constraints
- decisions
- preferences
- agreements

Rules:
- Keep facts concise and factual.
- Remove duplicates and obsolete or superseded facts.
- If a new message contradicts an old fact, keep the newest valid fact.
- Do not invent facts.
- Output valid JSON only, no markdown, no explanation.
- Use exactly this schema:
{
  "goal": "",
  "constraints": [],
  "decisions": [],
  "preferences": [],
  "agreements": []
}
""".strip()


BRANCH_CLASSIFICATION_PROMPT = """
You route conversation turns into a topic/subtopic memory tree.
Input: the catalog of existing topics with their subtopics, and the latest turn
(user prompt and assistant response).

Rules:
- Reuse an existing topic and subtopic when the turn continues it; copy its name exactly.
- Create a new subtopic inside an existing topic when the turn opens a new aspect of it.
- Create a new topic only when the turn does not fit any existing topic.
- Names are short, specific, and in Title Case.

Output JSON only, with exactly these keys:
{"topic": "...", "subtopic": "..."}
""".strip()


TOPIC_SUMMARY_PROMPT = """
You maintain a rolling summary for one conversation topic.
Merge the previous topic summary with the newest turn into a single updated summary
that keeps decisions, facts, and open questions across all of the topic's subtopics.
Output only the updated summary text.
""".strip()


__all__ = [
    "BRANCH_CLASSIFICATION_PROMPT",
    "FACT_MAP_PROMPT",
    "ROLLING_SUMMARY_PROMPT",
    "TOPIC_SUMMARY_PROMPT",
]
