"""System prompt and per-turn context for the campaign intake assistant.

The prompt teaches the model the marker protocol that the scanner consumes.
"""

import json
from typing import Sequence

from ..llm.completion import ChatMessage
from ..state.campaign_state import FIELD_DESCRIPTIONS, LIST_FIELDS, CampaignState

STILL_NEEDED_LABEL = "Still needed: "

MARKER_EXAMPLES = {
    "audience": "Small business owners in the tech sector",
    "background": "We are launching a new AI feature",
    "offer": "50% off for the first 3 months",
    "examples": "Like the recent Slack campaign",
    "description": "A colder outreach campaign for our new SaaS product",
    "companySize": "10-50 employees",
    "industry": "SaaS, Technology",
    "targetRoles": "CTO, VP of Engineering",
    "valueProp": "Premium coffee subscription delivered fresh weekly",
    "painPoints": '["Lack of time to visit coffee shops", "Inconsistent coffee quality"]',
    "cta": "Start your free trial today",
    "constraints": "US only, minimum 3-month subscription",
    "communicationTone": "casual",
    "anythingElse": "Avoid using buzzwords",
}

CAMPAIGN_SYSTEM_PROMPT = """You are an expert digital marketing assistant helping a user define a new marketing campaign.
Your goal is to gather specific information through natural conversation to build a campaign profile.

You need to collect the following {count} pieces of information:
{field_list}

**Instructions:**
- Engage in natural conversation to extract this information
- Ask clarifying questions when needed (group related questions efficiently, but ensure clarity)
- Be concise and professional
- Do not hallucinate or assume information not provided

**IMPORTANT - Marking extracted information:**
When you have HIGH CONFIDENCE that the user has provided a specific piece of information, mark it in your response using this exact format:

[FIELD:field_name:value]

Examples:
{examples}

List-valued fields take a JSON array of strings as their value.
Only emit a FIELD marker when you are certain about the value. Never guess.
After marking a field, continue your conversational response naturally."""


def build_system_prompt(schema: Sequence[str]) -> str:
    """Render the system prompt for a field schema."""
    field_list = []
    for index, name in enumerate(schema, start=1):
        description = FIELD_DESCRIPTIONS.get(name, "")
        if name in LIST_FIELDS and "array" not in description:
            description += " (as an array)"
        field_list.append(f"{index}. **{name}**: {description}".rstrip())
    examples = [
        f"[FIELD:{name}:{MARKER_EXAMPLES[name]}]"
        for name in schema
        if name in MARKER_EXAMPLES
    ]
    return CAMPAIGN_SYSTEM_PROMPT.format(
        count=len(schema),
        field_list="\n".join(field_list),
        examples="\n".join(examples) or "[FIELD:field_name:value]",
    )


def build_context(state: CampaignState, missing: Sequence[str]) -> str:
    """What is already known, or an empty string before the first field lands."""
    if len(missing) >= len(state.schema):
        return ""
    return (
        "\n\nCurrent campaign information collected so far:\n"
        f"{json.dumps(state.to_dict(), indent=2)}\n\n"
        f"{STILL_NEEDED_LABEL}{', '.join(missing)}"
    )


def build_conversation(
    state: CampaignState,
    missing: Sequence[str],
    message: str,
) -> list[ChatMessage]:
    """Messages for one turn: system prompt with context, then the user's message."""
    return [
        ChatMessage(role="system", content=build_system_prompt(state.schema) + build_context(state, missing)),
        ChatMessage(role="user", content=message),
    ]
