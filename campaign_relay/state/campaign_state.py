"""
Campaign record assembled across conversational turns.

A campaign state is a closed record: its field names are fixed by a schema
and nothing outside the schema is ever written. Each field is either unset
(``None``) or holds a string or a list of strings.
"""

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Union

FieldValue = Union[str, list[str]]

# Order matters: missing fields are always reported in this order.
CAMPAIGN_FIELDS: tuple[str, ...] = (
    "audience",
    "background",
    "offer",
    "examples",
    "description",
    "companySize",
    "industry",
    "targetRoles",
    "valueProp",
    "painPoints",
    "cta",
    "constraints",
    "communicationTone",
    "anythingElse",
)

FIELD_DESCRIPTIONS: dict[str, str] = {
    "audience": "Who is the target audience?",
    "background": "What is the background or context for this campaign?",
    "offer": "What is the specific offer or proposition?",
    "examples": "Are there any examples or references to follow?",
    "description": "A brief description of the campaign.",
    "companySize": "What is the target company size?",
    "industry": "What industry are we targeting?",
    "targetRoles": "What are the target job titles or roles?",
    "valueProp": "What is the unique value being offered?",
    "painPoints": "What problems does this solve for the audience? (as an array)",
    "cta": "What should the audience do? (call-to-action)",
    "constraints": "Any pricing, geography, timing, or other limitations?",
    "communicationTone": "What tone should the campaign use? (professional, casual, humorous, etc.)",
    "anythingElse": "Any other relevant details or specific instructions?",
}

LIST_FIELDS: frozenset[str] = frozenset({"painPoints"})


@dataclass
class CampaignState:
    """Partially-filled campaign record over a fixed schema."""

    schema: tuple[str, ...] = CAMPAIGN_FIELDS
    values: dict[str, Optional[FieldValue]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Normalise to exactly the schema keys, in schema order
        self.values = {name: self.values.get(name) for name in self.schema}

    def apply(self, partial: Mapping[str, Any]) -> dict[str, FieldValue]:
        """
        Merge newly confirmed fields into the record.

        Fields outside the schema and fields whose value is ``None`` are
        ignored. Present fields are overwritten.

        Returns:
            The fields that were actually written
        """
        written: dict[str, FieldValue] = {}
        for name in self.schema:
            value = partial.get(name)
            if value is None:
                continue
            self.values[name] = value
            written[name] = value
        return written

    def is_complete(self) -> bool:
        return all(self.values[name] is not None for name in self.schema)

    def missing_fields(self) -> list[str]:
        return [name for name in self.schema if self.values[name] is None]

    def filled_fields(self) -> dict[str, FieldValue]:
        return {name: value for name, value in self.values.items() if value is not None}

    def to_dict(self) -> dict[str, Optional[FieldValue]]:
        """All schema fields, unset ones as None."""
        return {
            name: list(value) if isinstance(value, list) else value
            for name, value in self.values.items()
        }

    def copy(self) -> "CampaignState":
        return CampaignState(schema=self.schema, values=self.to_dict())
