"""
Campaign state management.

Components:
- campaign_state: the closed, partially-filled campaign record
- session_store: keyed store of records with idle expiry
"""

from .campaign_state import (
    CAMPAIGN_FIELDS,
    FIELD_DESCRIPTIONS,
    CampaignState,
    FieldValue,
)
from .session_store import (
    InMemorySessionStore,
    SessionStore,
    session_store_from_settings,
)

__all__ = [
    "CAMPAIGN_FIELDS",
    "FIELD_DESCRIPTIONS",
    "CampaignState",
    "FieldValue",
    "InMemorySessionStore",
    "SessionStore",
    "session_store_from_settings",
]
