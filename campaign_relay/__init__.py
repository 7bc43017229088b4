"""
Campaign Relay.

Streaming field-extraction relay for conversational campaign intake: relays
model output to the client while lifting ``[FIELD:name:value]`` markers out
of the stream into a durable, keyed campaign record.
"""

__version__ = "0.1.0"
