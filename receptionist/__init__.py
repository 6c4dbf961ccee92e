"""Phone receptionist dialogue engine.

Each inbound telephony webhook is one turn: the persisted CallState is
decoded, the caller's utterance interpreted, the flow router advances the
conversation (booking against the scheduling backend when needed), and the
next prompt is rendered back as speech.
"""

__version__ = "0.1.0"
