"""TutorLink messaging backend.

Conversation and message persistence plus the real-time presence, typing,
delivery and read-receipt protocol used by the TutorLink tutoring
marketplace.
"""

__version__ = "0.1.0"
