"""
Constants and configuration values for the messaging client.
"""

# Backend tables
MESSAGES_TABLE = "messages"
ATTACHMENTS_TABLE = "attachments"
CONVERSATIONS_TABLE = "conversations"
AUDIT_EVENTS_TABLE = "audit_events"

# Object storage
DEFAULT_ATTACHMENT_BUCKET = "message-attachments"

# Realtime channel settings
REALTIME_HEARTBEAT_SECONDS = 30
MAX_RECONNECT_ATTEMPTS = 5
RECONNECT_DELAY_SECONDS = 3

# Timeout settings
API_TIMEOUT_SECONDS = 30
API_CONNECT_TIMEOUT_SECONDS = 10

# Participant synthesized when the viewer is missing from a roster
FALLBACK_DISPLAY_NAME = "You"
FALLBACK_ROLE = "member"
UNKNOWN_SENDER_NAME = "Participant"

# User-facing error strings
NOT_SIGNED_IN_ERROR = "You must be signed in to send messages."
NO_CONVERSATION_ERROR = "Select a conversation before sending."
SEND_FAILED_ERROR = "The message could not be sent."
ATTACHMENT_ROW_FAILED_ERROR = "The attachment details could not be saved."

# Audit log
AUDIT_MEMORY_LIMIT = 500
