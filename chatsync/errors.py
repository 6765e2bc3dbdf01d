"""Exception taxonomy for the chat synchronization core.

Every error carries the HTTP status the API layer should answer with, so
routers and the room WebSocket can surface failures without re-classifying
them. Read-side failures (``TransientReadFailure``) are normally swallowed
by the caller, which keeps showing its last known state.
"""


class ChatSyncError(Exception):
    status_code = 400


# ---------------------------------------------------------------------------
# Backbone
# ---------------------------------------------------------------------------


class TransientReadFailure(ChatSyncError):
    status_code = 503


class WriteRejected(ChatSyncError):
    status_code = 400


# ---------------------------------------------------------------------------
# Rooms
# ---------------------------------------------------------------------------


class UnknownRoom(ChatSyncError):
    status_code = 404


class RoomAccessDenied(ChatSyncError):
    status_code = 403


# ---------------------------------------------------------------------------
# Sends
# ---------------------------------------------------------------------------


class SendError(ChatSyncError):
    pass


class RoomReadOnly(SendError):
    status_code = 409


class NoActiveContext(SendError):
    status_code = 409


class ChatLocked(SendError):
    status_code = 403


class PremiumRequired(SendError):
    status_code = 402


class EmptyMessage(SendError):
    status_code = 422


class MissingMedia(SendError):
    status_code = 422


class InvalidReplyTarget(SendError):
    status_code = 422


# ---------------------------------------------------------------------------
# Other intents (moderation, lessons, polls, edits)
# ---------------------------------------------------------------------------


class IntentError(ChatSyncError):
    pass


class NotPermitted(IntentError):
    status_code = 403


class NotFound(IntentError):
    status_code = 404


class InvalidTransition(IntentError):
    status_code = 409


class InvalidInput(IntentError):
    status_code = 422
