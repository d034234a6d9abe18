"""Rejection reasons shared by the relay core and the transport shell."""

from __future__ import annotations

from enum import Enum


class Reason(str, Enum):
    INVALID_PARAMETERS = "InvalidParameters"
    ROOM_FULL = "RoomFull"
    KEY_MISMATCH = "KeyMismatch"
    KEY_SETTING_NOT_ALLOWED = "KeySettingNotAllowed"
    RATE_LIMITED = "RateLimited"
    PAYLOAD_TOO_LARGE = "PayloadTooLarge"
    UNSUPPORTED_MEDIA_TYPE = "UnsupportedMediaType"
    MALFORMED_PAYLOAD = "MalformedPayload"
    ALREADY_JOINED = "AlreadyJoined"
    NOT_JOINED = "NotJoined"
    DUPLICATE_MESSAGE_ID = "DuplicateMessageId"


class RelayRejection(Exception):
    """Raised by validation helpers; always recoverable by the requester."""

    def __init__(self, reason: Reason, detail: str | None = None) -> None:
        super().__init__(detail or reason.value)
        self.reason = reason
        self.detail = detail
