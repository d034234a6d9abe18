# ERC protocol constants (numeric keys and message types)

ERC_VERSION = 1

# Envelope keys
K_V = 0
K_T = 1
K_ID = 2
K_TS = 3
K_SRC = 4
K_ROOM = 5
K_BODY = 6
K_NICK = 7

# Message types
T_JOIN = 10
T_ADMITTED = 11
T_REJECTED = 12
T_PEER_JOINED = 13
T_PEER_LEFT = 14

T_MSG = 20
T_FILE = 21
T_ACK = 22
T_PROGRESS = 23
T_TYPING = 24

T_PING = 30
T_PONG = 31

T_ADVISORY = 40

# ADMITTED body keys
B_ADMITTED_WELCOME = 0
B_ADMITTED_KEYED = 1
B_ADMITTED_MEMBERS = 2
B_ADMITTED_CAPACITY = 3
B_ADMITTED_HUB = 4
B_ADMITTED_VER = 5

# REJECTED / ADVISORY body keys
B_REASON = 0

# FILE body keys
B_FILE_NAME = 0
B_FILE_TYPE = 1
B_FILE_SIZE = 2
B_FILE_DATA = 3

# Field limits (characters unless noted)
NICK_MAX_CHARS = 24
ROOM_MAX_CHARS = 40
KEY_MAX_CHARS = 50
MSG_ID_MAX_CHARS = 64
TEXT_MAX_CHARS = 2000
FILE_NAME_MAX_CHARS = 140
MIME_MAX_CHARS = 100
FILE_MAX_BYTES = 2_000_000
DATA_URI_MAX_CHARS = 7_000_000
DATA_URI_PREFIX = "data:"

ALLOWED_MIME_TYPES = frozenset(
    {
        "image/png",
        "image/jpeg",
        "image/webp",
        "image/gif",
        "application/pdf",
        "text/plain",
        "application/zip",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
        "application/vnd.ms-powerpoint",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.ms-excel",
    }
)
