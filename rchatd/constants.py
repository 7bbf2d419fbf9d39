# rchat wire vocabulary (event types and field names)

# Every event is a CBOR map with a string "type" key.
K_TYPE = "type"

# Client -> hub
T_AUTH = "auth"
T_CHAT_MESSAGE = "chat_message"
T_TYPING = "typing"
T_UPDATE_LAST_SEEN = "update_last_seen"

# Hub -> client
T_NEW_MESSAGE = "new_message"
T_MESSAGE_SENT = "message_sent"
T_USER_ONLINE = "user_online"
T_USER_OFFLINE = "user_offline"
T_USER_STATUS_UPDATE = "user_status_update"

# Field names (camelCase, shared with clients)
F_USER_ID = "userId"
F_DATA = "data"
F_MESSAGE = "message"
F_SENDER_ID = "senderId"
F_RECEIVER_ID = "receiverId"
F_CONTENT = "content"
F_MESSAGE_TYPE = "messageType"
F_IMAGE_URL = "imageUrl"
F_IS_TYPING = "isTyping"
F_IS_ONLINE = "isOnline"
F_LAST_SEEN = "lastSeen"

# Message types
MSG_TEXT = "text"
MSG_IMAGE = "image"
MESSAGE_TYPES = frozenset({MSG_TEXT, MSG_IMAGE})

# Limits carried over from the user/message schema.
MAX_CONTENT_CHARS = 1000
MAX_IDENTITY_CHARS = 64
MAX_USERNAME_CHARS = 50
MAX_DISPLAY_NAME_CHARS = 100
MAX_STATUS_CHARS = 200
DEFAULT_HISTORY_LIMIT = 50

# Request paths served to authenticated links.
P_ME = "/users/me"
P_ONLINE_USERS = "/users/online"
P_PROFILE = "/users/profile"
P_CONVERSATIONS = "/chat/conversations"
P_MESSAGES = "/chat/messages"
P_STATS = "/hub/stats"
