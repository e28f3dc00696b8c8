import os

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)

APP_URL = os.getenv("APP_URL", "http://localhost:3000")

# Rooms
MAX_PARTICIPANTS = 2
ROOM_ID_BYTES = int(os.getenv("ROOM_ID_BYTES", 48))
ROOM_EXPIRY_SECONDS = int(os.getenv("ROOM_EXPIRY_SECONDS", 86400))

# Liveness (seconds)
HEARTBEAT_CHECK_INTERVAL = float(os.getenv("HEARTBEAT_CHECK_INTERVAL", 15))
HEARTBEAT_STALE_AFTER = float(os.getenv("HEARTBEAT_STALE_AFTER", 45))
KEEPALIVE_INTERVAL = float(os.getenv("KEEPALIVE_INTERVAL", 30))

# Frames buffered per connection before the oldest is dropped
OUTBOUND_QUEUE_SIZE = int(os.getenv("OUTBOUND_QUEUE_SIZE", 64))

# Seconds to wait for a closing socket before giving up on it
CLOSE_TIMEOUT = float(os.getenv("CLOSE_TIMEOUT", 5))

# Redis must never stall the event loop the relay shares
REDIS_SOCKET_TIMEOUT = float(os.getenv("REDIS_SOCKET_TIMEOUT", 0.5))
