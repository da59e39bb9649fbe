import os

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 3001))

CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]

# Seconds a call may stay unanswered before both sides are sent callEnded. 0 disables the sweep.
RING_TIMEOUT_SECONDS = float(os.getenv("RING_TIMEOUT_SECONDS", 60))
RING_SWEEP_INTERVAL_SECONDS = float(os.getenv("RING_SWEEP_INTERVAL_SECONDS", 5))

MAX_ROOM_NAME_LENGTH = int(os.getenv("MAX_ROOM_NAME_LENGTH", 128))

# Client side
SERVER_URL = os.getenv("SERVER_URL", f"ws://localhost:{PORT}/ws")
STUN_URL = os.getenv("STUN_URL", "stun:stun.l.google.com:19302")
# Capture device handed to aiortc's MediaPlayer, e.g. "/dev/video0" with format "v4l2"
MEDIA_DEVICE = os.getenv("MEDIA_DEVICE", "")
MEDIA_FORMAT = os.getenv("MEDIA_FORMAT", "")
