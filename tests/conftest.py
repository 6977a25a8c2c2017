import os

# settings are read once at import time by the service modules
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("AUTH_JWKS_URL", "http://auth.invalid/.well-known/jwks.json")
os.environ.setdefault("QR_SECRET", "test-qr-secret-0123456789abcdef0123456789")
os.environ.setdefault("RL_ENABLED", "false")
os.environ.setdefault("AUTO_CLOSE_SESSIONS", "false")
os.environ.setdefault("ENABLE_NATS_EVENTS", "false")
