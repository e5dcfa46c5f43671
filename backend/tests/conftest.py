import os

# Settings are instantiated at import time; give them a signing key before any
# spendwise module is collected.
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("JWT_ALGORITHM", "HS256")
os.environ.setdefault("TIMEZONE", "UTC")
