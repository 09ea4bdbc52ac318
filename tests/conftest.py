import os

# database.py builds its engine at import time; keep it off the real data dir.
os.environ.setdefault("FINANCE_DATABASE_URL", "sqlite://")
os.environ.setdefault("FINANCE_RUN_RECURRING_ON_STARTUP", "false")
