from __future__ import annotations
import os

MAX_CONCURRENCY = int(os.environ.get("ACTIONRUNNER_MAX_CONCURRENCY", "0")) or None
REPOSITORY_SCOPE = os.environ.get("ACTIONRUNNER_SCOPE") or None
SECRETS_FILE = os.environ.get("ACTIONRUNNER_SECRETS_FILE") or None
REDACTION_MASK = os.environ.get("ACTIONRUNNER_MASK", "***")
WORKSPACE = os.environ.get("ACTIONRUNNER_WORKSPACE", ".")
