# secrets.py
from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Tuple

from .errors import DuplicateSecret, SecretNotFound, SecretStoreError
from .model import Secret

DEFAULT_MASK = "***"


# ----------------------------------------------------------------------
# Redaction
# ----------------------------------------------------------------------

class Redactor:
    """Masks every registered sensitive string in captured text."""

    def __init__(self, mask: str = DEFAULT_MASK):
        self.mask = mask
        self._values: set[str] = set()
        self._lock = threading.Lock()

    def register(self, value: str | bytes) -> None:
        if isinstance(value, bytes):
            value = value.decode("utf-8", errors="replace")
        if not value:
            return
        with self._lock:
            self._values.add(value)
            # a multi-line secret may be echoed one line at a time
            for line in value.splitlines():
                if line.strip():
                    self._values.add(line)

    def redact(self, text: str | None) -> str:
        if not text:
            return text or ""
        with self._lock:
            values = sorted(self._values, key=len, reverse=True)
        for v in values:
            text = text.replace(v, self.mask)
        return text


# ----------------------------------------------------------------------
# Backing store
# ----------------------------------------------------------------------

class SecretBackend(Protocol):
    def get(self, scope: str, name: str) -> Optional[Secret]: ...

    def put(self, secret: Secret) -> None: ...

    def delete(self, scope: str, name: str) -> bool: ...

    def names(self, scope: str) -> List[str]: ...


class InMemorySecretBackend:
    def __init__(self) -> None:
        self._data: Dict[Tuple[str, str], Secret] = {}
        self._lock = threading.Lock()

    def get(self, scope: str, name: str) -> Optional[Secret]:
        with self._lock:
            return self._data.get((scope, name))

    def put(self, secret: Secret) -> None:
        with self._lock:
            self._data[(secret.scope, secret.name)] = secret

    def delete(self, scope: str, name: str) -> bool:
        with self._lock:
            return self._data.pop((scope, name), None) is not None

    def names(self, scope: str) -> List[str]:
        with self._lock:
            return sorted(n for s, n in self._data if s == scope)


# ----------------------------------------------------------------------
# Store
# ----------------------------------------------------------------------

class SecretStore:
    """
    Named secrets scoped to a repository.

    Every value handed out by resolve() is registered with `redactor` first,
    so whoever echoes it into captured output gets the mask instead.
    """

    def __init__(self, backend: Optional[SecretBackend] = None, *, mask: str = DEFAULT_MASK):
        self.backend = backend if backend is not None else InMemorySecretBackend()
        self.redactor = Redactor(mask)
        self._lock = threading.Lock()

    def put(self, name: str, value: str | bytes, scope: str) -> Secret:
        if isinstance(value, str):
            value = value.encode("utf-8")
        secret = Secret(name=name, value=bytes(value), scope=scope)
        with self._lock:
            if self.backend.get(scope, name) is not None:
                raise DuplicateSecret(name, scope)
            self.backend.put(secret)
        return secret

    def resolve(self, name: str, scope: str) -> bytes:
        secret = self.backend.get(scope, name)
        if secret is None:
            raise SecretNotFound(name, scope)
        self.redactor.register(secret.value)
        return secret.value

    def revoke(self, name: str, scope: str) -> None:
        with self._lock:
            if not self.backend.delete(scope, name):
                raise SecretNotFound(name, scope)

    def names(self, scope: str) -> List[str]:
        return self.backend.names(scope)

    def __contains__(self, item: Tuple[str, str]) -> bool:
        name, scope = item
        return self.backend.get(scope, name) is not None


def load_secrets_file(path: str | Path, store: Optional[SecretStore] = None) -> SecretStore:
    """
    Load secrets from a JSON file:

        {"version": 1, "scopes": {"acme/widgets": {"API_TOKEN": "..."}}}
    """
    p = Path(path)
    if not p.exists():
        raise SecretStoreError(f"Secrets file not found: {p}")

    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise SecretStoreError(f"Secrets file is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise SecretStoreError("Secrets file must be a JSON object")

    version = data.get("version", 0)
    if version != 1:
        raise SecretStoreError(f"Unsupported secrets file version: {version}")

    scopes = data.get("scopes")
    if not isinstance(scopes, dict):
        raise SecretStoreError("Secrets file missing 'scopes' object")

    store = store if store is not None else SecretStore()
    for scope, secrets in scopes.items():
        if not isinstance(secrets, dict):
            raise SecretStoreError(f"Invalid secrets for scope={scope}")
        for name, value in secrets.items():
            if not isinstance(value, str):
                raise SecretStoreError(f"Secret {scope}/{name} must be a string")
            store.put(str(name), value, str(scope))
    return store
