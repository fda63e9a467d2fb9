"""
WhatsApp Credential Store

Multi-file auth state: each top-level key of the credential snapshot is
stored as its own JSON file inside the auth directory.

Directory Structure:
./auth_info_baileys/
├── creds.json              # Identity keys, registration, account
├── pre-key-1.json          # One file per signal key entry
├── session-<jid>.json
└── app-state-sync-key-<id>.json
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Union
from urllib.parse import quote, unquote

logger = logging.getLogger(__name__)


class CredentialStore(ABC):
    """Persists session authentication material across restarts."""

    @abstractmethod
    async def load(self) -> Dict[str, Any]:
        """Return the stored snapshot, or an empty dict on first run."""

    @abstractmethod
    async def save(self, credentials: Dict[str, Any]):
        """Persist a snapshot (or a partial update of one)."""


class FileCredentialStore(CredentialStore):
    """CredentialStore backed by one JSON file per credential key."""

    def __init__(self, auth_dir: Union[str, Path] = "./auth_info_baileys"):
        self.auth_dir = Path(auth_dir)

    def _path_for(self, key: str) -> Path:
        # Percent-encoded so load() recovers the exact key
        return self.auth_dir / f"{quote(key, safe='')}.json"

    async def load(self) -> Dict[str, Any]:
        # mkdir failures propagate: the manager treats them as construction failures
        self.auth_dir.mkdir(parents=True, exist_ok=True)

        credentials: Dict[str, Any] = {}
        for path in sorted(self.auth_dir.glob("*.json")):
            try:
                with open(path, "r") as f:
                    credentials[unquote(path.stem)] = json.load(f)
            except json.JSONDecodeError as e:
                logger.warning(f"Skipping corrupt credential file {path.name}: {e}")

        if credentials:
            logger.info(f"Loaded {len(credentials)} credential entries from {self.auth_dir}")
        else:
            logger.info(f"No stored credentials in {self.auth_dir}, pairing will be required")

        return credentials

    async def save(self, credentials: Dict[str, Any]):
        self.auth_dir.mkdir(parents=True, exist_ok=True)

        for key, value in credentials.items():
            path = self._path_for(key)
            if value is None:
                if path.exists():
                    path.unlink()
                continue

            tmp_path = path.with_suffix(".json.tmp")
            with open(tmp_path, "w") as f:
                json.dump(value, f)
            os.replace(tmp_path, path)

        logger.debug(f"Persisted {len(credentials)} credential entries")
