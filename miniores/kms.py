"""KMS keys managed through the admin API."""

from __future__ import annotations

import logging
from typing import Any

from miniores.policy import ResourceError

log = logging.getLogger(__name__)


class KmsKeyResource:
    """Create, inspect and remove KMS keys."""

    def __init__(self, admin: Any) -> None:
        self.admin = admin

    def create(self, key_id: str) -> dict | None:
        try:
            self.admin.create_key(key_id)
        except Exception as exc:
            raise ResourceError("error creating service account", key_id, exc) from exc
        return self.read(key_id)

    def read(self, key_id: str) -> dict | None:
        """Return the key's state, or None when its status cannot be read."""
        log.debug("Reading KMS key [%s]", key_id)
        try:
            status = self.admin.get_key_status(key_id)
        except Exception as exc:
            log.info("error reading KMS key %s: %s", key_id, exc)
            return None
        log.debug("KMS key [%s] exists!", key_id)
        encryption_err = getattr(status, "encryption_err", "")
        if encryption_err:
            raise ResourceError("KMS key has encryption error", key_id, encryption_err)
        decryption_err = getattr(status, "decryption_err", "")
        if decryption_err:
            raise ResourceError("KMS key has decryption error", key_id, decryption_err)
        return {"id": key_id, "key_id": key_id}

    def delete(self, key_id: str) -> None:
        log.debug("Deleting KMS key [%s]", key_id)
        try:
            self.admin.delete_key(key_id)
        except Exception as exc:
            log.info("unable to remove KMS key %s: %s", key_id, exc)
            raise ResourceError("unable to remove KMS key", key_id, exc) from exc
        log.debug("Deleted KMS key: [%s]", key_id)