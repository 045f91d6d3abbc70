"""Attachment of canned policies to IAM users."""

from __future__ import annotations

import logging
import re
import threading
from contextlib import contextmanager
from typing import Any, Iterator

from miniores.policy import ResourceError, prefixed_unique_id

log = logging.getLogger(__name__)

NO_SUCH_USER_CODE = "XMinioAdminNoSuchUser"

_LDAP_DN_PATTERN = re.compile(
    r"^(?:((?:(?:CN|cn|OU|ou)=[^,]+,?)+),)?((?:(?:DC|dc)=[^,]+,?)+)$"
)


class KeyedLock:
    """A set of mutexes, one per key."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        with self._guard:
            mutex = self._locks.setdefault(key, threading.Lock())
        with mutex:
            yield


_ATTACHMENT_LOCK = KeyedLock()


def read_user_policies(admin: Any, user_name: str) -> list[str]:
    """Return the policy names attached to a user; empty when the user is unknown."""
    is_ldap_user = bool(_LDAP_DN_PATTERN.match(user_name))
    log.debug("UserPolicyAttachment: is user '%s' an LDAP user? %s", user_name, is_ldap_user)
    try:
        info = admin.get_user_info(user_name)
    except Exception as exc:
        code = getattr(exc, "code", None)
        is_response = code is not None
        log.debug(
            "UserPolicyAttachment: got an error, is_response=%s, code=%s", is_response, code
        )
        if (code or "").casefold() == NO_SUCH_USER_CODE.casefold():
            return []
        if not is_ldap_user or not is_response:
            raise ResourceError("failed to load user Infos", user_name, exc) from exc
        return []
    policy_name = getattr(info, "policy_name", "")
    if not policy_name:
        return []
    return policy_name.split(",")


class UserPolicyAttachmentResource:
    """Attach and detach one canned policy on one user."""

    def __init__(self, admin: Any, lock: KeyedLock | None = None) -> None:
        self.admin = admin
        self._lock = lock if lock is not None else _ATTACHMENT_LOCK

    def create(self, user_name: str, policy_name: str) -> dict | None:
        with self._lock.lock(user_name):
            policies = read_user_policies(self.admin, user_name)
            if policy_name not in policies:
                policies.append(policy_name)
                log.debug(
                    "Attaching policy %s to user: %s (%s)", policy_name, user_name, policies
                )
                try:
                    self.admin.set_policy(",".join(policies), user_name, False)
                except Exception as exc:
                    raise ResourceError(
                        "unable to Set User policy", f"{user_name} {policy_name}", exc
                    ) from exc
            state = self._read_locked(user_name, policy_name)
        if state is None:
            return None
        return {"id": prefixed_unique_id(f"{user_name}-"), **state}

    def read(self, user_name: str, policy_name: str) -> dict | None:
        """Return the attachment's state, or None when the policy is not attached."""
        with self._lock.lock(user_name):
            return self._read_locked(user_name, policy_name)

    def _read_locked(self, user_name: str, policy_name: str) -> dict | None:
        policies = read_user_policies(self.admin, user_name)
        if policy_name not in policies:
            log.warning(
                "No such policy by name (%s) found for %s, removing from state",
                policy_name,
                user_name,
            )
            return None
        return {"user_name": user_name, "policy_name": policy_name}

    def delete(self, user_name: str, policy_name: str) -> bool:
        """Detach the policy; return whether it was attached."""
        with self._lock.lock(user_name):
            policies = read_user_policies(self.admin, user_name)
            if policy_name not in policies:
                return False
            remaining = [name for name in policies if name != policy_name]
            log.debug(
                "Detaching policy %s from user: %s (%s)", policy_name, user_name, remaining
            )
            try:
                self.admin.set_policy(",".join(remaining), user_name, False)
            except Exception as exc:
                raise ResourceError("unable to delete user policy", user_name, exc) from exc
        return True

    def import_state(self, import_id: str) -> dict:
        """Build state from an ID of the form ``<user-name>/<policy_name>``."""
        parts = import_id.split("/", 1)
        if len(parts) != 2 or not parts[0] or not parts[1]:
            raise ValueError(
                f'unexpected format of ID ("{import_id}"), '
                "expected <user-name>/<policy_name>"
            )
        user_name, policy_name = parts
        return {
            "id": prefixed_unique_id(f"{user_name}-"),
            "user_name": user_name,
            "policy_name": policy_name,
        }