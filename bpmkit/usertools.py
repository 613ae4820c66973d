"""Lookup of system users for container processes."""

from __future__ import annotations

import pwd

from .oci import User

VCAP_USER = "vcap"


class UserFinder:
    """Resolves user names to container users using the password database."""

    def lookup(self, username: str) -> User:
        """Return the container user for ``username``.

        Raises LookupError when the user is unknown and ValueError when its
        ids are negative.
        """
        try:
            entry = pwd.getpwnam(username)
        except KeyError as exc:
            raise LookupError(f"user: unknown user {username}") from exc

        if entry.pw_uid < 0:
            raise ValueError("UID can't be negative")
        if entry.pw_gid < 0:
            raise ValueError("GID can't be negative")

        return User(uid=entry.pw_uid, gid=entry.pw_gid, username=entry.pw_name)