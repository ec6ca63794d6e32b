"""Owner uid to user name resolution."""

import pwd

UNKNOWN_OWNER = "unknown"


class UserResolver:
    """Resolve uids to login names via the passwd database.

    Lookups are cached for the resolver's lifetime, including misses, so a
    host with many processes per user hits NSS once per uid.
    """

    def __init__(self) -> None:
        self._cache: dict[int, str] = {}

    def __call__(self, uid: int) -> str:
        return self.resolve(uid)

    def resolve(self, uid: int) -> str:
        """Return the user name for uid, or UNKNOWN_OWNER if it has none."""
        name = self._cache.get(uid)
        if name is None:
            try:
                name = pwd.getpwuid(uid).pw_name
            except (KeyError, OverflowError):
                name = UNKNOWN_OWNER
            self._cache[uid] = name
        return name

    def clear(self) -> None:
        """Forget cached lookups (e.g. after users were added)."""
        self._cache.clear()
