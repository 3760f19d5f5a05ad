"""Licence key generation."""

import secrets
import string


class KeyGenerator:
    """Generate human-typable licence keys.

    Keys are four groups of four symbols drawn uniformly from ``A-Z0-9``
    and joined by hyphens, e.g. ``7QK2-M0ZD-4HTA-X91C``. The generator does
    not check for collisions; callers that need uniqueness must check the
    key against their store.
    """

    ALPHABET = string.ascii_uppercase + string.digits
    GROUPS = 4
    GROUP_SIZE = 4

    def generate(self) -> str:
        """Return a fresh random licence key."""
        return "-".join(
            "".join(secrets.choice(self.ALPHABET) for _ in range(self.GROUP_SIZE))
            for _ in range(self.GROUPS)
        )

    @classmethod
    def is_well_formed(cls, key: str) -> bool:
        """Quick check if a key matches the generated format."""
        groups = key.split("-")
        return len(groups) == cls.GROUPS and all(
            len(g) == cls.GROUP_SIZE and all(c in cls.ALPHABET for c in g)
            for g in groups
        )
