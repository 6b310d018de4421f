"""
Run priority derived from an executable's file name.

The leading ASCII digits of a name give its priority: ``10-setup`` runs
before ``20-collect``, and names without a number run after every
numbered one. A number too large for an unsigned 64-bit integer makes the
name invalid; invalid names sort after everything else and are never run.
"""

from dataclasses import dataclass
from typing import Optional

from core.errors import PriorityError


U64_MAX = 2 ** 64 - 1


def leading_digits(name: str) -> str:
    """Return the run of ASCII digits at the start of name."""
    end = 0
    while end < len(name) and "0" <= name[end] <= "9":
        end += 1
    return name[:end]


@dataclass(frozen=True)
class Priority:
    """
    Priority of a directory entry.

    ``number`` is None for names without a leading number.
    Numbered priorities compare by value and always sort first.
    """
    number: Optional[int] = None

    @classmethod
    def from_name(cls, name: str) -> "Priority":
        """
        Parse the priority prefix of a file name.

        Raises:
            PriorityError: If the prefix does not fit an unsigned 64-bit integer
        """
        digits = leading_digits(name)
        if not digits:
            return cls(None)
        number = int(digits)
        if number > U64_MAX:
            raise PriorityError(f"Priority prefix of {name!r} is too large")
        return cls(number)

    def __lt__(self, other: "Priority") -> bool:
        if not isinstance(other, Priority):
            return NotImplemented
        return self._key() < other._key()

    def _key(self) -> tuple[int, int]:
        if self.number is None:
            return (1, 0)
        return (0, self.number)


def sort_key(name: str) -> tuple[int, int, str]:
    """
    Ordering key for sibling directory entries.

    Numbered names first (ascending), then unnumbered, then invalid.
    Ties are broken by name so a walk is reproducible.
    """
    try:
        priority = Priority.from_name(name)
    except PriorityError:
        return (2, 0, name)
    rank, number = priority._key()
    return (rank, number, name)
