"""
Customer record anonymization.

Substitutes PII fields with generated alphanumeric strings while keeping
the identifier, timestamps and structural address fields untouched, so
replica documents stay joinable to their source by ``_id``.
"""

import copy
import random
from typing import Any, Dict, Iterable, Optional

from common.constants import EMAIL_FIELD, PII_FIELDS, SUBSTITUTE_ALPHABET, SUBSTITUTE_LENGTH

SEEDED = "seeded"
UNSEEDED = "unseeded"


def generate_substitute(
    seed: Optional[str] = None,
    length: int = SUBSTITUTE_LENGTH,
    rng: Optional[random.Random] = None
) -> str:
    """
    Generate a random alphanumeric string.

    Args:
        seed: When given, the result is derived deterministically from it
        length: Number of characters to generate
        rng: Generator used when no seed is given

    Returns:
        String of ``length`` characters drawn from SUBSTITUTE_ALPHABET
    """
    if seed is not None:
        rng = random.Random(seed)
    elif rng is None:
        rng = random.SystemRandom()
    return "".join(rng.choice(SUBSTITUTE_ALPHABET) for _ in range(length))


class Anonymizer:
    """
    Pure transform from a source document to its anonymized copy.

    With the ``seeded`` policy each substitute is seeded by the original
    value, so the same input always anonymizes to the same output. The
    ``unseeded`` policy draws fresh randomness on every call.
    """

    def __init__(
        self,
        length: int = SUBSTITUTE_LENGTH,
        policy: str = SEEDED,
        fields: Iterable[str] = PII_FIELDS,
        email_field: str = EMAIL_FIELD
    ):
        if policy not in (SEEDED, UNSEEDED):
            raise ValueError(f"Unknown anonymization policy: {policy}")
        if length <= 0:
            raise ValueError("Substitute length must be positive")

        self.length = length
        self.policy = policy
        self.fields = tuple(fields)
        self.email_field = email_field
        self._rng = random.SystemRandom()

    def anonymize(self, document: Dict[str, Any]) -> Dict[str, Any]:
        """
        Return an anonymized deep copy of ``document``.

        Fields that are absent or not strings are left as they are.
        """
        result = copy.deepcopy(document)

        for path in self.fields:
            parent, key = _resolve(result, path)
            if parent is not None and isinstance(parent.get(key), str):
                parent[key] = self._substitute(parent[key])

        email = result.get(self.email_field)
        if isinstance(email, str):
            _, at, domain = email.partition("@")
            result[self.email_field] = self._substitute(email) + at + domain

        return result

    __call__ = anonymize

    def _substitute(self, value: str) -> str:
        if self.policy == SEEDED:
            return generate_substitute(seed=value, length=self.length)
        return generate_substitute(length=self.length, rng=self._rng)


def _resolve(document: Dict[str, Any], path: str):
    """Walk a dotted path, returning the containing dict and the last key."""
    *parents, key = path.split(".")
    node = document
    for part in parents:
        node = node.get(part)
        if not isinstance(node, dict):
            return None, key
    return node, key
