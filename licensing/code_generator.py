"""
Human-friendly, collision-resistant codes for keys, invitations and agents.

One ``CodeGenerator`` is created per application (see ``licensing.services``)
so its sequence counter is shared by every concurrent mint in the process.
Tests create their own instances.
"""
import base64
import itertools
import logging
import random
import secrets
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)

CHARSET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
UNAMBIGUOUS_CHARSET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
AMBIGUOUS_CHARS = "01OIL"

INVITE_CODE_LENGTH = 8
AGENT_CODE_LENGTH = 6
KEY_CODE_LENGTH = 16
ACTIVATION_CODE_LENGTH = 8

_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def to_base36(number: int) -> str:
    if number == 0:
        return "0"
    sign = "-" if number < 0 else ""
    number = abs(number)
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return sign + "".join(reversed(digits))


def strip_ambiguous(value: str) -> str:
    return "".join(ch for ch in value if ch not in AMBIGUOUS_CHARS)


class CodeGenerator:
    """Thread-safe code source with a monotonic process-wide sequence."""

    def __init__(self, entropy: Optional[Callable[[int], bytes]] = None,
                 time_ns: Callable[[], int] = time.time_ns):
        self._entropy = entropy or secrets.token_bytes
        self._time_ns = time_ns
        self._sequence = itertools.count(1)
        self._lock = threading.Lock()

    def next_sequence(self) -> int:
        with self._lock:
            return next(self._sequence)

    def _random_bytes(self, size: int) -> bytes:
        try:
            return self._entropy(size)
        except (OSError, NotImplementedError) as exc:
            # degraded entropy is acceptable, failing the caller is not
            logger.warning("Secure random source unavailable, using time-seeded fallback: %s", exc)
            seeded = random.Random(self._time_ns() + self.next_sequence())
            return bytes(seeded.randrange(256) for _ in range(size))

    def random_code(self, length: int) -> str:
        raw = self._random_bytes(length)
        return "".join(CHARSET[b % len(CHARSET)] for b in raw)

    def invite_code(self) -> str:
        return self.random_code(INVITE_CODE_LENGTH)

    def agent_code(self) -> str:
        return self.random_code(AGENT_CODE_LENGTH)

    def _composite(self, prefix: str) -> str:
        sequence = self.next_sequence()
        return (prefix + to_base36(self._time_ns()) + to_base36(sequence)
                + self.random_code(4))

    def salesperson_key_code(self) -> str:
        """Short code handed to the buyer for activation: KEY + ts + seq + 4 random."""
        return self._composite("KEY")

    def salesperson_sale_code(self) -> str:
        """Public share code for salesperson-minted keys: CODE + ts + seq + 4 random."""
        return self._composite("CODE")

    def _unambiguous(self, byte_count: int, length: int) -> str:
        self.next_sequence()
        encoded = base64.b32encode(self._random_bytes(byte_count)).decode("ascii").rstrip("=")
        value = strip_ambiguous(encoded)
        if len(value) < length:
            filler = self._random_bytes(length - len(value))
            value += "".join(UNAMBIGUOUS_CHARSET[b % len(UNAMBIGUOUS_CHARSET)] for b in filler)
        return value[:length]

    def key_code(self) -> str:
        """Bulk public code, formatted XXXX-XXXX-XXXX-XXXX."""
        value = self._unambiguous(16, KEY_CODE_LENGTH)
        return "-".join(value[i:i + 4] for i in range(0, KEY_CODE_LENGTH, 4))

    def activation_code(self) -> str:
        """Bulk 8-character activation code."""
        return self._unambiguous(6, ACTIVATION_CODE_LENGTH)
