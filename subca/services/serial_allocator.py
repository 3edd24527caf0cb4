"""Certificate serial number allocation."""

import logging
import secrets
import threading
from typing import Callable, Dict, Optional, Set

from subca.errors import SerialCollisionError

logger = logging.getLogger("subca")

# RFC 5280 4.1.2.2: positive and at most 20 octets once DER-encoded
SERIAL_BITS = 159


def format_serial(serial: int) -> str:
    """Canonical upper-case hex representation of a serial."""
    return format(serial, "X")


class SerialAllocator:
    """
    Hands out random serials unique per CA.

    A serial is rejected when the store already holds it for the CA or when
    another in-flight issuance has reserved it. Reservations last until the
    caller releases them, after its unit of work has committed or failed.
    """

    def __init__(
        self,
        store,
        max_attempts: int = 10,
        generator: Optional[Callable[[], int]] = None,
    ):
        """
        Initialize serial allocator.

        Args:
            store: Store used to check persisted serials
            max_attempts: Draws before giving up with SerialCollisionError
            generator: Source of candidate serials (random 159-bit by default)
        """
        self.store = store
        self.max_attempts = max_attempts
        self._generator = generator or (lambda: secrets.randbits(SERIAL_BITS))
        self._lock = threading.Lock()
        self._reserved: Dict[str, Set[int]] = {}

    def next_serial(self, ca_id: str) -> int:
        """
        Reserve a fresh serial for a CA.

        Args:
            ca_id: Issuing CA ID

        Returns:
            Positive serial number

        Raises:
            SerialCollisionError: If no free serial was found within max_attempts
        """
        with self._lock:
            reserved = self._reserved.setdefault(ca_id, set())
            for _ in range(self.max_attempts):
                serial = self._generator()
                if serial <= 0 or serial.bit_length() > SERIAL_BITS:
                    continue
                if serial in reserved or self.store.serial_exists(ca_id, format_serial(serial)):
                    logger.warning(f"Serial collision for CA {ca_id}: {format_serial(serial)}")
                    continue
                reserved.add(serial)
                return serial
        raise SerialCollisionError(f"Could not allocate a unique serial for CA {ca_id}")

    def release(self, ca_id: str, serial: int) -> None:
        """Drop a reservation. Safe to call for unknown serials."""
        with self._lock:
            reserved = self._reserved.get(ca_id)
            if reserved is not None:
                reserved.discard(serial)
                if not reserved:
                    del self._reserved[ca_id]
