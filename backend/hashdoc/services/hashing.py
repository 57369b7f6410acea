"""Content fingerprinting.

Fingerprints are SHA-256 hex digests. They are compared across every record
ever written, so the algorithm is fixed for the lifetime of a deployment.
File objects are hashed chunk by chunk and never read fully into memory.
"""
import hashlib
import io
import logging
import time
from typing import Iterable, Iterator, Union, BinaryIO

from hashdoc.errors import HashingFailed

logger = logging.getLogger(__name__)

ALGORITHM = "sha256"
DEFAULT_CHUNK_SIZE = 1024 * 1024

ByteSource = Union[bytes, bytearray, memoryview, BinaryIO]


class ContentHasher:
    """Deterministic content digest over bytes or a readable binary stream."""

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.chunk_size = chunk_size

    def hash(self, source: ByteSource, name: str = "<bytes>") -> str:
        """Return the hex fingerprint of ``source``.

        A stream is read from its current position to EOF and then rewound to
        that position, so the caller can hand the same object to the object
        store afterwards.
        """
        start = time.perf_counter()
        if isinstance(source, (bytes, bytearray, memoryview)):
            digest = hashlib.new(ALGORITHM, source).hexdigest()
        elif hasattr(source, "read"):
            digest = self._hash_stream(source, name)
        else:
            raise HashingFailed(name, f"unsupported input type {type(source).__name__}")
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.debug(f"Hashing {name} took {elapsed_ms:.2f} ms")
        return digest

    def hash_chunks(self, chunks: Iterable[bytes], name: str = "<chunks>") -> str:
        """Hash an iterable of byte chunks as one contiguous input."""
        h = hashlib.new(ALGORITHM)
        try:
            for chunk in chunks:
                h.update(chunk)
        except (TypeError, OSError, ValueError) as e:
            # ValueError covers reads on a closed file
            raise HashingFailed(name, f"unreadable input: {e}") from e
        return h.hexdigest()

    def measure(self, source: ByteSource, name: str = "<bytes>") -> int:
        """Byte length of ``source`` from its current position, without reading it."""
        if isinstance(source, (bytes, bytearray, memoryview)):
            return len(source)
        try:
            position = source.tell()
            end = source.seek(0, io.SEEK_END)
            source.seek(position)
        except (AttributeError, OSError, ValueError) as e:
            raise HashingFailed(name, f"cannot measure input: {e}") from e
        return end - position

    def _hash_stream(self, stream: BinaryIO, name: str) -> str:
        try:
            position = stream.tell()
        except (OSError, ValueError) as e:
            raise HashingFailed(name, f"unreadable input: {e}") from e
        digest = self.hash_chunks(self._read_chunks(stream), name)
        try:
            stream.seek(position)
        except (OSError, ValueError) as e:
            raise HashingFailed(name, f"cannot rewind input: {e}") from e
        return digest

    def _read_chunks(self, stream: BinaryIO) -> Iterator[bytes]:
        while True:
            chunk = stream.read(self.chunk_size)
            if not chunk:
                return
            yield chunk
