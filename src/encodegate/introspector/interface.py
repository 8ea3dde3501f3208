"""MediaProber interface for video metadata extraction."""

from pathlib import Path
from typing import Protocol

from encodegate.domain.models import ProbeResult


class MediaIntrospectionError(Exception):
    """Raised when media introspection fails."""

    pass


class MediaProber(Protocol):
    """Protocol for media probe implementations."""

    def probe(self, path: Path) -> ProbeResult:
        """Extract an immutable metadata snapshot from a media file.

        Raises:
            MediaIntrospectionError: If the file cannot be probed or has no
                usable video stream.
        """
        ...
