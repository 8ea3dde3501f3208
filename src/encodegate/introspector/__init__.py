"""Media introspection using ffprobe."""

from encodegate.introspector.ffprobe import FFprobeIntrospector
from encodegate.introspector.interface import MediaIntrospectionError, MediaProber

__all__ = ["FFprobeIntrospector", "MediaIntrospectionError", "MediaProber"]
