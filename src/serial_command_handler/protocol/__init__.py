"""Protocol layer: response framing."""

from .framing import ResponseFramer, normalize
