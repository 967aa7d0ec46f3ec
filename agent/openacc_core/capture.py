"""
Screen capture — one frame per attached display via mss, decoded with Pillow.
"""

import mss
import mss.exception
from PIL import Image

from .errors import ImageError, DecodeError


class ScreenCapturer:
    """Context manager around an mss handle.

    displays() may raise ImageError (enumeration failed); grab() raises
    ImageError for a failed capture and DecodeError for an unusable frame.
    """

    _MON_START = 1  # monitors[0] is the virtual union of all displays

    def __init__(self):
        self._sct = None

    def __enter__(self):
        try:
            self._sct = mss.mss()
        except mss.exception.ScreenShotError as e:
            raise ImageError(f"Cannot open display: {e}") from e
        return self

    def __exit__(self, *exc):
        if self._sct is not None:
            self._sct.close()
            self._sct = None
        return False

    def displays(self):
        try:
            return list(self._sct.monitors[self._MON_START:])
        except mss.exception.ScreenShotError as e:
            raise ImageError(f"Display enumeration failed: {e}") from e

    def grab(self, display):
        try:
            shot = self._sct.grab(display)
        except mss.exception.ScreenShotError as e:
            raise ImageError(f"Capture failed for display {display}: {e}") from e
        return decode_frame(shot.size, shot.bgra)


def decode_frame(size, bgra):
    """Turn a raw BGRA buffer into an RGB PIL image."""
    try:
        return Image.frombytes("RGB", size, bgra, "raw", "BGRX")
    except (ValueError, TypeError) as e:
        raise DecodeError(f"Cannot decode {size[0]}x{size[1]} frame: {e}") from e
