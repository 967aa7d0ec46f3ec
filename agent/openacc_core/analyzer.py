"""
ImageAnalyzer — OCR a captured frame slice by slice and count blacklist hits.

Optimized for LOW RESOURCE usage on old/slow systems:
  - Fixed-height slices keep each Tesseract call small
  - After each slice the analyzer pauses for (slice seconds × throttle factor)
  - The pause is interruptible by the cancellation token, one second at a time
"""

import io
import time

import pytesseract
from PIL import Image

from .config import log, MonitorConfig
from .errors import ImageError


class TesseractEngine:
    """OCR engine: TIFF bytes in, text out."""

    def __init__(self, lang="eng", dpi=100):
        self._lang = lang
        self._dpi = dpi

    def check(self):
        """Raise ImageError if the tesseract binary is not usable."""
        try:
            version = pytesseract.get_tesseract_version()
        except pytesseract.TesseractNotFoundError as e:
            raise ImageError(f"Tesseract is not installed: {e}") from e
        log.info("Tesseract %s ready (lang=%s)", version, self._lang)

    def read_text(self, tiff_bytes):
        try:
            with Image.open(io.BytesIO(tiff_bytes)) as img:
                return pytesseract.image_to_string(
                    img, lang=self._lang, config=f"--dpi {self._dpi}",
                )
        except (pytesseract.TesseractError, RuntimeError, OSError) as e:
            raise ImageError(f"OCR failed: {e}") from e


class ImageAnalyzer:

    def __init__(self, engine, config=None, clock=time.monotonic):
        self._engine = engine
        self._clock = clock
        self._config = config or MonitorConfig()
        # Every punctuation char becomes a separator
        self._strip_table = str.maketrans({c: " " for c in self._config.punctuation})

    def tokenize(self, text):
        return text.lower().translate(self._strip_table).split()

    def slice_bounds(self, height):
        """(top, bottom) row pairs covering ``height``, top to bottom."""
        step = self._config.slice_height
        return [(top, min(top + step, height)) for top in range(0, height, step)]

    def analyze(self, image, blacklist, cancel_token):
        """
        OCR ``image`` and increment ``blacklist`` counts in place.

        Raises CancelledError between slices once ``cancel_token`` is set;
        counts from slices already read are kept.
        An unreadable slice raises ImageError.
        """
        width, height = image.size
        bounds = self.slice_bounds(height)
        buffer = io.BytesIO()

        for index, (top, bottom) in enumerate(bounds, start=1):
            start = self._clock()

            buffer.seek(0)
            buffer.truncate()
            try:
                image.crop((0, top, width, bottom)).save(buffer, format="TIFF")
                text = self._engine.read_text(buffer.getvalue())
            except OSError as e:
                raise ImageError(f"slice rows {top}-{bottom} failed: {e}") from e

            hits = 0
            for word in self.tokenize(text):
                if word in blacklist:
                    blacklist[word] += 1
                    hits += 1

            elapsed = self._clock() - start
            log.info("slice %d/%d rows %d-%d: %d hits (%.2fs)",
                     index, len(bounds), top, bottom, hits, elapsed)

            cancel_token.check()
            # Pause = whole seconds elapsed × factor
            cancel_token.sleep(int(elapsed) * self._config.throttle_factor)
