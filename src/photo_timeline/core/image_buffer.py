from __future__ import annotations

from typing import Optional

from PIL import Image


class BufferReleasedError(RuntimeError):
    pass


class BufferLedger:
    """Counts live buffer handles so leaks and double releases show up in tests."""

    def __init__(self) -> None:
        self.allocated = 0
        self.released = 0

    @property
    def live(self) -> int:
        return self.allocated - self.released

    def _on_allocate(self) -> None:
        self.allocated += 1

    def _on_release(self) -> None:
        self.released += 1


class ImageBuffer:
    """
    Owning handle around decoded pixel data.

    The handle is released exactly once via ``release()``. ``clone()`` is the only
    way to obtain a second, independent owner of the same pixels.
    """

    def __init__(self, image: Image.Image, ledger: Optional[BufferLedger] = None) -> None:
        self._image: Optional[Image.Image] = image
        self._ledger = ledger
        if ledger is not None:
            ledger._on_allocate()

    @classmethod
    def from_image(cls, image: Image.Image, ledger: Optional[BufferLedger] = None) -> "ImageBuffer":
        """Take a private copy of ``image``; the caller keeps its own object."""
        return cls(image.copy(), ledger)

    @property
    def ledger(self) -> Optional[BufferLedger]:
        return self._ledger

    @property
    def released(self) -> bool:
        return self._image is None

    @property
    def image(self) -> Image.Image:
        """Borrow the underlying Pillow image. Do not keep it beyond the call."""
        if self._image is None:
            raise BufferReleasedError("Buffer wurde bereits freigegeben.")
        return self._image

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height

    @property
    def size(self) -> tuple[int, int]:
        return self.image.size

    @property
    def mode(self) -> str:
        return self.image.mode

    @property
    def channels(self) -> int:
        return len(self.image.getbands())

    def tobytes(self) -> bytes:
        return self.image.tobytes()

    def wrap(self, image: Image.Image) -> "ImageBuffer":
        """Hand a freshly produced image to a new owner on the same ledger."""
        return ImageBuffer(image, self._ledger)

    def clone(self) -> "ImageBuffer":
        return ImageBuffer(self.image.copy(), self._ledger)

    def release(self) -> None:
        if self._image is None:
            raise BufferReleasedError("Buffer wurde doppelt freigegeben.")
        image = self._image
        self._image = None
        image.close()
        if self._ledger is not None:
            self._ledger._on_release()

    def to_display_image(self) -> Image.Image:
        """
        Return an RGB/L/RGBA copy suitable for rendering or saving.

        HSV pixels are shown as their raw channel bytes interpreted as RGB, which is
        what a canvas does with an HSV matrix.
        """
        image = self.image
        if image.mode == "HSV":
            return Image.frombytes("RGB", image.size, image.tobytes())
        if image.mode in ("RGB", "RGBA", "L"):
            return image.copy()
        return image.convert("RGB")

    def __repr__(self) -> str:
        if self._image is None:
            return "ImageBuffer(released)"
        return f"ImageBuffer({self._image.mode}, {self._image.width}x{self._image.height})"
