"""A small 2D drawing surface with canvas-style compositing.

Pixels are stored as premultiplied RGBA floats in ``[0, 1]``. Every draw
call goes through :meth:`Surface._composite`, which applies the current
``global_alpha`` and ``composite_operation`` the way an HTML canvas 2D
context does: Porter-Duff operators for the ``source-*``/``destination-*``
family and the W3C separable and non-separable blend modes on top of
``source-over``.
"""
import io
import pathlib
from typing import List, Optional, Tuple

import numpy as np
from PIL import Image, ImageColor, ImageDraw, ImageFont

# (Fa, Fb) factors applied to premultiplied source and backdrop
PORTER_DUFF = {
    "source-over": lambda a_s, a_b: (1.0, 1.0 - a_s),
    "source-in": lambda a_s, a_b: (a_b, 0.0),
    "source-out": lambda a_s, a_b: (1.0 - a_b, 0.0),
    "source-atop": lambda a_s, a_b: (a_b, 1.0 - a_s),
    "destination-over": lambda a_s, a_b: (1.0 - a_b, 1.0),
    "destination-in": lambda a_s, a_b: (0.0, a_s),
    "destination-out": lambda a_s, a_b: (0.0, 1.0 - a_s),
    "destination-atop": lambda a_s, a_b: (1.0 - a_b, a_s),
    "xor": lambda a_s, a_b: (1.0 - a_b, 1.0 - a_s),
    "copy": lambda a_s, a_b: (1.0, 0.0),
    "lighter": lambda a_s, a_b: (1.0, 1.0),
}

_LUMA = np.array([0.3, 0.59, 0.11])


def _screen(cb, cs):
    return cb + cs - cb * cs


def _hard_light(cb, cs):
    return np.where(cs <= 0.5, cb * 2.0 * cs, _screen(cb, 2.0 * cs - 1.0))


def _color_dodge(cb, cs):
    with np.errstate(divide="ignore", invalid="ignore"):
        out = np.minimum(1.0, cb / (1.0 - cs))
    out = np.where(cs >= 1.0, 1.0, out)
    return np.where(cb <= 0.0, 0.0, out)


def _color_burn(cb, cs):
    with np.errstate(divide="ignore", invalid="ignore"):
        out = 1.0 - np.minimum(1.0, (1.0 - cb) / cs)
    out = np.where(cs <= 0.0, 0.0, out)
    return np.where(cb >= 1.0, 1.0, out)


def _soft_light(cb, cs):
    d = np.where(cb <= 0.25, ((16.0 * cb - 12.0) * cb + 4.0) * cb, np.sqrt(cb))
    return np.where(
        cs <= 0.5,
        cb - (1.0 - 2.0 * cs) * cb * (1.0 - cb),
        cb + (2.0 * cs - 1.0) * (d - cb),
    )


def _lum(c):
    return (c * _LUMA).sum(axis=-1, keepdims=True)


def _clip_color(c):
    lum = _lum(c)
    n = c.min(axis=-1, keepdims=True)
    x = c.max(axis=-1, keepdims=True)
    with np.errstate(divide="ignore", invalid="ignore"):
        c = np.where(n < 0.0, lum + (c - lum) * lum / (lum - n), c)
        c = np.where(x > 1.0, lum + (c - lum) * (1.0 - lum) / (x - lum), c)
    return np.nan_to_num(c)


def _set_lum(c, lum):
    return _clip_color(c + (lum - _lum(c)))


def _sat(c):
    return c.max(axis=-1, keepdims=True) - c.min(axis=-1, keepdims=True)


def _set_sat(c, s):
    span = _sat(c)
    with np.errstate(divide="ignore", invalid="ignore"):
        out = (c - c.min(axis=-1, keepdims=True)) * s / span
    return np.where(span > 0.0, out, 0.0)


# B(cb, cs) on straight (non-premultiplied) RGB
BLEND_MODES = {
    "multiply": lambda cb, cs: cb * cs,
    "screen": _screen,
    "overlay": lambda cb, cs: _hard_light(cs, cb),
    "darken": np.minimum,
    "lighten": np.maximum,
    "color-dodge": _color_dodge,
    "color-burn": _color_burn,
    "hard-light": _hard_light,
    "soft-light": _soft_light,
    "difference": lambda cb, cs: np.abs(cb - cs),
    "exclusion": lambda cb, cs: cb + cs - 2.0 * cb * cs,
    "hue": lambda cb, cs: _set_lum(_set_sat(cs, _sat(cb)), _lum(cb)),
    "saturation": lambda cb, cs: _set_lum(_set_sat(cb, _sat(cs)), _lum(cb)),
    "color": lambda cb, cs: _set_lum(cs, _lum(cb)),
    "luminosity": lambda cb, cs: _set_lum(cb, _lum(cs)),
}

COMPOSITE_OPERATIONS = tuple(sorted(set(PORTER_DUFF) | set(BLEND_MODES)))

TEXT_ALIGN = {"left": "l", "start": "l", "center": "m", "right": "r", "end": "r"}
TEXT_BASELINE = {
    "top": "t",
    "hanging": "t",
    "middle": "m",
    "alphabetic": "s",
    "ideographic": "d",
    "bottom": "d",
}


def text_anchor(align: str, baseline: str) -> str:
    """Translate canvas ``textAlign``/``textBaseline`` into a Pillow anchor."""
    return TEXT_ALIGN[align] + TEXT_BASELINE[baseline]


class Surface:
    """An RGBA drawing surface of fixed size.

    A surface carries drawing state (``global_alpha`` and
    ``composite_operation``) between calls, so it must not be shared by
    concurrent renders.
    """

    def __init__(self, width: int, height: int, smoothing: bool = False):
        self.width = width
        self.height = height
        self.smoothing = smoothing
        self.clear()

    def clear(self) -> None:
        """Make every pixel transparent and reset the drawing state."""
        self.pixels = np.zeros((self.height, self.width, 4), dtype=np.float64)
        self.global_alpha = 1.0
        self.composite_operation = "source-over"

    def fill(self, color: str) -> None:
        """Fill the whole surface with a CSS colour string."""
        rgba = np.array(ImageColor.getcolor(color, "RGBA"), dtype=np.float64) / 255.0
        self._composite(np.broadcast_to(rgba, self.pixels.shape))

    def draw_image(self, image: Image.Image) -> None:
        """Draw ``image`` scaled to the full surface."""
        image = image.convert("RGBA")
        if image.size != (self.width, self.height):
            resample = (
                Image.Resampling.BILINEAR
                if self.smoothing
                else Image.Resampling.NEAREST
            )
            image = image.resize((self.width, self.height), resample)
        self._composite(np.asarray(image, dtype=np.float64) / 255.0)

    def fill_text(
        self,
        text: str,
        xy: Tuple[float, float],
        font: ImageFont.ImageFont,
        color: str,
        anchor: str = "lt",
    ) -> None:
        layer = Image.new("RGBA", (self.width, self.height), (0, 0, 0, 0))
        if not isinstance(font, ImageFont.FreeTypeFont):
            # Bitmap fonts only support the default anchor
            anchor = None
        ImageDraw.Draw(layer).text(xy, text, fill=color, font=font, anchor=anchor)
        self._composite(np.asarray(layer, dtype=np.float64) / 255.0)

    def _composite(self, source: np.ndarray) -> None:
        a_s = source[..., 3:4] * self.global_alpha
        c_s = source[..., :3]
        c_b_p = self.pixels[..., :3]
        a_b = self.pixels[..., 3:4]

        operation = self.composite_operation
        if operation in BLEND_MODES:
            with np.errstate(divide="ignore", invalid="ignore"):
                c_b = np.where(a_b > 0.0, c_b_p / a_b, 0.0)
            mixed = (1.0 - a_b) * c_s + a_b * BLEND_MODES[operation](c_b, c_s)
            color = a_s * mixed + (1.0 - a_s) * c_b_p
            alpha = a_s + a_b * (1.0 - a_s)
        else:
            f_a, f_b = PORTER_DUFF[operation](a_s, a_b)
            color = f_a * a_s * c_s + f_b * c_b_p
            alpha = f_a * a_s + f_b * a_b

        color = np.broadcast_to(color, c_b_p.shape)
        alpha = np.broadcast_to(alpha, a_b.shape)
        self.pixels = np.clip(np.concatenate([color, alpha], axis=-1), 0.0, 1.0)

    def to_image(self) -> Image.Image:
        alpha = self.pixels[..., 3:4]
        with np.errstate(divide="ignore", invalid="ignore"):
            rgb = np.where(alpha > 0.0, self.pixels[..., :3] / alpha, 0.0)
        rgba = np.concatenate([np.clip(rgb, 0.0, 1.0), alpha], axis=-1)
        return Image.fromarray(np.round(rgba * 255.0).astype(np.uint8))

    def to_png(self) -> bytes:
        buffer = io.BytesIO()
        self.to_image().save(buffer, format="PNG")
        return buffer.getvalue()


class GifRecorder:
    """Collect snapshots of a surface and write them as an animated GIF."""

    def __init__(
        self, surface: Surface, path: pathlib.Path, repeat: int = 0, delay: int = 500
    ):
        self.surface = surface
        self.path = pathlib.Path(path)
        self.repeat = repeat
        self.delay = delay
        self.frames: List[Image.Image] = []

    def start(self) -> None:
        self.frames = []

    def add(self) -> None:
        self.frames.append(self.surface.to_image())

    def stop(self) -> Optional[pathlib.Path]:
        if not self.frames:
            return None
        options = {
            "save_all": True,
            "append_images": self.frames[1:],
            "duration": self.delay,
            "disposal": 2,
        }
        if self.repeat >= 0:
            options["loop"] = self.repeat
        self.frames[0].save(self.path, format="GIF", **options)
        return self.path
