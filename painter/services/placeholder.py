from __future__ import annotations

import io

from PIL import Image, ImageDraw, ImageFont

_SIZE_PIXELS = {"1K": 1024, "2K": 2048, "4K": 4096}


def _dimensions(aspect_ratio: str | None, image_size: str | None) -> tuple[int, int]:
    # placeholders stay small; only the aspect ratio matters for layout checks
    long_side = min(_SIZE_PIXELS.get(image_size or "", 1024), 1024)
    try:
        w_ratio, h_ratio = [float(x) for x in (aspect_ratio or "1:1").split(":")]
    except ValueError:
        w_ratio, h_ratio = 1.0, 1.0
    if w_ratio <= 0 or h_ratio <= 0:
        w_ratio, h_ratio = 1.0, 1.0
    if w_ratio >= h_ratio:
        return long_side, max(1, round(long_side * h_ratio / w_ratio))
    return max(1, round(long_side * w_ratio / h_ratio)), long_side


def render_placeholder(
    prompt: str,
    *,
    aspect_ratio: str | None = None,
    image_size: str | None = None,
) -> bytes:
    """PNG stand-in used when ``MOCK_PAINTER`` is enabled."""

    width, height = _dimensions(aspect_ratio, image_size)
    img = Image.new("RGB", (width, height), "#f2f2f2")
    draw = ImageDraw.Draw(img)
    msg = f"[MOCK PAINTER]\n{prompt[:120]}"
    try:
        font = ImageFont.truetype("arial.ttf", 20)
    except OSError:
        font = ImageFont.load_default()
    tw, th = draw.multiline_textbbox((0, 0), msg, font=font, align="center")[2:]
    draw.multiline_text(
        ((width - tw) / 2, (height - th) / 2),
        msg,
        fill="#333",
        font=font,
        align="center",
    )

    bio = io.BytesIO()
    img.save(bio, "PNG")
    return bio.getvalue()
