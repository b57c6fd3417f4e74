from __future__ import annotations

from typing import Iterable

from PIL import Image

LUMINANCE_THRESHOLD = 150
DARK_TEXT_COLOR = "#111827"
LIGHT_TEXT_COLOR = "#f5f7ff"
SAMPLE_SIZE = 50


def luminance(r: float, g: float, b: float) -> float:
    return 0.299 * r + 0.587 * g + 0.114 * b


def average_luminance(pixels: Iterable[tuple[int, ...]]) -> float | None:
    """Mean perceived brightness of ``(r, g, b[, a])`` pixels, ``None`` if empty."""
    total_r = total_g = total_b = 0
    count = 0
    for pixel in pixels:
        total_r += pixel[0]
        total_g += pixel[1]
        total_b += pixel[2]
        count += 1
    if not count:
        return None
    return luminance(total_r // count, total_g // count, total_b // count)


def choose_text_color(value: float | None) -> str:
    if value is None:
        return LIGHT_TEXT_COLOR
    return DARK_TEXT_COLOR if value > LUMINANCE_THRESHOLD else LIGHT_TEXT_COLOR


def sample_region(image: Image.Image, center_x: int, center_y: int, size: int = SAMPLE_SIZE) -> list:
    half = size // 2
    left = max(0, center_x - half)
    top = max(0, center_y - half)
    right = min(image.width, center_x + half)
    bottom = min(image.height, center_y + half)
    if right <= left or bottom <= top:
        return []
    region = image.convert("RGB").crop((left, top, right, bottom))
    pixels = region.load()
    return [
        pixels[x, y] for y in range(region.height) for x in range(region.width)
    ]


def suggest_text_color(image: Image.Image, ratio_x: float, ratio_y: float) -> str:
    center_x = int(image.width * ratio_x)
    center_y = int(image.height * ratio_y)
    return choose_text_color(average_luminance(sample_region(image, center_x, center_y)))
