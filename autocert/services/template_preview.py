import re
import time
from dataclasses import dataclass
from io import BytesIO

from PIL import Image
from PyPDF2 import PdfReader

from ..shared.storage import read_blob

_CACHE_TTL_SECONDS = 45
_PREVIEW_SCALE = 1.0


@dataclass(frozen=True)
class PreviewSurface:
    image: Image.Image
    page_width: float
    page_height: float


_preview_cache: dict[tuple[int, str], tuple[float, PreviewSurface]] = {}


def _render_pdf_background(data: bytes, scale: float) -> tuple[Image.Image, float, float]:
    """Rasterize the placed image XObjects of a PDF's first page onto white.

    Vector content is not drawn; certificate templates exported from design
    tools are overwhelmingly a single full-page image.
    """
    reader = PdfReader(BytesIO(data))
    page = reader.pages[0]
    width = float(page.mediabox.width)
    height = float(page.mediabox.height)
    canvas = Image.new(
        "RGB",
        (max(1, int(round(width * scale))), max(1, int(round(height * scale)))),
        "white",
    )
    content = page.get_contents()
    if content is None:
        return canvas, width, height
    commands = content.get_data().decode("latin-1")
    pattern = re.compile(r"([\d\.\-\s]+)cm\s+/([\w\.\-]+)\s+Do")
    resources = page.get("/Resources")
    xobjects = resources.get_object().get("/XObject") if resources else None
    if xobjects:
        xobjects = xobjects.get_object()
        for match in pattern.finditer(commands):
            numbers = match.group(1).strip().split()[-6:]
            if len(numbers) != 6:
                continue
            try:
                a, b, c, d, e, f = (float(x) for x in numbers)
            except ValueError:
                continue
            stream = xobjects.get("/" + match.group(2))
            if not stream:
                continue
            data_bytes = stream.get_object().get_data()
            try:
                image = Image.open(BytesIO(data_bytes)).convert("RGB")
            except Exception:
                continue
            width_pt = abs(a)
            height_pt = abs(d)
            w_px = max(1, int(round(width_pt * scale)))
            h_px = max(1, int(round(height_pt * scale)))
            image = image.resize((w_px, h_px))
            y_top_pt = f + height_pt if d > 0 else f
            x_px = int(round(e * scale))
            y_px = int(round((height - y_top_pt) * scale))
            canvas.paste(image, (x_px, y_px))
    return canvas, width, height


def render_preview_surface(template) -> PreviewSurface:
    cache_key = (template.id, template.stored_path)
    cached = _preview_cache.get(cache_key)
    now = time.time()
    if cached and now - cached[0] < _CACHE_TTL_SECONDS:
        return cached[1]

    data = read_blob(template.stored_path)
    if template.is_pdf:
        image, width, height = _render_pdf_background(data, _PREVIEW_SCALE)
    else:
        with Image.open(BytesIO(data)) as source:
            image = source.convert("RGB")
        width, height = float(image.width), float(image.height)

    surface = PreviewSurface(image=image, page_width=width, page_height=height)
    _preview_cache[cache_key] = (now, surface)
    return surface


def preview_png(template) -> bytes:
    surface = render_preview_surface(template)
    buffer = BytesIO()
    surface.image.save(buffer, format="PNG")
    return buffer.getvalue()


def clear_preview_cache(template_id: int | None = None) -> None:
    if template_id is None:
        _preview_cache.clear()
        return
    for key in [k for k in _preview_cache if k[0] == template_id]:
        _preview_cache.pop(key, None)
