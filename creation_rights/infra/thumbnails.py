import io

import fitz  # PyMuPDF
from PIL import Image, UnidentifiedImageError

THUMBNAIL_SIZE = 320
THUMBNAIL_CONTENT_TYPE = "image/jpeg"

# Everything Pillow raises for undecodable or oversized input.
_DECODE_ERRORS = (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError, SyntaxError)


class ThumbnailError(Exception):
    pass


def _to_jpeg(img: Image.Image, size: int) -> bytes:
    img.thumbnail((size, size))
    if img.mode not in ("RGB", "L"):
        img = img.convert("RGB")
    out = io.BytesIO()
    img.save(out, format="JPEG", quality=85)
    return out.getvalue()


def image_thumbnail(data: bytes, size: int = THUMBNAIL_SIZE) -> bytes:
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            return _to_jpeg(img, size)
    except _DECODE_ERRORS as e:
        raise ThumbnailError(f"not a readable image: {e}") from e


def pdf_thumbnail(data: bytes, size: int = THUMBNAIL_SIZE, dpi: int = 72) -> bytes:
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except (RuntimeError, ValueError) as e:
        raise ThumbnailError(f"not a readable pdf: {e}") from e
    try:
        if doc.page_count == 0:
            raise ThumbnailError("pdf has no pages")
        zoom = dpi / 72.0
        try:
            pix = doc.load_page(0).get_pixmap(matrix=fitz.Matrix(zoom, zoom))
            png = pix.tobytes("png")
        except (RuntimeError, ValueError) as e:
            raise ThumbnailError(f"pdf page could not be rendered: {e}") from e
    finally:
        doc.close()
    return image_thumbnail(png, size)


def is_image(data: bytes) -> bool:
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.verify()
    except _DECODE_ERRORS:
        return False
    return True


def make_thumbnail(data: bytes, content_type: str, client_thumbnail: bytes | None = None) -> bytes | None:
    """JPEG preview for an upload, or None for media we cannot preview.

    Video frames are not decoded here; the client may send a captured frame.
    """
    if content_type.startswith("image/"):
        return image_thumbnail(data)
    if content_type == "application/pdf":
        return pdf_thumbnail(data)
    if content_type.startswith("video/") and client_thumbnail:
        return image_thumbnail(client_thumbnail)
    return None
