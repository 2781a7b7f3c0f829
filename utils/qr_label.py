# utils/qr_label.py
import json
from io import BytesIO
from typing import Optional

import qrcode
from PIL import Image, ImageDraw, ImageFont

CAPTION_HEIGHT = 40


def qr_payload(element_id: int, paper_id: Optional[int] = None, is_valid: bool = True) -> str:
    data = {"id": element_id, "is_valid": bool(is_valid)}
    if paper_id:
        data["paper_id"] = paper_id
    return json.dumps(data, separators=(",", ":"))


def render_qr_label(element_id: int, caption: str, paper_id: Optional[int] = None, is_valid: bool = True) -> bytes:
    """QR of {id, paper_id?, is_valid} with a readable caption underneath, as JPEG bytes."""
    qr = qrcode.make(qr_payload(element_id, paper_id, is_valid)).convert("RGB")

    qr_width, qr_height = qr.size
    img = Image.new("RGB", (qr_width, qr_height + CAPTION_HEIGHT), "white")
    img.paste(qr, (0, 0))

    draw = ImageDraw.Draw(img)
    try:
        font = ImageFont.truetype("arial.ttf", 20)
    except OSError:
        font = ImageFont.load_default()

    bbox = draw.textbbox((0, 0), caption, font=font)
    text_width = bbox[2] - bbox[0]
    draw.text(((qr_width - text_width) // 2, qr_height + 10), caption, fill="black", font=font)

    buf = BytesIO()
    img.save(buf, format="JPEG", quality=90)
    return buf.getvalue()
