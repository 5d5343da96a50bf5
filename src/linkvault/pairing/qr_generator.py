"""QR code generation for pairing.

Renders the pairing payload issued by the protocol layer as a PNG data URL
for JSON clients or a standalone HTML page for browsers.
"""

import base64
import html
import io

import qrcode
from qrcode.main import QRCode


class QrGenerator:
    """Generate QR codes for a pairing payload."""

    def __init__(self, payload: str):
        """Initialize QR generator.

        Args:
            payload: Scannable string from the protocol layer.
        """
        self.payload = payload

    def _create_qr(self) -> QRCode:
        """Create QR code object.

        Returns:
            QRCode instance with payload data.
        """
        qr = qrcode.QRCode(
            version=None,  # Auto-size
            error_correction=qrcode.constants.ERROR_CORRECT_M,
            box_size=10,
            border=4,
        )
        qr.add_data(self.payload)
        qr.make(fit=True)
        return qr

    def to_png_bytes(self) -> bytes:
        """Render as PNG bytes."""
        qr = self._create_qr()
        img = qr.make_image(fill_color="black", back_color="white")

        buffer = io.BytesIO()
        img.save(buffer, format="PNG")
        return buffer.getvalue()

    def to_data_url(self) -> str:
        """Render as a data:image/png;base64 URL."""
        img_b64 = base64.b64encode(self.to_png_bytes()).decode("ascii")
        return f"data:image/png;base64,{img_b64}"

    def to_html(self, session_id: str, data_url: str | None = None) -> str:
        """Generate HTML with embedded QR code.

        Args:
            session_id: Shown under the code so the user can look it up later.
            data_url: Already rendered data URL, to avoid rendering twice.

        Returns:
            Complete HTML document with embedded QR code image.
        """
        src = data_url or self.to_data_url()
        return f"""<!DOCTYPE html>
<html>
<head>
    <title>Link a Device</title>
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <style>
        body {{
            display: flex;
            flex-direction: column;
            align-items: center;
            justify-content: center;
            min-height: 100vh;
            margin: 0;
            background: #1a1a1a;
            color: #fff;
            font-family: system-ui, sans-serif;
        }}
        h1 {{ margin-bottom: 20px; }}
        img {{ width: 300px; height: 300px; border: 10px solid white; border-radius: 10px; }}
        p {{ margin-top: 20px; color: #888; }}
        code {{ color: #ccc; }}
    </style>
</head>
<body>
    <h1>Scan to Link</h1>
    <img src="{src}" alt="QR Code">
    <p>WhatsApp &rarr; Linked devices &rarr; Link a device</p>
    <p>Session: <code>{html.escape(session_id)}</code></p>
</body>
</html>
"""
