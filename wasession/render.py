from __future__ import annotations

import sys
from typing import Optional, Protocol, TextIO

import qrcode


class CodeRenderer(Protocol):
    def render(self, code: str, destination: Optional[TextIO] = None) -> None:
        ...


class QRRenderer:
    """Prints a pairing code as a terminal QR code made of half blocks."""

    heading = "Scan the QR code below:"

    def render(self, code: str, destination: Optional[TextIO] = None) -> None:
        out = destination or sys.stdout
        qr = qrcode.QRCode(
            error_correction=qrcode.constants.ERROR_CORRECT_L,
            border=1,
        )
        qr.add_data(code)
        qr.make(fit=True)
        print(self.heading, file=out)
        qr.print_ascii(out=out, invert=True)
        out.flush()
