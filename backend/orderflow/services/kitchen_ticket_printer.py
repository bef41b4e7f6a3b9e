"""ESC/POS kitchen ticket printer.

Renders a POS-80 kitchen ticket for an order and sends it to one of:
- file: writes the rendered ticket under ``printer_spool_dir`` (a ``.bin``
  with the raw ESC/POS bytes and a ``.txt`` preview)
- network: raw TCP to the printer (port 9100)
- disabled: renders nothing and reports success
"""

import logging
import socket
from dataclasses import dataclass
from datetime import datetime, timezone
from io import BytesIO
from pathlib import Path
from typing import List, Optional

from orderflow.core.config import Settings, get_settings
from orderflow.schemas.order import OrderDetail

logger = logging.getLogger(__name__)


# ============================================================================
# ESC/POS Command Constants
# ============================================================================

class ESC:
    """ESC/POS command bytes."""

    INIT = b'\x1b\x40'  # Initialize printer
    CUT_PARTIAL = b'\x1d\x56\x01'
    FEED_LINES = b'\x1b\x64'  # Feed n lines
    BEEP = b'\x1b\x42'

    BOLD_ON = b'\x1b\x45\x01'
    BOLD_OFF = b'\x1b\x45\x00'
    DOUBLE_HEIGHT_ON = b'\x1b\x21\x10'
    DOUBLE_SIZE_ON = b'\x1b\x21\x30'
    NORMAL_SIZE = b'\x1b\x21\x00'

    ALIGN_LEFT = b'\x1b\x61\x00'
    ALIGN_CENTER = b'\x1b\x61\x01'

    CHARSET_PC850 = b'\x1b\x74\x02'  # Multilingual


@dataclass
class TicketLine:
    text: str
    bold: bool = False
    double_height: bool = False
    double_size: bool = False
    center: bool = False


@dataclass
class PrintResult:
    success: bool
    rendered_path: Optional[str] = None
    message: Optional[str] = None


class KitchenTicketPrinter:
    """Renders and prints kitchen tickets."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.width = self.settings.ticket_width_chars

    # ===== RENDERING =====

    def build_lines(self, detail: OrderDetail, is_reprint: bool = False) -> List[TicketLine]:
        """Ticket content, independent of the output encoding."""
        lines: List[TicketLine] = []

        if is_reprint:
            lines.append(TicketLine("*** REPRINT ***", bold=True, double_size=True, center=True))

        lines.append(TicketLine("KITCHEN", bold=True, double_height=True, center=True))
        lines.append(TicketLine(f"Order {detail.folio}", bold=True, double_height=True, center=True))
        lines.append(TicketLine(self._divider("=")))

        if detail.is_takeout:
            lines.append(TicketLine("TAKEOUT", bold=True))
            if detail.customer_name:
                lines.append(TicketLine(f"Customer: {detail.customer_name}"))
            if detail.customer_phone:
                lines.append(TicketLine(f"Phone: {detail.customer_phone}"))
            if detail.pickup_time:
                lines.append(TicketLine(f"Pickup: {detail.pickup_time.strftime('%H:%M')}", bold=True))
        else:
            lines.append(TicketLine(f"Table: {detail.table_id}", bold=True))
            if detail.customer_name:
                lines.append(TicketLine(f"Customer: {detail.customer_name}"))

        lines.append(TicketLine(f"Placed: {detail.created_at.strftime('%Y-%m-%d %H:%M')}"))
        if detail.estimated_prep_minutes:
            lines.append(TicketLine(f"Prep estimate: {detail.estimated_prep_minutes} min"))
        lines.append(TicketLine(self._divider("=")))

        for item in detail.items:
            name = item.product_name
            if item.size_label:
                name = f"{name} ({item.size_label})"
            lines.append(TicketLine(self._truncate(f"{item.quantity}x {name}"), bold=True, double_height=True))
            for modifier in item.modifiers:
                lines.append(TicketLine(self._truncate(f"    >> {modifier.option_name}")))
            if item.note:
                lines.append(TicketLine(self._truncate(f"    NOTE: {item.note}"), bold=True))

        lines.append(TicketLine(self._divider("-")))
        printed_at = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
        lines.append(TicketLine(f"Printed: {printed_at}", center=True))
        return lines

    def render(self, detail: OrderDetail, is_reprint: bool = False) -> bytes:
        """Raw ESC/POS bytes for the ticket."""
        data = BytesIO()
        data.write(ESC.INIT)
        data.write(ESC.CHARSET_PC850)

        for line in self.build_lines(detail, is_reprint):
            data.write(ESC.ALIGN_CENTER if line.center else ESC.ALIGN_LEFT)
            if line.bold:
                data.write(ESC.BOLD_ON)
            if line.double_size:
                data.write(ESC.DOUBLE_SIZE_ON)
            elif line.double_height:
                data.write(ESC.DOUBLE_HEIGHT_ON)

            data.write(line.text.encode("cp850", errors="replace"))
            data.write(b'\n')

            if line.bold:
                data.write(ESC.BOLD_OFF)
            if line.double_size or line.double_height:
                data.write(ESC.NORMAL_SIZE)

        data.write(ESC.FEED_LINES + b'\x03')
        data.write(ESC.CUT_PARTIAL)
        data.write(ESC.BEEP + b'\x03\x03')
        return data.getvalue()

    def render_text(self, detail: OrderDetail, is_reprint: bool = False) -> str:
        """Plain-text preview of the ticket."""
        rendered = []
        for line in self.build_lines(detail, is_reprint):
            rendered.append(line.text.center(self.width).rstrip() if line.center else line.text)
        return "\n".join(rendered) + "\n"

    # ===== OUTPUT =====

    def render_and_print(self, detail: OrderDetail, is_reprint: bool = False) -> PrintResult:
        """Render the ticket and send it to the configured output.

        Never raises for device errors; they are reported in the result.
        """
        mode = self.settings.printer_mode
        if mode == "disabled":
            return PrintResult(success=True, message="Printing disabled")

        try:
            if mode == "network":
                self._send(self.render(detail, is_reprint))
                result = PrintResult(
                    success=True,
                    message=f"Sent to {self.settings.printer_host}:{self.settings.printer_port}",
                )
            else:
                path = self._spool(detail, is_reprint)
                result = PrintResult(success=True, rendered_path=str(path))
        except OSError as e:
            logger.error(f"Failed to print ticket {detail.folio}: {e}")
            return PrintResult(success=False, message=str(e))

        logger.info(f"Printed kitchen ticket {detail.folio} (reprint={is_reprint}, mode={mode})")
        return result

    def _spool(self, detail: OrderDetail, is_reprint: bool) -> Path:
        spool_dir = Path(self.settings.printer_spool_dir)
        spool_dir.mkdir(parents=True, exist_ok=True)

        stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S%f")
        suffix = "-reprint" if is_reprint else ""
        base = spool_dir / f"{detail.folio}-{stamp}{suffix}"

        base.with_suffix(".bin").write_bytes(self.render(detail, is_reprint))
        text_path = base.with_suffix(".txt")
        text_path.write_text(self.render_text(detail, is_reprint), encoding="utf-8")
        return text_path

    def _send(self, payload: bytes) -> None:
        host = self.settings.printer_host
        port = self.settings.printer_port
        with socket.create_connection((host, port), timeout=self.settings.printer_timeout_seconds) as sock:
            sock.sendall(payload)

    def _divider(self, char: str) -> str:
        return char * self.width

    def _truncate(self, text: str) -> str:
        if len(text) <= self.width:
            return text
        return text[: self.width - 2] + ".."
