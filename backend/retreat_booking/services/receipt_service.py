"""
PDF booking receipt, attached to the confirmation email.
"""

import io
from typing import Optional

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import cm
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer, Table, TableStyle
from reportlab.platypus.flowables import HRFlowable

from retreat_booking.core.config import Settings, get_settings
from retreat_booking.models.booking import Booking

PRIMARY = colors.HexColor("#81a085")
TITLE = colors.HexColor("#4e6351")


def format_amount(amount: int, currency: str) -> str:
    """Minor units to a display string: 125000, 'eur' -> '1250.00 EUR'."""
    return f"{amount / 100:.2f} {currency.upper()}"


class ReceiptGenerator:
    """Renders a one-page A4 receipt. Pure function of the booking row."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.styles = getSampleStyleSheet()
        self.styles.add(ParagraphStyle(
            name="ReceiptTitle",
            parent=self.styles["Heading1"],
            fontSize=20,
            textColor=TITLE,
            spaceAfter=6,
        ))
        self.styles.add(ParagraphStyle(
            name="ReceiptHeading",
            parent=self.styles["Heading2"],
            fontSize=13,
            textColor=TITLE,
            spaceBefore=14,
            spaceAfter=6,
        ))

    def render(self, booking: Booking) -> bytes:
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            topMargin=2 * cm,
            bottomMargin=2 * cm,
            leftMargin=2 * cm,
            rightMargin=2 * cm,
            title=f"Booking {booking.id}",
            author=self.settings.APP_NAME,
        )

        normal = self.styles["Normal"]
        heading = self.styles["ReceiptHeading"]
        story = [
            Paragraph("BOOKING CONFIRMATION", self.styles["ReceiptTitle"]),
            Paragraph(f"Reference {booking.id}", normal),
            Spacer(1, 8),
            HRFlowable(width="100%", thickness=2, color=PRIMARY),
            Paragraph("Retreat", heading),
            Paragraph(booking.retreat_name, normal),
            Paragraph("Dates", heading),
            Paragraph(
                f"{booking.session_start:%d/%m/%Y} to {booking.session_end:%d/%m/%Y}",
                normal,
            ),
        ]

        if booking.retreat_address:
            story += [Paragraph("Meeting point", heading), Paragraph(booking.retreat_address, normal)]

        rows = [["Participant", "Email"]]
        for participant in booking.participants or []:
            rows.append([
                f"{participant.get('first_name', '')} {participant.get('last_name', '')}".strip(),
                participant.get("email", ""),
            ])
        table = Table(rows, colWidths=[8 * cm, 9 * cm])
        table.setStyle(TableStyle([
            ("BACKGROUND", (0, 0), (-1, 0), PRIMARY),
            ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
            ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
            ("GRID", (0, 0), (-1, -1), 0.5, colors.lightgrey),
        ]))
        story += [Paragraph("Participants", heading), table]

        story += [
            Paragraph("Total paid", heading),
            Paragraph(
                f"{booking.seat_count} seat(s), {format_amount(booking.total_price, booking.currency)}",
                normal,
            ),
            Paragraph("Contact", heading),
            Paragraph(self.settings.ADMIN_EMAIL, normal),
        ]

        doc.build(story)
        return buffer.getvalue()
