# reporting_routes.py
"""
FastAPI routes for export functionality.
Produces a CSV of every analysis artifact or a PDF competitive battlecard.
"""

import csv
import io
from datetime import datetime
from typing import Dict, Any, List, Optional
from xml.sax.saxutils import escape
from fastapi import APIRouter, HTTPException, Depends
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session
import pandas as pd
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import cm, inch
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer

from backend.database import get_db
from backend.dataset_routes import get_dataset_or_404
from backend.analysis_routes import (
    load_competitors, load_insights, load_action_items, ordered_quotes, sentiment_label
)
from backend.models import Dataset, Competitor, InsightTheme, ActionItem

# ============================================
# ROUTER CONFIGURATION
# ============================================

router = APIRouter(prefix="/api", tags=["reports"])

EXPORT_FORMATS = ("pdf", "csv")

CSV_COLUMNS = [
    "Type", "Title", "Description", "Category", "Impact", "Confidence",
    "Source Quote", "Source Platform", "Source Rating", "Source Date", "Source Product",
]

CSV_FILENAME = "reviewintel-export.csv"
PDF_FILENAME = "reviewintel-battlecard.pdf"
PDF_MAX_QUOTES = 3


class ExportRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    dataset_id: Optional[str] = Field(None, alias="datasetId")
    format: Optional[str] = "pdf"

# ============================================
# HELPER FUNCTIONS
# ============================================

def generate_report_data(dataset: Dataset, db: Session) -> Dict[str, Any]:
    """Collect everything an export needs for one dataset"""
    return {
        "dataset_name": dataset.name,
        "competitors": load_competitors(db, dataset),
        "insights": load_insights(db, dataset),
        "action_items": load_action_items(db, dataset),
    }


def format_number(value: Optional[float]) -> str:
    """4.0 -> '4', 0.85 -> '0.85'"""
    if value is None:
        return ""
    return f"{value:g}"


def quote_confidence_label(quote_count: int) -> str:
    """Battlecard confidence, from the number of supporting quotes"""
    if quote_count >= 5:
        return "High"
    if quote_count >= 2:
        return "Medium"
    return "Low"


def build_export_rows(competitors: List[Competitor], insights: List[InsightTheme],
                      action_items: List[ActionItem]) -> List[List[str]]:
    """
    Flatten the analysis into CSV rows.

    - Insight: one row per source quote (a single row when it has none)
    - Competitor: mention count as description, sentiment as confidence
    - Action Item: priority in the impact column
    """
    rows = []

    for insight in insights:
        base = [
            "Insight", insight.title, insight.description or "", insight.category,
            insight.impact, format_number(insight.confidence_score),
        ]
        quotes = ordered_quotes(insight.source_quotes)
        if not quotes:
            rows.append(base + ["", "", "", "", ""])
        for sq in quotes:
            rows.append(base + [
                sq.claim.quote_text,
                sq.review.platform,
                format_number(sq.review.rating),
                sq.review.review_date,
                sq.review.product_name,
            ])

    for comp in competitors:
        rows.append([
            "Competitor", comp.name, f"{comp.mention_count} mentions", "", "",
            format_number(comp.avg_sentiment), "", "", "", "", "",
        ])

    for item in action_items:
        rows.append([
            "Action Item", item.title, item.description or "", "", item.priority,
            "", "", "", "", "", "",
        ])

    return rows


def generate_csv(report_data: Dict[str, Any]) -> bytes:
    rows = build_export_rows(
        report_data["competitors"], report_data["insights"], report_data["action_items"]
    )
    df = pd.DataFrame(rows, columns=CSV_COLUMNS)

    output = io.StringIO()
    df.to_csv(output, index=False, quoting=csv.QUOTE_ALL, lineterminator="\n")
    return output.getvalue().encode("utf-8")


def generate_pdf(report_data: Dict[str, Any]) -> bytes:
    """Render the competitive battlecard with reportlab"""
    output = io.BytesIO()
    doc = SimpleDocTemplate(output, pagesize=A4, topMargin=1*cm, bottomMargin=1*cm,
                            title="ReviewIntel Competitive Battlecard")

    elements = []
    styles = getSampleStyleSheet()

    # Custom styles
    title_style = ParagraphStyle(
        'BattlecardTitle',
        parent=styles['Heading1'],
        fontSize=20,
        spaceAfter=12,
        alignment=TA_CENTER,
        textColor=colors.HexColor('#1e40af')
    )

    heading_style = ParagraphStyle(
        'BattlecardHeading',
        parent=styles['Heading2'],
        fontSize=14,
        spaceBefore=15,
        spaceAfter=10,
        textColor=colors.HexColor('#1e3a8a')
    )

    item_title_style = ParagraphStyle(
        'ItemTitle',
        parent=styles['Normal'],
        fontName='Helvetica-Bold',
        fontSize=11,
        spaceBefore=8,
        spaceAfter=4
    )

    quote_style = ParagraphStyle(
        'Quote',
        parent=styles['Normal'],
        fontSize=8,
        leftIndent=16,
        textColor=colors.HexColor('#505050')
    )

    # Title
    elements.append(Paragraph("ReviewIntel Competitive Battlecard", title_style))

    # Metadata
    meta_text = (f"Generated from: {escape(report_data['dataset_name'])}"
                 f" | Date: {datetime.now().strftime('%Y-%m-%d')}")
    elements.append(Paragraph(meta_text, styles['Normal']))
    elements.append(Spacer(1, 20))

    # Competitors Section
    elements.append(Paragraph("Competitors Analyzed", heading_style))
    if report_data["competitors"]:
        comp_data = [["Competitor", "Mentions", "Sentiment", "Score"]]
        for comp in report_data["competitors"]:
            comp_data.append([
                comp.name[:40],
                str(comp.mention_count),
                sentiment_label(comp.avg_sentiment),
                f"{comp.avg_sentiment:+.2f}",
            ])

        comp_table = Table(comp_data, colWidths=[2.6*inch, 1*inch, 1.2*inch, 1*inch])
        comp_table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor('#3b82f6')),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.white),
            ('ALIGN', (0, 0), (-1, -1), 'CENTER'),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), 9),
            ('BOTTOMPADDING', (0, 0), (-1, 0), 10),
            ('GRID', (0, 0), (-1, -1), 1, colors.HexColor('#e2e8f0')),
            ('ROWBACKGROUNDS', (0, 1), (-1, -1), [colors.white, colors.HexColor('#f1f5f9')])
        ]))
        elements.append(comp_table)
    else:
        elements.append(Paragraph("No competitors identified.", styles['Normal']))
    elements.append(Spacer(1, 20))

    # Insights Section
    elements.append(Paragraph("Key Insights", heading_style))
    for insight in report_data["insights"]:
        quotes = ordered_quotes(insight.source_quotes)
        label = quote_confidence_label(len(quotes))
        elements.append(Paragraph(
            f"{escape(insight.title)} [{label} Confidence - {len(quotes)} sources]",
            item_title_style
        ))
        if insight.description:
            elements.append(Paragraph(escape(insight.description), styles['Normal']))

        if quotes:
            elements.append(Paragraph("Sources:", quote_style))
            for sq in quotes[:PDF_MAX_QUOTES]:
                review = sq.review
                source = (f'"{sq.claim.quote_text}" - {review.product_name}, {review.platform}, '
                          f'{format_number(review.rating)}/5, {review.review_date}')
                elements.append(Paragraph(escape(source), quote_style))
        elements.append(Spacer(1, 6))

    # Actions Section
    elements.append(Paragraph("Action Items", heading_style))
    for item in report_data["action_items"]:
        elements.append(Paragraph(
            f"[{item.priority.upper()}] {escape(item.title)}",
            item_title_style
        ))
        if item.description:
            elements.append(Paragraph(escape(item.description), styles['Normal']))

    # Build PDF
    doc.build(elements)
    return output.getvalue()

# ============================================
# EXPORT ENDPOINT
# ============================================

@router.post("/export")
async def export_dataset(request: ExportRequest, db: Session = Depends(get_db)):
    """
    Export the analysis of a dataset.

    Body: {"datasetId": "...", "format": "pdf" | "csv"} (format defaults to pdf)

    Returns:
        StreamingResponse: file download

    Raises:
        HTTPException 400: Missing datasetId or unknown format
        HTTPException 404: Dataset not found
        HTTPException 500: Export error
    """
    if not request.dataset_id:
        raise HTTPException(status_code=400, detail="Missing datasetId.")

    export_format = (request.format or "pdf").lower()
    if export_format not in EXPORT_FORMATS:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid format. Must be one of: {', '.join(EXPORT_FORMATS)}"
        )

    dataset = get_dataset_or_404(db, request.dataset_id)

    try:
        report_data = generate_report_data(dataset, db)

        if export_format == "csv":
            content = generate_csv(report_data)
            media_type = "text/csv"
            filename = CSV_FILENAME
        else:
            content = generate_pdf(report_data)
            media_type = "application/pdf"
            filename = PDF_FILENAME

        print(f"✅ Export {export_format} generated for {dataset.name} ({len(content)} bytes)")

        return StreamingResponse(
            io.BytesIO(content),
            media_type=media_type,
            headers={"Content-Disposition": f'attachment; filename="{filename}"'}
        )

    except HTTPException:
        raise
    except Exception as e:
        print(f"❌ Export error: {e}")
        raise HTTPException(status_code=500, detail="Failed to generate export.")
