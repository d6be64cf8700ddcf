import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter
from sqlalchemy import func
from sqlalchemy.orm import Session

from marketing_data.models import Client, Product, Report, Sale, Stock

log = logging.getLogger(__name__)

HEADER_FONT = Font(bold=True)
TITLE_FONT = Font(bold=True, size=16)
MONEY = "$#,##0.00"


def generate_report(db: Session, out_dir: Path, description: Optional[str] = None) -> Report:
    """
    Write the sales workbook (Sales, Clients, Stock, Summary sheets) into
    `out_dir` and record it in the reports table.
    """
    now = datetime.now()
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    path = _free_path(out_dir, f"sales_report_{now:%Y-%m-%d_%H%M}")
    file_name = path.name
    log.info("generating report %s", path)

    wb = Workbook()
    sales_total = _sales_sheet(wb.active, db, now)
    _clients_sheet(wb.create_sheet("Clients"), db)
    _stock_sheet(wb.create_sheet("Stock"), db)
    _summary_sheet(wb.create_sheet("Summary"), db, now, sales_total)
    wb.save(path)

    report = Report(
        name=f"Sales report {now:%Y-%m-%d %H:%M}",
        description=description or "Sales, clients and stock snapshot",
        file_name=file_name,
        path=str(path),
        created_at=now,
    )
    db.add(report)
    db.commit()
    db.refresh(report)
    log.info("report %s stored as id=%s", file_name, report.id)
    return report


def _free_path(out_dir: Path, stem: str) -> Path:
    """First of stem.xlsx, stem_2.xlsx, ... not already on disk."""
    path = out_dir / f"{stem}.xlsx"
    n = 2
    while path.exists():
        path = out_dir / f"{stem}_{n}.xlsx"
        n += 1
    return path


# --- Sheets ---

def _header(ws, row: int, titles: list[str], fill: str) -> None:
    for col, title in enumerate(titles, start=1):
        cell = ws.cell(row=row, column=col, value=title)
        cell.font = HEADER_FONT
        cell.fill = PatternFill("solid", fgColor=fill)

def _autosize(ws) -> None:
    for col in ws.columns:
        width = max((len(str(c.value)) for c in col if c.value is not None), default=8)
        ws.column_dimensions[get_column_letter(col[0].column)].width = min(width + 2, 60)

def _sales_sheet(ws, db: Session, now: datetime) -> float:
    ws.title = "Sales"
    ws["A1"] = "SALES REPORT"
    ws["A1"].font = TITLE_FONT
    ws["A2"] = f"Date: {now:%d/%m/%Y}"
    ws["A2"].font = HEADER_FONT
    _header(ws, 4, ["ID", "Date", "Client", "Product", "Quantity", "Unit price", "Total"], "ADD8E6")

    row = 5
    grand_total = 0.0
    for s in db.query(Sale).order_by(Sale.sold_at, Sale.id).all():
        ws.cell(row=row, column=1, value=s.id)
        ws.cell(row=row, column=2, value=s.sold_at.strftime("%d/%m/%Y %H:%M") if s.sold_at else None)
        ws.cell(row=row, column=3, value=s.client.name if s.client else None)
        ws.cell(row=row, column=4, value=s.product.name if s.product else None)
        ws.cell(row=row, column=5, value=s.quantity)
        ws.cell(row=row, column=6, value=s.unit_price).number_format = MONEY
        ws.cell(row=row, column=7, value=s.total).number_format = MONEY
        grand_total += s.total or 0.0
        row += 1

    ws.cell(row=row + 1, column=6, value="TOTAL:").font = HEADER_FONT
    total_cell = ws.cell(row=row + 1, column=7, value=grand_total)
    total_cell.font = HEADER_FONT
    total_cell.number_format = MONEY
    total_cell.fill = PatternFill("solid", fgColor="FFFF00")
    _autosize(ws)
    return grand_total

def _clients_sheet(ws, db: Session) -> None:
    ws["A1"] = "CLIENTS"
    ws["A1"].font = TITLE_FONT
    _header(ws, 3, ["Client", "Email", "Total purchases", "Last purchase"], "90EE90")

    totals = (
        db.query(Client, func.coalesce(func.sum(Sale.total), 0.0), func.max(Sale.sold_at))
        .outerjoin(Sale, Sale.client_id == Client.id)
        .group_by(Client.id)
        .order_by(Client.name)
        .all()
    )
    for row, (c, spent, last) in enumerate(totals, start=4):
        ws.cell(row=row, column=1, value=c.name)
        ws.cell(row=row, column=2, value=c.email)
        ws.cell(row=row, column=3, value=float(spent)).number_format = MONEY
        ws.cell(row=row, column=4, value=last.strftime("%d/%m/%Y") if last else None)
    _autosize(ws)

def _stock_sheet(ws, db: Session) -> None:
    ws["A1"] = "STOCK"
    ws["A1"].font = TITLE_FONT
    _header(ws, 3, ["Product", "Category", "Branch", "Location", "Quantity"], "FFA500")

    rows = db.query(Stock).order_by(Stock.product_id, Stock.id).all()
    for row, st in enumerate(rows, start=4):
        ws.cell(row=row, column=1, value=st.product.name if st.product else None)
        ws.cell(row=row, column=2, value=st.product.category if st.product else None)
        ws.cell(row=row, column=3, value=st.branch)
        ws.cell(row=row, column=4, value=st.location)
        ws.cell(row=row, column=5, value=st.quantity)
    _autosize(ws)

def _summary_sheet(ws, db: Session, now: datetime, sales_total: float) -> None:
    ws["A1"] = "SUMMARY"
    ws["A1"].font = TITLE_FONT
    lines = [
        ("Generated at", now.strftime("%d/%m/%Y %H:%M")),
        ("Clients", db.query(func.count(Client.id)).scalar()),
        ("Products", db.query(func.count(Product.id)).scalar()),
        ("Sales", db.query(func.count(Sale.id)).scalar()),
        ("Sales total", sales_total),
        ("Units in stock", db.query(func.coalesce(func.sum(Stock.quantity), 0)).scalar()),
    ]
    for row, (label, value) in enumerate(lines, start=3):
        ws.cell(row=row, column=1, value=label).font = HEADER_FONT
        ws.cell(row=row, column=2, value=value)
    ws.cell(row=7, column=2).number_format = MONEY
    _autosize(ws)
