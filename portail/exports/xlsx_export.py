from __future__ import annotations

from datetime import date
from io import BytesIO
from typing import Iterable

from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter

from portail.formulaires.schema import FormDefinition, SubmissionRecord
from .csv_export import BACKOFFICE_HEADERS, backoffice_row


def _safe_sheet_title(name: str, fallback: str = "Inscriptions") -> str:
    """Openpyxl: 31 caractères max, pas de [ ] : * ? / \\"""
    if not name:
        name = fallback
    bad = set("[]:*?/\\")
    cleaned = "".join(c for c in name if c not in bad).strip()
    return cleaned[:31] if cleaned else fallback


def build_submissions_workbook(
    submissions: Iterable[SubmissionRecord],
    forms: Iterable[FormDefinition],
    title: str = "Inscriptions",
) -> Workbook:
    """Liste back-office (mêmes colonnes que l'export CSV) + feuille de synthèse par filière."""
    forms = list(forms)
    submissions = list(submissions)
    by_id = {f.id: f for f in forms}

    wb = Workbook()
    ws = wb.active
    ws.title = _safe_sheet_title(title)
    ws.append(BACKOFFICE_HEADERS)
    header_fill = PatternFill("solid", fgColor="1E40AF")
    for cell in ws[1]:
        cell.font = Font(bold=True, color="FFFFFF")
        cell.fill = header_fill
    for s in submissions:
        ws.append(backoffice_row(s, by_id.get(s.form_id)))
        # Une réponse commençant par "=" reste du texte, jamais une formule
        for cell in ws[ws.max_row]:
            if cell.data_type == "f":
                cell.data_type = "s"
    ws.freeze_panes = "A2"

    widths = {1: 16, 2: 30, 3: 28, 4: 18, 20: 30}
    for col_idx in range(1, len(BACKOFFICE_HEADERS) + 1):
        ws.column_dimensions[get_column_letter(col_idx)].width = widths.get(col_idx, 16)

    # Synthèse : nombre d'inscrits par filière (1er choix) et statut
    ws0 = wb.create_sheet("Synthese")
    ws0.append(["Filière", "En attente", "Approuvé", "Rejeté", "Total"])
    for cell in ws0[1]:
        cell.font = Font(bold=True)
    counts: dict[str, dict[str, int]] = {}
    for s in submissions:
        key = s.filiere_name or "Non spécifiée"
        row = counts.setdefault(key, {"pending": 0, "approved": 0, "rejected": 0})
        if s.status in row:
            row[s.status] += 1
    for name in sorted(counts):
        c = counts[name]
        ws0.append([name, c["pending"], c["approved"], c["rejected"], sum(c.values())])
    ws0.append([])
    ws0.append(["Total", None, None, None, len(submissions)])
    ws0.column_dimensions["A"].width = 34
    for col in "BCDE":
        ws0.column_dimensions[col].width = 14

    return wb


def export_submissions_xlsx(submissions: Iterable[SubmissionRecord], forms: Iterable[FormDefinition]) -> bytes:
    wb = build_submissions_workbook(submissions, forms)
    buff = BytesIO()
    wb.save(buff)
    return buff.getvalue()


def xlsx_filename(today: date | None = None) -> str:
    today = today or date.today()
    return f"inscriptions_istm_{today.isoformat()}.xlsx"
