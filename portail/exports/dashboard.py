from __future__ import annotations

import unicodedata
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from io import BytesIO
from typing import Iterable

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas

from portail.formulaires.schema import FormDefinition, SubmissionRecord, from_iso
from .pdf import DEFAULT_INSTITUTION, MUTED, PRIMARY, SECONDARY, TEXT

HOMMES = {"masculin", "homme", "m"}
FEMMES = {"feminin", "femme", "f"}

MOIS = [
    "janvier", "février", "mars", "avril", "mai", "juin",
    "juillet", "août", "septembre", "octobre", "novembre", "décembre",
]


def _plain(s: str) -> str:
    s = unicodedata.normalize("NFKD", s or "")
    return "".join(ch for ch in s if not unicodedata.combining(ch)).strip().lower()


@dataclass
class FiliereStats:
    name: str
    total: int = 0
    mentions: Counter = field(default_factory=Counter)


@dataclass
class DashboardStats:
    total: int = 0
    approved: int = 0
    pending: int = 0
    rejected: int = 0
    hommes: int = 0
    femmes: int = 0
    filieres: dict[str, FiliereStats] = field(default_factory=dict)
    daily: list[tuple[str, int]] = field(default_factory=list)

    @property
    def approval_rate(self) -> float:
        return round(self.approved / self.total * 100, 1) if self.total else 0.0

    @property
    def most_popular(self) -> FiliereStats | None:
        if not self.filieres:
            return None
        return max(self.filieres.values(), key=lambda f: f.total)

    def to_dict(self) -> dict:
        top = self.most_popular
        return {
            "total": self.total,
            "approved": self.approved,
            "pending": self.pending,
            "rejected": self.rejected,
            "genre": {"hommes": self.hommes, "femmes": self.femmes},
            "filieres": [
                {"name": f.name, "total": f.total, "mentions": dict(f.mentions)}
                for f in sorted(self.filieres.values(), key=lambda f: -f.total)
            ],
            "daily": [{"date": d, "count": n} for d, n in self.daily],
            "approval_rate": self.approval_rate,
            "most_popular": {"name": top.name, "total": top.total} if top else None,
        }


def compute_stats(
    submissions: Iterable[SubmissionRecord],
    forms: Iterable[FormDefinition] = (),
    days: int = 7,
) -> DashboardStats:
    """Statistiques du tableau de bord.

    `daily` garde les `days` dernières journées ayant reçu au moins une inscription.
    """
    by_id = {f.id: f for f in forms}
    stats = DashboardStats()
    per_day: Counter = Counter()

    for s in submissions:
        stats.total += 1
        if s.status == "approved":
            stats.approved += 1
        elif s.status == "rejected":
            stats.rejected += 1
        else:
            stats.pending += 1

        name = s.filiere_name or "Non spécifiée"
        fil = stats.filieres.setdefault(name, FiliereStats(name=name))
        fil.total += 1
        fil.mentions[s.mention or "Aucune"] += 1

        sexe = _plain(s.answer_for(by_id.get(s.form_id), "Sexe", "sexe", "Genre", "genre"))
        if sexe in HOMMES:
            stats.hommes += 1
        elif sexe in FEMMES:
            stats.femmes += 1

        submitted = from_iso(s.submitted_at)
        if submitted is not None:
            per_day[submitted.date().isoformat()] += 1

    stats.daily = [(d, per_day[d]) for d in sorted(per_day)[-days:]]
    return stats


def _band(c: canvas.Canvas, y: float, title: str, color=PRIMARY) -> None:
    w, _ = A4
    c.setFillColor(color)
    c.roundRect(15 * mm, y - 10 * mm, w - 30 * mm, 10 * mm, 2 * mm, stroke=0, fill=1)
    c.setFillColor(colors.white)
    c.setFont("Helvetica-Bold", 12)
    c.drawString(20 * mm, y - 7 * mm, title)


def _pct(part: int, total: int) -> str:
    return f"{(part / total * 100):.1f}" if total else "0.0"


def _fr_long(dt: datetime) -> str:
    return f"{dt.day} {MOIS[dt.month - 1]} {dt.year} à {dt.strftime('%H:%M')}"


def render_dashboard_pdf(
    stats: DashboardStats,
    *,
    institution: str = DEFAULT_INSTITUTION,
    generated_at: datetime | None = None,
) -> bytes:
    buff = BytesIO()
    c = canvas.Canvas(buff, pagesize=A4, invariant=1)
    c.setTitle("Tableau de bord des inscriptions")
    w, h = A4
    generated_at = generated_at or datetime.now()

    # En-tête
    c.setFillColor(PRIMARY)
    c.rect(0, h - 45 * mm, w, 45 * mm, stroke=0, fill=1)
    c.setFillColor(colors.white)
    c.setFont("Helvetica-Bold", 18)
    c.drawCentredString(w / 2, h - 15 * mm, "TABLEAU DE BORD DES INSCRIPTIONS")
    c.setFont("Helvetica", 12)
    c.drawCentredString(w / 2, h - 25 * mm, institution)
    c.setFont("Helvetica", 10)
    c.drawCentredString(w / 2, h - 35 * mm, "Statistiques et analyse des inscriptions en ligne")

    y = h - 55 * mm
    _band(c, y, "STATISTIQUES GÉNÉRALES")
    y -= 15 * mm
    boxes = [
        ("Total", stats.total, PRIMARY),
        ("Approuvés", stats.approved, SECONDARY),
        ("En attente", stats.pending, colors.HexColor("#d97706")),
        ("Rejetés", stats.rejected, colors.HexColor("#dc2626")),
    ]
    box_w = (w - 30 * mm) / 4
    for i, (label, value, color) in enumerate(boxes):
        x = 15 * mm + i * box_w
        c.setFillColor(color)
        c.roundRect(x + 1 * mm, y - 22 * mm, box_w - 4 * mm, 22 * mm, 2 * mm, stroke=0, fill=1)
        c.setFillColor(colors.white)
        c.setFont("Helvetica-Bold", 16)
        c.drawCentredString(x + box_w / 2 - 1 * mm, y - 10 * mm, str(value))
        c.setFont("Helvetica", 9)
        c.drawCentredString(x + box_w / 2 - 1 * mm, y - 18 * mm, label)
    y -= 32 * mm

    _band(c, y, "RÉPARTITION PAR GENRE", SECONDARY)
    y -= 16 * mm
    gender_total = stats.hommes + stats.femmes
    bar_max = 80 * mm
    for label, value, color in (("Hommes:", stats.hommes, PRIMARY), ("Femmes:", stats.femmes, colors.HexColor("#db2777"))):
        c.setFillColor(TEXT)
        c.setFont("Helvetica-Bold", 10)
        c.drawString(20 * mm, y, label)
        bar = (value / gender_total * bar_max) if gender_total else 0
        c.setFillColor(color)
        c.rect(60 * mm, y - 1 * mm, bar, 5 * mm, stroke=0, fill=1)
        c.setFillColor(TEXT)
        c.setFont("Helvetica", 10)
        c.drawString(60 * mm + bar_max + 5 * mm, y, f"{value} ({_pct(value, gender_total)}%)")
        y -= 9 * mm
    y -= 6 * mm

    _band(c, y, "INSCRIPTIONS PAR FILIÈRE ET MENTION")
    y -= 16 * mm
    for fil in sorted(stats.filieres.values(), key=lambda f: -f.total):
        if y < 40 * mm:
            c.showPage()
            y = h - 20 * mm
        c.setFillColor(TEXT)
        c.setFont("Helvetica-Bold", 10)
        c.drawString(20 * mm, y, f"{fil.name} ({fil.total} inscrits)")
        y -= 6 * mm
        c.setFont("Helvetica", 9)
        for mention, count in fil.mentions.most_common():
            if y < 30 * mm:
                c.showPage()
                y = h - 20 * mm
                c.setFont("Helvetica", 9)
            bar = count / fil.total * 60 * mm if fil.total else 0
            c.setFillColor(TEXT)
            c.drawString(28 * mm, y, f"{mention}:")
            c.setFillColor(SECONDARY)
            c.rect(95 * mm, y - 1 * mm, bar, 4 * mm, stroke=0, fill=1)
            c.setFillColor(TEXT)
            c.drawString(95 * mm + bar + 4 * mm, y, f"{count} ({_pct(count, fil.total)}%)")
            y -= 6 * mm
        y -= 4 * mm

    # Page 2 : activité récente + indicateurs
    c.showPage()
    c.setFillColor(PRIMARY)
    c.rect(0, h - 25 * mm, w, 25 * mm, stroke=0, fill=1)
    c.setFillColor(colors.white)
    c.setFont("Helvetica-Bold", 14)
    c.drawCentredString(w / 2, h - 15 * mm, "TABLEAU DE BORD - Page 2")

    y = h - 35 * mm
    _band(c, y, "PERFORMANCE DES INSCRIPTIONS EN LIGNE (7 DERNIERS JOURS)", SECONDARY)
    y -= 15 * mm
    if stats.daily:
        graph_x, graph_w, graph_h = 25 * mm, w - 50 * mm, 50 * mm
        base_y = y - graph_h
        c.setStrokeColor(MUTED)
        c.setLineWidth(0.5)
        c.line(graph_x, base_y, graph_x + graph_w, base_y)
        peak = max(n for _, n in stats.daily) or 1
        n_points = len(stats.daily)
        points = []
        for i, (day, count) in enumerate(stats.daily):
            x = graph_x + (i * graph_w) / (n_points - 1 or 1)
            py = base_y + count / peak * (graph_h - 10 * mm)
            points.append((x, py))
            c.setFillColor(TEXT)
            c.setFont("Helvetica", 8)
            d = date.fromisoformat(day)
            c.drawCentredString(x, base_y - 6 * mm, d.strftime("%d/%m"))
            c.drawCentredString(x, py + 3 * mm, str(count))
        c.setStrokeColor(PRIMARY)
        c.setLineWidth(1.5)
        for (x1, y1), (x2, y2) in zip(points, points[1:]):
            c.line(x1, y1, x2, y2)
        c.setFillColor(PRIMARY)
        for x, py in points:
            c.circle(x, py, 1.5 * mm, stroke=0, fill=1)
        y = base_y - 18 * mm
    else:
        c.setFillColor(MUTED)
        c.setFont("Helvetica-Oblique", 10)
        c.drawCentredString(w / 2, y - 5 * mm, "Aucune donnée disponible pour les 7 derniers jours")
        y -= 20 * mm

    _band(c, y, "STATISTIQUES SUPPLÉMENTAIRES")
    y -= 18 * mm
    n_fil = len(stats.filieres)
    top = stats.most_popular
    extra = [
        ("Nombre de filières proposées", str(n_fil)),
        ("Moyenne d'inscrits par filière", f"{stats.total / n_fil:.1f}" if n_fil else "0"),
        ("Filière la plus demandée", f"{top.name} ({top.total})" if top else "N/A (0)"),
        ("Taux d'approbation", f"{stats.approval_rate:.1f}%" if stats.total else "0%"),
    ]
    for label, value in extra:
        c.setFillColor(TEXT)
        c.setFont("Helvetica-Bold", 10)
        c.drawString(20 * mm, y, f"{label}:")
        c.setFont("Helvetica", 10)
        c.drawString(120 * mm, y, value)
        y -= 8 * mm

    c.setStrokeColor(PRIMARY)
    c.setLineWidth(0.5)
    c.line(15 * mm, 20 * mm, w - 15 * mm, 20 * mm)
    c.setFillColor(MUTED)
    c.setFont("Helvetica", 8)
    c.drawCentredString(w / 2, 12 * mm, f"Document généré le {_fr_long(generated_at)}")
    c.drawCentredString(w / 2, 7 * mm, institution)

    c.showPage()
    c.save()
    return buff.getvalue()


def dashboard_filename(today: date | None = None) -> str:
    today = today or date.today()
    return f"Tableau_Bord_Inscriptions_{today.isoformat()}.pdf"
