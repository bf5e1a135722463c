from __future__ import annotations

import logging
import os
import re
from datetime import datetime
from io import BytesIO

import segno
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfgen import canvas

from portail.formulaires.schema import FormDefinition, SubmissionRecord
from portail.inscriptions import champs
from .csv_export import fr_date

log = logging.getLogger(__name__)

PRIMARY = colors.HexColor("#1e40af")
SECONDARY = colors.HexColor("#059669")
TEXT = colors.HexColor("#333333")
LIGHT_BG = colors.HexColor("#f3f4f6")
MUTED = colors.HexColor("#646464")

DEFAULT_INSTITUTION = "Institut Supérieur des Techniques Médicales de Kinshasa"
DEFAULT_ADDRESS = (
    "Route Kimwenza, Vallée de la FUNA, Mont-Ngafula. Réf : en face du CNPP. "
    "Kinshasa, RDC | Tél: +243 977 127 160"
)


def _sections(record: SubmissionRecord, form: FormDefinition | None) -> list[tuple[str, list[tuple[str, str]]]]:
    def a(labels):
        return record.answer_for(form, *labels)

    pourcentage = a(champs.POURCENTAGE)
    return [
        ("INFORMATIONS PERSONNELLES", [
            ("Nom", a(champs.NOM)),
            ("Post-Nom", a(champs.POSTNOM)),
            ("Prénom", a(champs.PRENOM)),
            ("Lieu de naissance", a(champs.LIEU_NAISSANCE)),
            ("Date de naissance", a(champs.DATE_NAISSANCE)),
            ("Sexe", a(champs.SEXE)),
            ("État civil", a(champs.ETAT_CIVIL)),
            ("Nationalité", a(champs.NATIONALITE)),
        ]),
        ("CONTACT", [
            ("Adresse Kinshasa", a(champs.ADRESSE)),
            ("Téléphone", a(champs.TELEPHONE)),
            ("E-mail", a(champs.EMAIL)),
        ]),
        ("DIPLÔME D'ÉTAT", [
            ("École", a(champs.ECOLE)),
            ("Province de l'École", a(champs.PROVINCE_ECOLE)),
            ("Section humanités", a(champs.SECTION)),
            ("Année d'obtention", a(champs.ANNEE_OBTENTION)),
            ("Pourcentage", f"{pourcentage}%" if pourcentage else ""),
        ]),
    ]


def qr_payload(record: SubmissionRecord, prefix: str = "ISTM") -> str:
    return f"{prefix}-{record.matricule}-{fr_date(record.submitted_at)}"


def submission_pdf_filename(record: SubmissionRecord, form: FormDefinition | None = None) -> str:
    nom = record.answer_for(form, "Nom", "nom")
    postnom = record.answer_for(form, "Post-Nom", "post-nom")
    return re.sub(r"\s+", "_", f"Inscription_{record.matricule}_{nom}_{postnom}.pdf")


class _Page:
    """Curseur vertical mesuré depuis le haut de la page (en points)."""

    def __init__(self, c: canvas.Canvas):
        self.c = c
        self.width, self.height = A4
        self.y = 0.0

    def top(self, y_mm: float) -> float:
        return self.height - y_mm * mm

    def ensure(self, needed_mm: float, bottom_mm: float = 30) -> None:
        if self.y + needed_mm > self.height / mm - bottom_mm:
            self.c.showPage()
            self.y = 20


def draw_logo(c: canvas.Canvas, page: _Page, logo_path: str | None) -> bool:
    """Logo centré ; en cas d'absence ou d'échec, pastille texte « ISTM »."""
    size = 25 * mm
    x = page.width / 2 - size / 2
    y = page.top(30) - size
    if logo_path and os.path.exists(logo_path):
        try:
            c.drawImage(ImageReader(logo_path), x, y, size, size, mask="auto", preserveAspectRatio=True)
            return True
        except Exception:
            log.warning("Logo illisible (%s), pastille texte utilisée", logo_path, exc_info=True)
    cx, cy = page.width / 2, page.top(42)
    c.setFillColor(colors.white)
    c.circle(cx, cy, 12 * mm, stroke=0, fill=1)
    c.setFillColor(PRIMARY)
    c.circle(cx, cy, 10 * mm, stroke=0, fill=1)
    c.setFillColor(colors.white)
    c.setFont("Helvetica-Bold", 8)
    c.drawCentredString(cx, cy - 1 * mm, "ISTM")
    return False


def draw_qr(c: canvas.Canvas, payload: str, x: float, y: float, size: float) -> bool:
    """QR code vectoriel (modules segno dessinés en rectangles). Échec non bloquant."""
    try:
        qr = segno.make(payload, error="M")
        rows = [list(r) for r in qr.matrix_iter(scale=1, border=1)]
    except Exception:
        log.warning("Génération du QR code impossible", exc_info=True)
        return False
    n = len(rows)
    module = size / n
    c.setFillColor(colors.white)
    c.rect(x, y, size, size, stroke=0, fill=1)
    c.setFillColor(PRIMARY)
    for r, row in enumerate(rows):
        for col, dark in enumerate(row):
            if dark:
                c.rect(x + col * module, y + size - (r + 1) * module, module, module, stroke=0, fill=1)
    return True


def _section_title(c: canvas.Canvas, page: _Page, title: str, color) -> None:
    c.setFillColor(color)
    c.roundRect(20 * mm, page.top(page.y + 8), page.width - 40 * mm, 8 * mm, 2 * mm, stroke=0, fill=1)
    c.setFillColor(colors.white)
    c.setFont("Helvetica-Bold", 11)
    c.drawString(25 * mm, page.top(page.y + 5.5), title)
    page.y += 12


def render_submission_pdf(
    record: SubmissionRecord,
    form: FormDefinition | None,
    *,
    logo_path: str | None = None,
    institution: str = DEFAULT_INSTITUTION,
    address: str = DEFAULT_ADDRESS,
    prefix: str = "ISTM",
    generated_at: datetime | None = None,
) -> bytes:
    """Fiche d'inscription PDF (A4) d'un candidat."""
    buff = BytesIO()
    c = canvas.Canvas(buff, pagesize=A4, invariant=1)
    c.setTitle(f"Inscription {record.matricule}")
    page = _Page(c)
    w = page.width

    # En-tête
    c.setFillColor(PRIMARY)
    c.rect(0, page.top(25), w, 25 * mm, stroke=0, fill=1)
    c.setFillColor(colors.white)
    c.setFont("Helvetica-Bold", 11)
    c.drawCentredString(w / 2, page.top(10), "RÉPUBLIQUE DÉMOCRATIQUE DU CONGO")
    c.drawCentredString(w / 2, page.top(15), "MINISTÈRE DE L'ENSEIGNEMENT SUPÉRIEUR ET UNIVERSITAIRE")

    draw_logo(c, page, logo_path)

    c.setFillColor(PRIMARY)
    c.setFont("Helvetica-Bold", 14)
    c.drawCentredString(w / 2, page.top(60), "INSTITUT SUPÉRIEUR DES TECHNIQUES MÉDICALES")
    c.drawCentredString(w / 2, page.top(67), "DE KINSHASA")
    c.setFillColor(SECONDARY)
    c.setFont("Helvetica-Bold", 10)
    c.drawCentredString(w / 2, page.top(75), "SERVICE DES INSCRIPTIONS")

    c.setStrokeColor(PRIMARY)
    c.setLineWidth(1)
    c.line(20 * mm, page.top(82), w - 20 * mm, page.top(82))

    # Bandeau matricule / date
    date_inscription = fr_date(record.submitted_at)
    c.setFillColor(LIGHT_BG)
    c.roundRect(20 * mm, page.top(103), w - 40 * mm, 15 * mm, 3 * mm, stroke=0, fill=1)
    c.setFillColor(TEXT)
    c.setFont("Helvetica-Bold", 10)
    c.drawString(30 * mm, page.top(98), f"Matricule: {record.matricule}")
    c.drawRightString(w - 30 * mm, page.top(98), f"Date d'inscription: {date_inscription}")

    c.setFillColor(PRIMARY)
    c.setFont("Helvetica-Bold", 16)
    title = (form.title if form and form.title else "FICHE D'INSCRIPTION ÉTUDIANT")
    c.drawCentredString(w / 2, page.top(115), title)
    page.y = 125

    # Sections
    max_width = w - 60 * mm
    for section_title, rows in _sections(record, form):
        page.ensure(30, bottom_mm=60)
        _section_title(c, page, section_title, PRIMARY)
        for label, value in rows:
            if not value or not value.strip():
                continue
            lines = simpleSplit(value, "Helvetica", 10, max_width)
            page.ensure(5 + len(lines) * 5)
            c.setFillColor(TEXT)
            c.setFont("Helvetica-Bold", 10)
            c.drawString(25 * mm, page.top(page.y), f"{label}:")
            c.setFont("Helvetica", 10)
            for i, line in enumerate(lines):
                c.drawString(25 * mm, page.top(page.y + 5 + i * 5), line)
            page.y += len(lines) * 5 + 5
        page.y += 8

    # Filières (toujours affiché)
    page.ensure(40, bottom_mm=45)
    _section_title(c, page, "CHOIX DE FILIÈRES", SECONDARY)
    c.setFillColor(TEXT)
    choices = [
        ("1er Choix:", record.filiere_name, record.mention, "Aucun premier choix spécifié"),
        ("2ème Choix:", record.filiere_name_2, record.mention_2, "Aucun deuxième choix spécifié"),
    ]
    for label, filiere, mention, empty in choices:
        if filiere:
            c.setFont("Helvetica-Bold", 10)
            c.drawString(25 * mm, page.top(page.y), label)
            c.setFont("Helvetica", 10)
            c.drawString(60 * mm, page.top(page.y), f"Filière: {filiere}")
            page.y += 6
            if mention:
                c.drawString(60 * mm, page.top(page.y), f"Mention: {mention}")
                page.y += 6
        else:
            c.setFont("Helvetica-Oblique", 10)
            c.drawString(25 * mm, page.top(page.y), empty)
            page.y += 6
        page.y += 4

    # Pied de page (dernière page)
    footer = page.height / mm - 40
    if page.y > footer:
        c.showPage()
    c.setStrokeColor(PRIMARY)
    c.setLineWidth(0.5)
    c.line(20 * mm, page.top(footer), w - 20 * mm, page.top(footer))

    if draw_qr(c, qr_payload(record, prefix), w - 45 * mm, page.top(footer + 30), 25 * mm):
        c.setFillColor(MUTED)
        c.setFont("Helvetica", 7)
        c.drawCentredString(w - 32.5 * mm, page.top(footer + 32), "Code de vérification")

    generated_at = generated_at or datetime.now()
    c.setFillColor(MUTED)
    c.setFont("Helvetica-Bold", 9)
    c.drawCentredString(w / 2, page.top(footer + 10), institution)
    c.setFont("Helvetica", 8)
    c.drawCentredString(w / 2, page.top(footer + 15), address)
    c.drawCentredString(
        w / 2,
        page.top(footer + 20),
        f"Document généré le {generated_at.strftime('%d/%m/%Y')} à {generated_at.strftime('%H:%M:%S')}",
    )

    c.showPage()
    c.save()
    return buff.getvalue()
