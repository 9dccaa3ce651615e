import io
import logging
from dataclasses import dataclass
from typing import Protocol

from fpdf import FPDF
from pypdf import PdfReader, PdfWriter

from multisign.errors import RenderError, ValidationError
from multisign.utils.hashing import sha256_bytes, sha256_text

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EvidenceSignature:
    order: int
    signer_id: str
    signature: str
    signed_at: str
    algorithm: str


class EvidenceRenderer(Protocol):
    def embed(self, original: bytes, signatures: list[EvidenceSignature]) -> bytes: ...


def require_pdf(content: bytes) -> None:
    """Refuse uploads the evidence renderer could never append to."""
    try:
        pages = PdfReader(io.BytesIO(content)).pages
        if len(pages) == 0:
            raise ValueError("document has no pages")
    except Exception as exc:
        raise ValidationError("Document is not a readable PDF", details={"reason": str(exc)}) from exc


def _latin1(text: str) -> str:
    """Encode to latin-1, replacing unsupported chars; fpdf built-in fonts are latin-1 only."""
    return text.encode("latin-1", errors="replace").decode("latin-1")


def generate_evidence_page(title: str, original_hash: str, signatures: list[EvidenceSignature]) -> bytes:
    """Render a single-page record of every collected signature."""
    pdf = FPDF()
    pdf.set_margins(20, 20, 20)
    pdf.add_page()

    pdf.set_font("Helvetica", "B", 18)
    pdf.multi_cell(0, 10, _latin1(title), align="L")
    pdf.ln(2)

    pdf.set_font("Helvetica", "", 9)
    pdf.set_text_color(80, 80, 80)
    pdf.cell(0, 6, _latin1(f"Original document SHA-256: {original_hash}"), ln=True)
    pdf.cell(0, 6, _latin1(f"Signatures collected: {len(signatures)}"), ln=True)

    pdf.ln(3)
    pdf.set_draw_color(200, 200, 200)
    pdf.line(20, pdf.get_y(), 190, pdf.get_y())
    pdf.ln(5)

    pdf.set_text_color(0, 0, 0)
    for sig in sorted(signatures, key=lambda s: s.order):
        pdf.set_font("Helvetica", "B", 11)
        pdf.cell(0, 7, _latin1(f"{sig.order + 1}. {sig.signer_id}"), ln=True)
        pdf.set_font("Helvetica", "", 9)
        pdf.cell(0, 5, _latin1(f"Signed at: {sig.signed_at}"), ln=True)
        pdf.cell(0, 5, _latin1(f"Algorithm: {sig.algorithm}"), ln=True)
        pdf.cell(0, 5, _latin1(f"Signature digest: {sha256_text(sig.signature)}"), ln=True)
        pdf.ln(3)

    return bytes(pdf.output())


class PdfEvidenceRenderer:
    """Appends an evidence page to the original PDF."""

    def __init__(self, title: str = "Signature Evidence"):
        self.title = title

    def embed(self, original: bytes, signatures: list[EvidenceSignature]) -> bytes:
        if not signatures:
            raise RenderError("No signatures to embed")
        original_hash = sha256_bytes(original)
        try:
            reader = PdfReader(io.BytesIO(original))
            pages = list(reader.pages)
        except Exception as exc:
            raise RenderError("Original document is not a readable PDF", details={"reason": str(exc)}) from exc

        evidence = PdfReader(io.BytesIO(generate_evidence_page(self.title, original_hash, signatures)))

        writer = PdfWriter()
        for page in pages:
            writer.add_page(page)
        for page in evidence.pages:
            writer.add_page(page)
        writer.add_metadata({
            "/MultiSignOriginalHash": original_hash,
            "/MultiSignSignatureCount": str(len(signatures)),
        })

        buf = io.BytesIO()
        writer.write(buf)
        logger.info("Rendered evidence for %s with %d signatures", original_hash[:12], len(signatures))
        return buf.getvalue()
