"""Read source documents that a course can be generated from."""
import json
from datetime import datetime
from pathlib import Path

from loguru import logger

from course_tutor.db import get_connection
from course_tutor.errors import NotFoundError, ValidationError

EXCERPT_LIMIT = 12000


TEXT_SUFFIXES = (".txt", ".md", ".markdown", ".rst")
SUPPORTED_SUFFIXES = TEXT_SUFFIXES + (".json", ".yaml", ".yml", ".pdf", ".docx", ".html", ".htm")


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        raise ValidationError(f"{path.name} is not UTF-8 text") from None


def read_file_content(file_path: str) -> str:
    """Extract plain text from a study document.

    Raises ValidationError for file types that cannot be read and for
    documents that fail to parse.
    """
    path = Path(file_path)
    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise ValidationError(
            f"Unsupported file type '{suffix or path.name}'. Use one of: {', '.join(SUPPORTED_SUFFIXES)}"
        )

    if suffix in TEXT_SUFFIXES:
        return _read_text(path)
    if suffix == ".json":
        try:
            data = json.loads(_read_text(path))
        except json.JSONDecodeError as e:
            raise ValidationError(f"{path.name} is not valid JSON: {e}") from e
        return json.dumps(data, indent=2) if isinstance(data, (dict, list)) else str(data)
    if suffix in (".yaml", ".yml"):
        import yaml
        try:
            data = yaml.safe_load(_read_text(path))
        except yaml.YAMLError as e:
            raise ValidationError(f"{path.name} is not valid YAML: {e}") from e
        return yaml.safe_dump(data, sort_keys=False) if isinstance(data, (dict, list)) else str(data or "")
    if suffix == ".pdf":
        from PyPDF2 import PdfReader
        from PyPDF2.errors import PdfReadError
        try:
            reader = PdfReader(file_path)
            return "\n".join(page.extract_text() or "" for page in reader.pages)
        except PdfReadError as e:
            raise ValidationError(f"{path.name} is not a readable PDF: {e}") from e
    if suffix == ".docx":
        from docx import Document
        from docx.opc.exceptions import PackageNotFoundError
        try:
            return "\n".join(p.text for p in Document(file_path).paragraphs)
        except PackageNotFoundError as e:
            raise ValidationError(f"{path.name} is not a readable Word document") from e
    from bs4 import BeautifulSoup
    return BeautifulSoup(_read_text(path), "html.parser").get_text("\n")


def excerpt(text: str, limit: int = EXCERPT_LIMIT) -> str:
    """Trim a document to something that fits in a generation prompt."""
    text = text.strip()
    if len(text) <= limit:
        return text
    cut = text.rfind("\n", 0, limit)
    return text[:cut if cut > limit // 2 else limit].rstrip() + "\n[...]"


def import_document(db_path: str, file_path: str) -> dict:
    """Store a document so a course can be generated from it."""
    path = Path(file_path)
    if not path.exists():
        raise NotFoundError(f"File not found: {file_path}")
    content = read_file_content(file_path)
    if not content.strip():
        raise ValidationError(f"No readable text in {path.name}")
    conn = get_connection(db_path)
    cur = conn.execute(
        "INSERT INTO documents (filename, content_text, imported_at) VALUES (?, ?, ?)",
        (path.name, content, datetime.now().isoformat()),
    )
    conn.commit()
    document_id = cur.lastrowid
    conn.close()
    logger.info(f"Imported {path.name} as document {document_id} ({len(content)} chars)")
    return {"filename": path.name, "document_id": document_id, "length": len(content)}


def get_document_text(db_path: str, document_id: int) -> str:
    conn = get_connection(db_path)
    row = conn.execute("SELECT content_text FROM documents WHERE id = ?", (document_id,)).fetchone()
    conn.close()
    if row is None:
        raise NotFoundError(f"Unknown document {document_id}")
    return row["content_text"] or ""
