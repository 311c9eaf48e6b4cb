"""
Text extraction for ingested documents.

Plain-text formats are decoded and normalised here. docx is read directly from
its zip container. Any other format needs an extractor supplied by the caller.
"""

import html
import io
import os
import re
import unicodedata
import zipfile
from typing import Callable, Dict, Optional

from ..core.errors import ExtractionError, RecallError, UnsupportedFormatError

Extractor = Callable[[bytes], str]

TEXT_EXTENSIONS = {"txt", "md", "markdown", "json", "log"}
TABLE_EXTENSIONS = {"csv", "tsv"}
FALLBACK_ENCODINGS = ["utf-8-sig", "gb18030", "big5"]

_PARAGRAPH_END_RE = re.compile(r"</w:p>")
_LINE_BREAK_RE = re.compile(r"<w:(?:br|cr)\s*/>")
_TAB_RE = re.compile(r"<w:tab\s*/>")
_TAG_RE = re.compile(r"<[^>]+>")


def file_extension(source_name: str) -> str:
    return os.path.splitext(source_name or "")[1].lstrip(".").lower()


def is_table(source_name: str) -> bool:
    return file_extension(source_name) in TABLE_EXTENSIONS


def decode_text(raw_bytes: bytes) -> str:
    """Decode bytes trying UTF-8 (with BOM), GB18030, then Big5; newlines become \\n and text is NFC."""
    for encoding in FALLBACK_ENCODINGS:
        try:
            text = raw_bytes.decode(encoding)
            break
        except UnicodeDecodeError:
            continue
    else:
        text = raw_bytes.decode("utf-8", errors="replace")

    text = text.replace("\r\n", "\n").replace("\r", "\n")
    return unicodedata.normalize("NFC", text)


def extract_docx(raw_bytes: bytes) -> str:
    """Pull paragraph text out of word/document.xml."""
    try:
        with zipfile.ZipFile(io.BytesIO(raw_bytes)) as archive:
            xml = archive.read("word/document.xml").decode("utf-8")
    except (zipfile.BadZipFile, KeyError, RuntimeError, UnicodeDecodeError) as e:
        raise ExtractionError(f"Not a readable docx file: {e}") from e

    xml = _PARAGRAPH_END_RE.sub("\n\n", xml)
    xml = _LINE_BREAK_RE.sub("\n", xml)
    xml = _TAB_RE.sub("\t", xml)
    text = html.unescape(_TAG_RE.sub("", xml))
    paragraphs = [p.strip() for p in text.split("\n\n")]
    return unicodedata.normalize("NFC", "\n\n".join(p for p in paragraphs if p))


def extract_text(raw_bytes: bytes, source_name: str, extractors: Optional[Dict[str, Extractor]] = None) -> str:
    """
    Extract text from a document by file extension.

    Args:
        raw_bytes: Document content
        source_name: File name; its extension selects the extractor
        extractors: Optional mapping of extension -> callable(bytes) -> str, checked first

    Raises:
        UnsupportedFormatError: No extractor handles the extension
        ExtractionError: The document or a supplied extractor could not produce text
    """
    ext = file_extension(source_name)
    if extractors and ext in extractors:
        try:
            text = extractors[ext](raw_bytes)
        except RecallError:
            raise
        except Exception as e:
            raise ExtractionError(f"Extractor for '.{ext}' failed on {source_name}: {e}") from e
        if not isinstance(text, str):
            raise ExtractionError(f"Extractor for '.{ext}' returned {type(text).__name__}, not text")
        return unicodedata.normalize("NFC", text)

    if ext in TEXT_EXTENSIONS or ext in TABLE_EXTENSIONS:
        return decode_text(raw_bytes)
    if ext == "docx":
        return extract_docx(raw_bytes)

    raise UnsupportedFormatError(f"No extractor for '.{ext}' files ({source_name})")
