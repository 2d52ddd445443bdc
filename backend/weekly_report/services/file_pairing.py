"""
Groups an upload batch into (class name -> {pdf, spreadsheet}) pairs.

A class name is the filename with its extension, its date token
("10월30일", "10월 30일") and trailing role words ("시험지", "성적표", ...)
removed. "AlgebraA 10월30일.pdf" and "AlgebraA_10월30일.csv" pair under
"AlgebraA". Anything left without a partner is returned as unpaired; unpaired
PDFs are candidates for the textbook reference text.
"""

import logging
import re
from typing import Dict, List, Optional

from pydantic import BaseModel

from ..utils import file_extension

logger = logging.getLogger(__name__)

DATE_TOKEN = re.compile(r"[\s_]*(\d{1,2})\s*월\s*(\d{1,2})\s*일[\s_]*")
ROLE_WORDS = ("정오표", "시험지", "성적표", "데이터")
SPREADSHEET_EXTENSIONS = ("csv", "xlsx")


class UploadedFile(BaseModel):
    filename: str
    content: bytes = b""

    @property
    def extension(self) -> str:
        return file_extension(self.filename)


class FilePair(BaseModel):
    pdf: Optional[UploadedFile] = None
    spreadsheet: Optional[UploadedFile] = None
    date_label: Optional[str] = None

    @property
    def complete(self) -> bool:
        return self.pdf is not None and self.spreadsheet is not None


class PairingResult(BaseModel):
    pairs: Dict[str, FilePair] = {}
    unpaired: List[UploadedFile] = []

    @property
    def reference_candidates(self) -> List[UploadedFile]:
        return [f for f in self.unpaired if f.extension == "pdf"]


def extract_date_label(filename: str) -> Optional[str]:
    """Return the normalized date token ("10월30일") found in a filename."""
    match = DATE_TOKEN.search(filename)
    if not match:
        return None
    return f"{int(match.group(1))}월{int(match.group(2))}일"


def class_key_from_filename(filename: str) -> str:
    """Strip extension, date token and role words; what remains is the class key."""
    base_name = filename.rsplit(".", 1)[0] if "." in filename else filename
    key = DATE_TOKEN.sub(" ", base_name)

    for word in ROLE_WORDS:
        if word in key:
            stripped = key.split(word)[0].strip(" _")
            if stripped:
                key = stripped
            break

    return key.strip(" _")


def pair_files(files: List[UploadedFile]) -> PairingResult:
    """
    Bucket files by class key into pdf / spreadsheet slots.

    A second file landing in an occupied slot replaces the first one
    (last file wins); the replaced file is dropped.
    """
    buckets: Dict[str, FilePair] = {}

    for uploaded in files:
        key = class_key_from_filename(uploaded.filename)
        if not key:
            logger.info(f"Ignoring '{uploaded.filename}': no class name left after stripping")
            continue

        ext = uploaded.extension
        if ext == "pdf":
            slot = "pdf"
        elif ext in SPREADSHEET_EXTENSIONS:
            slot = "spreadsheet"
        else:
            logger.info(f"Ignoring '{uploaded.filename}': unsupported extension '{ext}'")
            continue

        bucket = buckets.setdefault(key, FilePair())
        previous = getattr(bucket, slot)
        if previous is not None:
            logger.warning(
                f"'{uploaded.filename}' replaces '{previous.filename}' as the {slot} for '{key}'"
            )
        setattr(bucket, slot, uploaded)

        date_label = extract_date_label(uploaded.filename)
        if date_label:
            bucket.date_label = date_label

    result = PairingResult()
    for key, bucket in buckets.items():
        if bucket.complete:
            result.pairs[key] = bucket
        else:
            result.unpaired.extend(f for f in (bucket.pdf, bucket.spreadsheet) if f is not None)

    logger.info(f"Paired {len(result.pairs)} class(es), {len(result.unpaired)} file(s) unpaired")
    return result
