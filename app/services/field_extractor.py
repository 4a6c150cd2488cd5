"""
NameCard Backend - Business Card Field Extractor
=================================================

What:  Turns OCR line output into structured contact fields.
How:   Pure functions, no I/O. Lines below the confidence threshold are
       dropped first; the survivors feed every heuristic below.

Heuristics:
    name      2-4 capitalised tokens ("Jane Doe", "Mary-Ann Lee"), not a
              title or company line; highest confidence wins
    title     title-vocabulary keyword, preferring the line above the name
              and the two lines below it
    company   corporate suffix keyword, or mostly uppercase text; fallback is
              the remaining line with the highest uppercase ratio
    email     regex over the raw text
    phone     7-15 digit run within one line; address lines are checked last
              and ZIP / ZIP+4 postcodes never count as a phone
    website   regex over the raw text with email addresses removed
    address   first unassigned line with a street/suite/zip indicator

Confidence values are normalised to 0-1. `confidence` on the result is the
mean of the surviving line confidences.
"""

import math
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from app.exceptions import OCRProcessingError

DEFAULT_MIN_CONFIDENCE = 0.70

EMAIL_PATTERN = re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.IGNORECASE)
PHONE_PATTERN = re.compile(r"\+?\(?\d[\d \t().-]{6,}\d")
WEBSITE_PATTERN = re.compile(
    r"(?:https?://)?(?:www\.)?[-a-zA-Z0-9@:%._+~#=]{2,256}\.[a-z]{2,6}\b"
    r"(?:[-a-zA-Z0-9@:%_+.~#?&/=]*)",
    re.IGNORECASE,
)
POSTCODE_PATTERN = re.compile(r"\b\d{5}(?:-\d{4})?\b")
MIN_PHONE_DIGITS = 7
MAX_PHONE_DIGITS = 15
ADDRESS_PATTERN = re.compile(
    r"\b(?:suite|ste|st|street|ave|avenue|road|rd|drive|dr|lane|ln|way|floor|fl|"
    r"blvd|boulevard|plaza|building|bldg|p\.?o\.? box)\b\.?|\b\d{5}(?:-\d{4})?\b",
    re.IGNORECASE,
)
JOB_TITLE_PATTERN = re.compile(
    r"\b(?:chief|ceo|cto|cfo|coo|cmo|director|manager|vp|vice president|president|"
    r"consultant|officer|executive|lead|head|founder|co-founder|partner|engineer|"
    r"developer|designer|architect|analyst|specialist|coordinator|associate|senior|"
    r"marketing|sales|product|partnerships|strategy|operations|owner)\b",
    re.IGNORECASE,
)
COMPANY_PATTERN = re.compile(
    r"\b(?:inc|llc|ltd|llp|plc|gmbh|co|corp|corporation|company|solutions|labs|group|"
    r"technologies|analytics|studio|studios|partners|systems|enterprises?|holdings|"
    r"consulting|ventures|agency)\b\.?",
    re.IGNORECASE,
)
NAME_TOKEN_PATTERN = re.compile(r"^(?:[A-Z][a-z]+|[A-Z][a-z]+-[A-Z][a-z]+)$")

UPPERCASE_COMPANY_RATIO = 0.6


@dataclass
class OcrLine:
    """One detected line: normalised text, 0-1 confidence, position in the card."""

    text: str
    confidence: float
    index: int = 0


@dataclass
class ExtractedField:
    text: str
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {"text": self.text, "confidence": self.confidence}


@dataclass
class ExtractedCardData:
    raw_text: str
    confidence: float
    lines: List[OcrLine] = field(default_factory=list)
    name: Optional[ExtractedField] = None
    title: Optional[ExtractedField] = None
    company: Optional[ExtractedField] = None
    email: Optional[ExtractedField] = None
    phone: Optional[ExtractedField] = None
    website: Optional[ExtractedField] = None
    address: Optional[ExtractedField] = None

    FIELD_NAMES = ("name", "title", "company", "email", "phone", "website", "address")

    def value(self, name: str) -> Optional[str]:
        extracted = getattr(self, name)
        return extracted.text if extracted else None

    @property
    def normalized_email(self) -> Optional[str]:
        return self.email.text.lower() if self.email else None

    @property
    def normalized_phone(self) -> Optional[str]:
        if not self.phone:
            return None
        return re.sub(r"[^+\d]", "", self.phone.text) or None

    def to_payload(self) -> Dict[str, Any]:
        """JSON-ready extraction payload (camelCase keys)."""
        payload: Dict[str, Any] = {
            "rawText": self.raw_text,
            "confidence": self.confidence,
            "lineCount": len(self.lines),
            "normalizedEmail": self.normalized_email,
            "normalizedPhone": self.normalized_phone,
        }
        for name in self.FIELD_NAMES:
            extracted = getattr(self, name)
            payload[name] = extracted.to_dict() if extracted else None
        return payload


def normalize_threshold(value: Optional[float]) -> float:
    """
    Normalise a confidence cutoff to 0-1.

    None → 0.70, NaN → 0.5, values above 1 are percentages (÷100, capped at 1),
    negatives → 0.
    """
    if value is None:
        return DEFAULT_MIN_CONFIDENCE
    value = float(value)
    if math.isnan(value):
        return 0.5
    if value > 1:
        return min(1.0, value / 100)
    if value < 0:
        return 0.0
    return value


def _normalize_confidence(raw: Any) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(value):
        return 0.0
    if value > 1:
        value = value / 100
    return round(min(1.0, max(0.0, value)), 4)


def _clean_text(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def lines_from_blocks(blocks: Iterable[Dict[str, Any]]) -> List[OcrLine]:
    """
    Convert Textract-style blocks into OcrLines.

    Only LINE blocks with non-empty text are kept; Textract reports
    confidence as 0-100 and it is normalised here.
    """
    lines: List[OcrLine] = []
    for block in blocks:
        if block.get("BlockType") != "LINE":
            continue
        text = _clean_text(block.get("Text") or "")
        if not text:
            continue
        lines.append(OcrLine(text=text, confidence=_normalize_confidence(block.get("Confidence")), index=len(lines)))
    return lines


def filter_lines(lines: Sequence[OcrLine], min_confidence: Optional[float] = None) -> List[OcrLine]:
    """Keep lines at or above the normalised threshold, re-indexed in order."""
    threshold = normalize_threshold(min_confidence)
    kept = []
    for line in lines:
        text = _clean_text(line.text)
        confidence = _normalize_confidence(line.confidence)
        if text and confidence >= threshold:
            kept.append(OcrLine(text=text, confidence=confidence, index=len(kept)))
    return kept


def uppercase_ratio(text: str) -> float:
    letters = [ch for ch in text if ch.isalpha()]
    if not letters:
        return 0.0
    return sum(1 for ch in letters if ch.isupper()) / len(letters)


def looks_like_name(text: str) -> bool:
    tokens = text.split()
    if not 2 <= len(tokens) <= 4:
        return False
    return all(NAME_TOKEN_PATTERN.match(token) for token in tokens)


def looks_like_title(text: str) -> bool:
    return bool(JOB_TITLE_PATTERN.search(text))


def looks_like_company(text: str) -> bool:
    if COMPANY_PATTERN.search(text):
        return True
    return uppercase_ratio(text) > UPPERCASE_COMPANY_RATIO and len(text) > 2


def is_contact_line(text: str) -> bool:
    return bool(EMAIL_PATTERN.search(text) or phone_in(text) or _website_in(text))


def phone_in(text: str) -> Optional[str]:
    """First phone-shaped digit run in a single line, if any."""
    for match in PHONE_PATTERN.finditer(text):
        candidate = match.group(0).strip()
        digits = sum(ch.isdigit() for ch in candidate)
        if not MIN_PHONE_DIGITS <= digits <= MAX_PHONE_DIGITS:
            continue
        if POSTCODE_PATTERN.fullmatch(candidate):
            continue
        return candidate
    return None


def pick_best_match(
    lines: Iterable[OcrLine], predicate: Callable[[str], bool]
) -> Optional[OcrLine]:
    """Highest-confidence line satisfying the predicate; ties go to the earlier line."""
    best: Optional[OcrLine] = None
    for line in lines:
        if predicate(line.text) and (best is None or line.confidence > best.confidence):
            best = line
    return best


def _line_containing(lines: Sequence[OcrLine], fragment: str) -> Optional[OcrLine]:
    for line in lines:
        if fragment in line.text:
            return line
    return None


def _website_in(text: str) -> Optional[str]:
    without_emails = EMAIL_PATTERN.sub(" ", text)
    match = WEBSITE_PATTERN.search(without_emails)
    return match.group(0) if match else None


def _with_scheme(url: str) -> str:
    if re.match(r"^https?://", url, re.IGNORECASE):
        return url
    return f"https://{url}"


def _as_field(line: Optional[OcrLine], text: Optional[str] = None) -> Optional[ExtractedField]:
    if line is None:
        return None
    return ExtractedField(text=text if text is not None else line.text, confidence=line.confidence)


def _find_name(lines: Sequence[OcrLine]) -> Optional[OcrLine]:
    return pick_best_match(
        lines,
        lambda text: looks_like_name(text)
        and not looks_like_title(text)
        and not COMPANY_PATTERN.search(text),
    )


def _find_title(lines: Sequence[OcrLine], name: Optional[OcrLine]) -> Optional[OcrLine]:
    candidates = [line for line in lines if line is not name and not is_contact_line(line.text)]
    if name is not None:
        neighbours = [
            line for line in candidates
            if name.index - 1 <= line.index < name.index + 3
        ]
        for line in neighbours:
            if looks_like_title(line.text):
                return line
    return pick_best_match(candidates, looks_like_title)


def _find_company(
    lines: Sequence[OcrLine], exclude: Sequence[Optional[OcrLine]]
) -> Optional[OcrLine]:
    taken = {line.index for line in exclude if line is not None}
    candidates = [
        line for line in lines
        if line.index not in taken and not is_contact_line(line.text)
    ]
    best = pick_best_match(candidates, looks_like_company)
    if best is not None:
        return best

    ranked = sorted(
        (line for line in candidates if uppercase_ratio(line.text) > 0),
        key=lambda line: (-uppercase_ratio(line.text), line.index),
    )
    return ranked[0] if ranked else None


def _find_phone(lines: Sequence[OcrLine]) -> Optional[ExtractedField]:
    address_lines = []
    for line in lines:
        if ADDRESS_PATTERN.search(line.text):
            address_lines.append(line)
            continue
        phone = phone_in(line.text)
        if phone:
            return _as_field(line, phone)
    # Street numbers and postcodes are digit runs too
    for line in address_lines:
        phone = phone_in(POSTCODE_PATTERN.sub(" ", line.text))
        if phone:
            return _as_field(line, phone)
    return None


def _find_address(
    lines: Sequence[OcrLine], exclude: Sequence[Optional[OcrLine]]
) -> Optional[OcrLine]:
    taken = {line.index for line in exclude if line is not None}
    for line in lines:
        if line.index in taken or EMAIL_PATTERN.search(line.text):
            continue
        if ADDRESS_PATTERN.search(line.text):
            return line
    return None


def extract_fields(
    lines: Sequence[OcrLine], min_confidence: Optional[float] = None
) -> ExtractedCardData:
    """
    Assign card fields from OCR lines.

    Args:
        lines: Detected lines in reading order
        min_confidence: Cutoff as fraction or percentage (default 70%)

    Raises:
        OCRProcessingError: no line survives the threshold
    """
    kept = filter_lines(lines, min_confidence)
    if not kept:
        raise OCRProcessingError(
            "No text met the confidence threshold",
            context={"threshold": normalize_threshold(min_confidence), "line_count": len(lines)},
        )

    raw_text = "\n".join(line.text for line in kept)
    confidence = round(sum(line.confidence for line in kept) / len(kept), 2)

    result = ExtractedCardData(raw_text=raw_text, confidence=confidence, lines=kept)

    email_match = EMAIL_PATTERN.search(raw_text)
    if email_match:
        result.email = _as_field(_line_containing(kept, email_match.group(0)), email_match.group(0))

    result.phone = _find_phone(kept)

    website = _website_in(raw_text)
    if website:
        result.website = _as_field(_line_containing(kept, website), _with_scheme(website))

    name_line = _find_name(kept)
    title_line = _find_title(kept, name_line)
    company_line = _find_company(kept, [name_line, title_line])
    address_line = _find_address(kept, [name_line, title_line, company_line])

    result.name = _as_field(name_line)
    result.title = _as_field(title_line)
    result.company = _as_field(company_line)
    result.address = _as_field(address_line)
    return result
