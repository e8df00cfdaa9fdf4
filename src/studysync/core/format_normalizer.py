"""Question-bank format normalizer.

Responsibilities:
- Detect the payload shape: structured list (JSON, optionally a base64
  share code) or a delimited-text table
- Map table headers to canonical fields through an explicit alias table
- Split one table into several banks (grouping column, repeated header
  rows, id resets)
- Normalize per-type options and answers

Output is a list of NormalizedBank, each with a remote key that is stable
across re-syncs of the same remote content.
"""

from __future__ import annotations

import base64
import binascii
import csv
import io
import json
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Literal

import structlog

from studysync.core.errors import FormatError
from studysync.utils.text_utils import clean_cell, strip_extension

logger = structlog.get_logger(__name__)

# =============================================================================
# CONSTANTS
# =============================================================================

QuestionType = Literal["single", "multi", "true_false", "fill", "short"]
QUESTION_TYPES: tuple[str, ...] = ("single", "multi", "true_false", "fill", "short")
CHOICE_TYPES = ("single", "multi")
OPTION_LETTERS = ("A", "B", "C", "D")

# Header alias -> canonical field. Matching is case-insensitive.
FIELD_ALIASES: dict[str, str] = {
    "content": "content",
    "question": "content",
    "题目": "content",
    "问题": "content",
    "type": "type",
    "类型": "type",
    "题型": "type",
    "answer": "answer",
    "correct_answer": "answer",
    "答案": "answer",
    "explanation": "explanation",
    "analysis": "explanation",
    "解析": "explanation",
    "a": "option_a",
    "optiona": "option_a",
    "选项a": "option_a",
    "b": "option_b",
    "optionb": "option_b",
    "选项b": "option_b",
    "c": "option_c",
    "optionc": "option_c",
    "选项c": "option_c",
    "d": "option_d",
    "optiond": "option_d",
    "选项d": "option_d",
    "bank": "bank",
    "题库": "bank",
    "category": "bank",
    "分类": "bank",
    "bank_id": "bank_id",
    "remote_id": "bank_id",
    "题库id": "bank_id",
    "id": "id",
    "序号": "id",
}

OPTION_FIELDS = {f"option_{letter.lower()}": letter for letter in OPTION_LETTERS}

TYPE_ALIASES: dict[str, QuestionType] = {
    "single": "single",
    "单选": "single",
    "单选题": "single",
    "multi": "multi",
    "multiple": "multi",
    "多选": "multi",
    "多选题": "multi",
    "true_false": "true_false",
    "tf": "true_false",
    "判断": "true_false",
    "判断题": "true_false",
    "fill": "fill",
    "填空": "fill",
    "填空题": "fill",
    "short": "short",
    "简答": "short",
    "简答题": "short",
}

TRUE_TOKENS = {"T", "TRUE", "1", "正确", "对"}
FALSE_TOKENS = {"F", "FALSE", "0", "错误", "错"}

# A new bank starts when an ungrouped table restarts its id column at 1
# after at least this many questions.
ID_RESET_MIN_QUESTIONS = 20

DELIMITERS = (",", "\t", ";")
TOKEN_SPLIT_RE = re.compile(r"[\s,，;；|、]+")
LABEL_PUNCTUATION = "().、．:：（）"

# Columns whose value repeating the header name marks a repeated header row
HEADER_ECHO_FIELDS = ("content", "type", "id", "answer")

# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class NormalizedQuestion:
    """A question record in canonical form."""

    type: QuestionType
    content: str
    options: dict[str, str] = field(default_factory=dict)
    correct_answer: str = ""
    explanation: str = ""
    # Named corrections applied while parsing (e.g. "tf_column_shift")
    fixups: list[str] = field(default_factory=list, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "content": self.content,
            "options": dict(self.options),
            "correct_answer": self.correct_answer,
            "explanation": self.explanation,
        }


@dataclass
class NormalizedBank:
    """One remote bank: stable key, display name and its questions."""

    remote_key: str
    name: str
    questions: list[NormalizedQuestion] = field(default_factory=list)
    description: str = ""


# =============================================================================
# FIELD HELPERS
# =============================================================================


def canonical_field(header: str) -> str | None:
    """Map a header (or any cell text) to its canonical field name."""
    return FIELD_ALIASES.get(clean_cell(header).lower())


def map_fields(row: dict[str, Any]) -> dict[str, str]:
    """Convert a raw record to canonical fields.

    The first non-empty value wins when several aliases of the same field
    are present.
    """
    mapped: dict[str, str] = {}
    for key, value in row.items():
        if key is None:
            continue
        canonical = canonical_field(str(key))
        if canonical is None:
            continue
        text = clean_cell(value)
        if text and not mapped.get(canonical):
            mapped[canonical] = text
        else:
            mapped.setdefault(canonical, text)
    return mapped


def clean_option(text: str, label: str) -> str:
    """Strip a leading "A." / "A、" / "A．" / "A " style label.

    A bare letter ("A") is an option value, not a label, and is kept.
    """
    if not text:
        return ""
    return re.sub(rf"^{label}[\s\.、．:：)）]+(?=\S)", "", text, flags=re.IGNORECASE).strip()


def normalize_type(raw: str) -> QuestionType:
    """Map a type cell to a canonical question type (default: single)."""
    value = clean_cell(raw)
    if not value:
        return "single"
    qtype = TYPE_ALIASES.get(value) or TYPE_ALIASES.get(value.lower())
    if qtype is None:
        logger.debug("normalize.unknown_type", value=value)
        return "single"
    return qtype


def normalize_tf(raw: str) -> str:
    """Return "T"/"F" when the whole cell is a true/false literal, else "".

    Free text that merely contains a literal ("Not true", "True at 1 atm")
    is not recognized.
    """
    token = clean_cell(raw).upper().strip(LABEL_PUNCTUATION + " ")
    if token in TRUE_TOKENS:
        return "T"
    if token in FALSE_TOKENS:
        return "F"
    return ""


def normalize_multi(raw: str) -> str:
    """Sorted, deduplicated option letters ("CA, a" -> "AC").

    Returns "" when any token is not made of option letters only.
    """
    letters: set[str] = set()
    for part in TOKEN_SPLIT_RE.split(clean_cell(raw).upper()):
        part = part.strip(LABEL_PUNCTUATION)
        if not part:
            continue
        if any(ch not in OPTION_LETTERS for ch in part):
            return ""
        letters.update(part)
    return "".join(sorted(letters))


def normalize_single(raw: str) -> str:
    """Option letter of the first answer token ("b)" -> "B", "A C" -> "A")."""
    token = clean_cell(raw).upper()
    first = next((p for p in TOKEN_SPLIT_RE.split(token) if p), "")
    letter = first.strip(LABEL_PUNCTUATION)
    return letter if letter in OPTION_LETTERS else ""


def normalize_answer(qtype: QuestionType, raw: str) -> str:
    """Normalize an answer for a question type.

    Unrecognized choice/true-false answers are kept as cleaned text.
    """
    text = clean_cell(raw)
    if qtype == "true_false":
        normalized = normalize_tf(text)
    elif qtype == "multi":
        normalized = normalize_multi(text)
    elif qtype == "single":
        normalized = normalize_single(text)
    else:
        return text

    if text and not normalized:
        logger.debug("normalize.answer_unrecognized", type=qtype, answer=text[:40])
        return text
    return normalized


def _coerce_options(raw: Any) -> dict[str, str]:
    """Options from a dict, a list, or a JSON string of either."""
    if isinstance(raw, str):
        try:
            raw = json.loads(raw) if raw.strip() else {}
        except json.JSONDecodeError:
            return {}
    if isinstance(raw, list):
        return {
            letter: clean_cell(value)
            for letter, value in zip(OPTION_LETTERS, raw)
        }
    if isinstance(raw, dict):
        return {
            str(k).upper(): clean_cell(v)
            for k, v in raw.items()
            if str(k).upper() in OPTION_LETTERS
        }
    return {}


# =============================================================================
# QUESTION BUILDING
# =============================================================================


def build_question(
    fields: dict[str, str],
    options: dict[str, str] | None = None,
    row_number: int | None = None,
) -> NormalizedQuestion | None:
    """Build a normalized question from canonical fields.

    Args:
        fields: Canonical field -> text (see FIELD_ALIASES)
        options: Pre-parsed options; read from option_* fields if None
        row_number: Source row, for log context

    Returns:
        NormalizedQuestion, or None when the record has no content
    """
    content = clean_cell(fields.get("content", ""))
    if not content:
        logger.info("normalize.row_skipped", row=row_number, reason="missing_content")
        return None

    qtype = normalize_type(fields.get("type", ""))

    if options is None:
        options = {
            letter: fields.get(name, "")
            for name, letter in OPTION_FIELDS.items()
        }
    options = {
        letter: clean_option(options.get(letter, ""), letter)
        for letter in OPTION_LETTERS
    }

    raw_answer = clean_cell(fields.get("answer", ""))
    explanation = clean_cell(fields.get("explanation", ""))
    fixups: list[str] = []

    # Malformed true/false exports shift one column: the T/F token lands in
    # option D and the explanation text lands in the answer column.
    if (
        qtype == "true_false"
        and normalize_tf(options["D"])
        and len(raw_answer) > 2
        and not normalize_tf(raw_answer)
    ):
        shifted_answer = options["D"]
        options["D"] = ""
        explanation = f"{raw_answer}\n{explanation}" if explanation else raw_answer
        raw_answer = shifted_answer
        fixups.append("tf_column_shift")
        logger.warning(
            "normalize.tf_column_shift",
            row=row_number,
            content=content[:40],
        )

    if qtype in CHOICE_TYPES:
        kept_options = {k: v for k, v in options.items() if v}
    else:
        kept_options = {}

    return NormalizedQuestion(
        type=qtype,
        content=content,
        options=kept_options,
        correct_answer=normalize_answer(qtype, raw_answer),
        explanation=explanation,
        fixups=fixups,
    )


# =============================================================================
# TABLES
# =============================================================================


def _detect_delimiter(text: str) -> str:
    """Pick the delimiter that occurs most in the first non-empty line."""
    first_line = next((line for line in text.splitlines() if line.strip()), "")
    counts = {d: first_line.count(d) for d in DELIMITERS}
    best = max(counts, key=counts.get)
    return best if counts[best] > 0 else ","


def _is_header_row(cells: dict[str, str]) -> bool:
    """Detect a header row repeated mid-stream (concatenated exports).

    Option columns are ignored: "A".."D" are ordinary option values.
    """
    echoes = [
        name for name, value in cells.items()
        if name in HEADER_ECHO_FIELDS and value and canonical_field(value) == name
    ]
    return "content" in echoes or len(echoes) >= 2


def _read_table(text: str) -> tuple[list[str | None], list[tuple[int, list[str]]]]:
    """Read header columns (canonical names) and numbered data rows."""
    reader = csv.reader(io.StringIO(text), delimiter=_detect_delimiter(text))
    header: list[str | None] | None = None
    rows: list[tuple[int, list[str]]] = []

    for line_number, cells in enumerate(reader, start=1):
        if not any(clean_cell(c) for c in cells):
            continue
        if header is None:
            header = [canonical_field(c) for c in cells]
            continue
        rows.append((line_number, cells))

    if header is None:
        raise FormatError("Tabla vacía: no hay cabecera")
    if "content" not in header:
        raise FormatError("La cabecera no contiene una columna de contenido")
    return header, rows


def _row_fields(header: list[str | None], cells: list[str]) -> dict[str, str]:
    fields: dict[str, str] = {}
    for name, value in zip(header, cells):
        if name is None:
            continue
        text = clean_cell(value)
        if text and not fields.get(name):
            fields[name] = text
        else:
            fields.setdefault(name, text)
    return fields


def parse_table(text: str, default_name: str) -> list[NormalizedBank]:
    """Parse a delimited-text table into one or more banks.

    With a grouping column (bank name or bank id), rows are split by that
    value in first-seen order. Without one, repeated header rows and id
    resets start new banks named "<default> (<n>)".

    Raises:
        FormatError: If there is no header or no content column
    """
    header, rows = _read_table(text)

    if "bank_id" in header or "bank" in header:
        banks = _split_by_group(header, rows, default_name)
    else:
        banks = _split_by_boundaries(header, rows, default_name)

    return [b for b in banks if b.questions]


def _split_by_group(
    header: list[str | None],
    rows: list[tuple[int, list[str]]],
    default_name: str,
) -> list[NormalizedBank]:
    groups: dict[str, NormalizedBank] = {}

    for line_number, cells in rows:
        fields = _row_fields(header, cells)
        if _is_header_row(fields):
            continue
        name = fields.get("bank") or default_name
        key = fields.get("bank_id") or name
        bank = groups.get(key)
        if bank is None:
            bank = NormalizedBank(remote_key=key, name=name)
            groups[key] = bank
        question = build_question(fields, row_number=line_number)
        if question:
            bank.questions.append(question)

    return list(groups.values())


def _split_by_boundaries(
    header: list[str | None],
    rows: list[tuple[int, list[str]]],
    default_name: str,
) -> list[NormalizedBank]:
    part = 1
    current = NormalizedBank(remote_key="", name=default_name)
    banks = [current]

    def start_next() -> NormalizedBank:
        nonlocal part
        part += 1
        bank = NormalizedBank(remote_key="", name=f"{default_name} ({part})")
        banks.append(bank)
        return bank

    for line_number, cells in rows:
        fields = _row_fields(header, cells)

        if _is_header_row(fields):
            if current.questions:
                logger.debug("normalize.repeated_header", row=line_number, part=part + 1)
                current = start_next()
            continue

        if fields.get("id") == "1" and len(current.questions) >= ID_RESET_MIN_QUESTIONS:
            logger.debug("normalize.id_reset", row=line_number, part=part + 1)
            current = start_next()

        question = build_question(fields, row_number=line_number)
        if question:
            current.questions.append(question)

    # Positional keys, numbered over non-empty banks only
    index = 0
    for bank in banks:
        if bank.questions:
            index += 1
            bank.remote_key = f"csv_{index}"
    return banks


# =============================================================================
# STRUCTURED LISTS
# =============================================================================


def _structured_question(raw: Any, position: int) -> NormalizedQuestion | None:
    if not isinstance(raw, dict):
        logger.info("normalize.row_skipped", row=position, reason="not_an_object")
        return None

    fields = map_fields({k: v for k, v in raw.items() if k != "options"})
    options = _coerce_options(raw.get("options"))
    if not options:
        options = {
            letter: fields.get(name, "")
            for name, letter in OPTION_FIELDS.items()
        }
    return build_question(fields, options=options, row_number=position)


def parse_structured(data: Any, default_name: str) -> list[NormalizedBank]:
    """Parse already-shaped records.

    Accepts a list of banks, {"banks": [...]}, or a single share payload
    {"name": ..., "questions": [...]}.

    Raises:
        FormatError: If the document has none of these shapes
    """
    if isinstance(data, list):
        raw_banks = data
    elif isinstance(data, dict) and isinstance(data.get("banks"), list):
        raw_banks = data["banks"]
    elif isinstance(data, dict) and isinstance(data.get("questions"), list):
        raw_banks = [data]
    else:
        raise FormatError("JSON sin lista de bancos ni de preguntas")

    banks: list[NormalizedBank] = []
    for raw_bank in raw_banks:
        if not isinstance(raw_bank, dict):
            logger.info("normalize.bank_skipped", reason="not_an_object")
            continue
        name = clean_cell(raw_bank.get("name")) or default_name
        key = clean_cell(raw_bank.get("id")) or name
        questions = [
            q for q in (
                _structured_question(raw_q, pos)
                for pos, raw_q in enumerate(raw_bank.get("questions") or [], start=1)
            )
            if q is not None
        ]
        if questions:
            banks.append(NormalizedBank(
                remote_key=key,
                name=name,
                questions=questions,
                description=clean_cell(raw_bank.get("description")),
            ))
    return banks


def decode_share_code(text: str) -> dict[str, Any] | None:
    """Decode a base64 share code into a share payload, if it is one."""
    compact = "".join(text.split())
    if not compact:
        return None
    try:
        decoded = base64.b64decode(compact, validate=True).decode("utf-8")
        payload = json.loads(decoded)
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError, ValueError):
        return None
    if isinstance(payload, dict) and payload.get("name") and isinstance(payload.get("questions"), list):
        return payload
    return None


# =============================================================================
# ENTRY POINT
# =============================================================================


def ensure_unique_keys(banks: Iterable[NormalizedBank]) -> list[NormalizedBank]:
    """Suffix duplicate remote keys ("k", "k#2", ...) in encounter order.

    Keys present in the input keep their value; a suffix skips any key
    already taken, so ["k", "k", "k#2"] becomes ["k", "k#3", "k#2"].
    """
    result = list(banks)
    used = {bank.remote_key for bank in result}
    first_seen: set[str] = set()
    for bank in result:
        key = bank.remote_key
        if key not in first_seen:
            first_seen.add(key)
            continue
        n = 2
        while f"{key}#{n}" in used:
            n += 1
        bank.remote_key = f"{key}#{n}"
        used.add(bank.remote_key)
    return result


def normalize_payload(
    text: str,
    default_name: str,
    kind: Literal["auto", "structured", "table"] = "auto",
) -> list[NormalizedBank]:
    """Turn raw downloaded text into normalized banks.

    Args:
        text: Raw payload (JSON, base64 share code, or delimited table)
        default_name: Bank name used when the payload does not name one
        kind: Force a shape, or "auto" to detect it

    Returns:
        Non-empty list of banks with unique remote keys

    Raises:
        FormatError: If the payload is unparseable or has no questions
    """
    body = text.lstrip("\ufeff").strip()
    if not body:
        raise FormatError("Contenido vacío")

    banks: list[NormalizedBank]
    if kind == "structured":
        try:
            banks = parse_structured(json.loads(body), default_name)
        except json.JSONDecodeError as e:
            raise FormatError(f"JSON inválido: {e}") from e
    elif kind == "table":
        banks = parse_table(body, default_name)
    else:
        banks = _parse_auto(body, default_name)

    if not banks:
        raise FormatError("No se encontraron preguntas válidas")

    logger.debug(
        "normalize.done",
        banks=len(banks),
        questions=sum(len(b.questions) for b in banks),
    )
    return ensure_unique_keys(banks)


def _parse_auto(body: str, default_name: str) -> list[NormalizedBank]:
    if body[0] in "[{":
        try:
            return parse_structured(json.loads(body), default_name)
        except json.JSONDecodeError:
            logger.debug("normalize.not_json")

    share = decode_share_code(body)
    if share is not None:
        return parse_structured(share, default_name)

    return parse_table(body, default_name)


def default_bank_name(filename: str) -> str:
    """Default bank name for a file: its name without extension."""
    return strip_extension(filename)
