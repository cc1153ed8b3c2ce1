"""Parser for `<id>-meta.txt` artwork metadata files.

Hey future me - this parses the text files the downloader drops next to every artwork. The
format is dead simple but NOT key: value - a field name sits alone on its own line and the
value follows on the next line(s):

    ID
    12345678

    User
    some artist

    Tags
    #tag one
    #tag two

Rules we follow:
1. A line that (trimmed, any case, optional trailing ":") equals a KNOWN field name starts a
   new field. Anything else is value.
2. Blank lines right after a field name are skipped.
3. Blank lines INSIDE a value (paragraphs in a description) are kept, but only if more text
   for the same field follows. Trailing blank lines before the next field name are dropped.
4. Text before the first field name is ignored. If a field appears twice, the last one wins.

Usage:
    from artshelf.domain.value_objects.metadata_parsing import (
        extract_artwork_id,
        parse_metadata_file,
    )

    artwork_id = extract_artwork_id("12345-meta.txt")  # "12345"
    record = parse_metadata_file(Path("/library/a/12345-meta.txt"))
"""

import logging
import re
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

from artshelf.domain.entities import MetadataRecord
from artshelf.domain.exceptions import MetadataFileNotFoundError, MetadataParseError

logger = logging.getLogger(__name__)


# =============================================================================
# PATTERNS
# =============================================================================

# Metadata filename: "<digits>-meta.txt". The id part is the artwork's external id.
# Examples:
#   "12345-meta.txt" -> "12345"
#   "12345-META.TXT" -> "12345"
#   "meta.txt"       -> None
#   "report.txt"     -> None
METADATA_FILENAME_PATTERN = re.compile(r"^(\d+)-meta\.txt$", re.IGNORECASE)

NUMERIC_ID_PATTERN = re.compile(r"^\d+$")

# Leading integer, like JS parseInt: "1234" -> 1234, "12 bookmarks" -> 12, "abc" -> no match
LEADING_INT_PATTERN = re.compile(r"^[+-]?\d+")

# Date formats seen in the wild, tried after ISO 8601
DATE_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y/%m/%d %H:%M:%S",
    "%Y/%m/%d %H:%M",
    "%Y/%m/%d",
    "%Y-%m-%d",
    "%a, %d %b %Y %H:%M:%S %Z",
    "%a %b %d %Y %H:%M:%S",
)


# =============================================================================
# FIELDS
# =============================================================================


class MetadataField(str, Enum):
    """Closed set of field names that may appear in a metadata file.

    The enum value is the exact spelling used in the file. Anything not listed here
    is treated as value text, never as a field.
    """

    ID = "ID"
    USER = "User"
    USER_ID = "UserID"
    TITLE = "Title"
    DESCRIPTION = "Description"
    TAGS = "Tags"
    URL = "URL"
    ORIGINAL = "Original"
    THUMBNAIL = "Thumbnail"
    X_RESTRICT = "xRestrict"
    AI = "AI"
    SIZE = "Size"
    BOOKMARK = "Bookmark"
    DATE = "Date"


# Field -> MetadataRecord attribute. Must cover EVERY MetadataField (checked in tests).
FIELD_TARGETS: dict[MetadataField, str] = {
    MetadataField.ID: "id",
    MetadataField.USER: "user",
    MetadataField.USER_ID: "user_id",
    MetadataField.TITLE: "title",
    MetadataField.DESCRIPTION: "description",
    MetadataField.TAGS: "tags",
    MetadataField.URL: "url",
    MetadataField.ORIGINAL: "original",
    MetadataField.THUMBNAIL: "thumbnail",
    MetadataField.X_RESTRICT: "x_restrict",
    MetadataField.AI: "is_ai_generated",
    MetadataField.SIZE: "size",
    MetadataField.BOOKMARK: "bookmark_count",
    MetadataField.DATE: "source_date",
}

REQUIRED_FIELDS: tuple[MetadataField, ...] = (
    MetadataField.ID,
    MetadataField.USER,
    MetadataField.USER_ID,
    MetadataField.TITLE,
)

# Case-folded lookup: "tags", "TAGS" and "Tags:" all start the Tags field
_FIELDS_BY_NAME: dict[str, MetadataField] = {f.value.casefold(): f for f in MetadataField}


# =============================================================================
# HELPERS
# =============================================================================


def extract_artwork_id(filename: str) -> str | None:
    """Extract the artwork external id from a metadata file name.

    Args:
        filename: Bare file name (no directory part)

    Returns:
        The digit id, or None if the name is not a metadata file name
    """
    match = METADATA_FILENAME_PATTERN.match(filename)
    return match.group(1) if match else None


def is_metadata_file(filename: str) -> bool:
    """Check whether a file name looks like `<digits>-meta.txt`."""
    return extract_artwork_id(filename) is not None


def field_for_line(line: str) -> MetadataField | None:
    """Return the field a (trimmed) line starts, or None for value text.

    Example:
        field_for_line("Tags")   # MetadataField.TAGS
        field_for_line("userid:")  # MetadataField.USER_ID
        field_for_line("#tags")  # None
    """
    name = line.strip()
    if name.endswith(":"):
        name = name[:-1].rstrip()
    return _FIELDS_BY_NAME.get(name.casefold())


def parse_tags(value: str) -> tuple[str, ...]:
    """Split a Tags block into clean tag names.

    "#a\\n#b\\n#a" -> ("a", "b"). Empty lines and lone "#" are dropped, repeats keep
    their first position.
    """
    tags: dict[str, None] = {}
    for line in value.split("\n"):
        tag = line.strip()
        if tag.startswith("#"):
            tag = tag[1:]
        if tag:
            tags.setdefault(tag, None)
    return tuple(tags)


def parse_bookmark(value: str) -> int:
    """Parse the Bookmark count; anything unparseable counts as 0."""
    match = LEADING_INT_PATTERN.match(value.strip())
    return int(match.group(0)) if match else 0


def parse_date(value: str) -> datetime | None:
    """Best-effort date parse. Returns None when nothing matches.

    Naive results are assumed to be UTC.
    """
    text = value.strip()
    if not text:
        return None

    parsed: datetime | None = None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        for fmt in DATE_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue

    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


# =============================================================================
# PARSER
# =============================================================================


def _split_fields(content: str) -> dict[MetadataField, str]:
    """Walk the lines and collect raw (trimmed) values per field."""
    values: dict[MetadataField, str] = {}
    current: MetadataField | None = None
    lines: list[str] = []
    pending_blanks = 0

    def commit() -> None:
        if current is None:
            return
        value = "\n".join(lines).strip()
        if value:
            values[current] = value

    for raw_line in content.splitlines():
        line = raw_line.strip()

        field = field_for_line(line)
        if field is not None:
            commit()
            current = field
            lines = []
            pending_blanks = 0
            continue

        if current is None:
            continue

        if not line:
            if lines:
                pending_blanks += 1
            continue

        if pending_blanks:
            lines.extend([""] * pending_blanks)
            pending_blanks = 0
        lines.append(line)

    commit()
    return values


def _validate(values: dict[MetadataField, str]) -> list[str]:
    """Return every violated rule (empty list = valid)."""
    violations: list[str] = []

    for field in REQUIRED_FIELDS:
        if not values.get(field, "").strip():
            violations.append(f"Required field '{field.value}' is missing or empty")

    artwork_id = values.get(MetadataField.ID)
    if artwork_id and not NUMERIC_ID_PATTERN.match(artwork_id):
        violations.append("ID must be a numeric string")

    user_id = values.get(MetadataField.USER_ID)
    if user_id and not NUMERIC_ID_PATTERN.match(user_id):
        violations.append("UserID must be a numeric string")

    return violations


def _convert(field: MetadataField, value: str) -> object:
    """Convert a raw field value to the type MetadataRecord expects."""
    match field:
        case MetadataField.TAGS:
            return parse_tags(value)
        case MetadataField.AI:
            return value == "Yes"
        case MetadataField.BOOKMARK:
            return parse_bookmark(value)
        case MetadataField.DATE:
            # Hey future me - a garbage date must NEVER fail the record, we just stamp "now"
            return parse_date(value) or datetime.now(UTC)
        case (
            MetadataField.ID
            | MetadataField.USER
            | MetadataField.USER_ID
            | MetadataField.TITLE
            | MetadataField.DESCRIPTION
            | MetadataField.URL
            | MetadataField.ORIGINAL
            | MetadataField.THUMBNAIL
            | MetadataField.X_RESTRICT
            | MetadataField.SIZE
        ):
            return value


def parse_metadata_content(content: str, path: str | None = None) -> MetadataRecord:
    """Parse the text of a metadata file into a MetadataRecord.

    Args:
        content: Full file contents
        path: Source path, only used for error reporting

    Returns:
        Parsed, validated record

    Raises:
        MetadataParseError: If any validation rule is violated (all rules listed)
    """
    values = _split_fields(content)

    violations = _validate(values)
    if violations:
        raise MetadataParseError(violations, path=path)

    kwargs = {FIELD_TARGETS[field]: _convert(field, value) for field, value in values.items()}
    return MetadataRecord(**kwargs)  # type: ignore[arg-type]


def parse_metadata_file(path: Path) -> MetadataRecord:
    """Read and parse one metadata file from disk.

    Blocking I/O - the scanner calls this through asyncio.to_thread().

    Raises:
        MetadataFileNotFoundError: The file disappeared (moved/deleted mid-scan)
        MetadataParseError: The path is not a file, can't be decoded, or fails validation
    """
    try:
        if not path.is_file():
            if not path.exists():
                raise MetadataFileNotFoundError(str(path))
            raise MetadataParseError([f"Path is not a file: {path}"], path=str(path))
        content = path.read_text(encoding="utf-8-sig")
    except FileNotFoundError as e:
        raise MetadataFileNotFoundError(str(path)) from e
    except (OSError, UnicodeDecodeError) as e:
        raise MetadataParseError([f"Cannot read {path}: {e}"], path=str(path)) from e

    return parse_metadata_content(content, path=str(path))
