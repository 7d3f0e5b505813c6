"""
Chat command grammar.

A line of chat text is turned into one ParsedCommand by testing
COMMAND_PATTERNS in order; the first pattern that matches wins.
Parsing never touches the store, execution lives in interpreter.py.
"""
import re
from dataclasses import dataclass
from typing import Callable, Union

from models import Priority, Status

# Full-width digits and Latin letters (U+FF10-FF5A) plus the ideographic space
_FULLWIDTH_TABLE = {
    code: code - 0xFEE0
    for code in range(ord("０"), ord("ｚ") + 1)
    if chr(code).isalnum()
}
_FULLWIDTH_TABLE[ord("　")] = ord(" ")

# Keyword -> status written by the command. 戻す sends a task back to the inbox.
STATUS_KEYWORDS = {
    "完了": Status.DONE,
    "削除": Status.DELETED,
    "進行中": Status.IN_PROGRESS,
    "保留": Status.ON_HOLD,
    "静観": Status.WATCHING,
    "戻す": Status.UNPROCESSED,
}

META_LIST = "list"
META_HELP = "help"
META_DASHBOARD = "dashboard"

META_KEYWORDS = {
    "一覧": META_LIST,
    "いちらん": META_LIST,
    "list": META_LIST,
    "使い方": META_HELP,
    "help": META_HELP,
    "ダッシュボード": META_DASHBOARD,
    "dashboard": META_DASHBOARD,
}


@dataclass(frozen=True)
class Rename:
    index: int
    title: str


@dataclass(frozen=True)
class SetPriority:
    index: int
    priority: Priority


@dataclass(frozen=True)
class SetStatus:
    indices: tuple[int, ...]
    status: Status
    keyword: str


@dataclass(frozen=True)
class MetaCommand:
    kind: str


@dataclass(frozen=True)
class Unrecognized:
    text: str


@dataclass(frozen=True)
class FreeText:
    text: str


ParsedCommand = Union[Rename, SetPriority, SetStatus, MetaCommand, Unrecognized, FreeText]


def normalize_text(text: str) -> str:
    """Map full-width alphanumerics and spaces to half-width."""
    return text.translate(_FULLWIDTH_TABLE)


_INDEX_SEP = r"[\s,、と]+"
_INDEX_LIST = rf"\d+(?:{_INDEX_SEP}\d+)*"
_KEYWORD_ALT = "|".join(STATUS_KEYWORDS)

RENAME_RE = re.compile(r"^(\d+)\s*は\s*(.+?)\s*に修正$")
PRIORITY_RE = re.compile(r"^(\d+)\s*(?:は)?\s*([SABC])$", re.IGNORECASE)
STATUS_SUFFIX_RE = re.compile(rf"^({_INDEX_LIST})\s*(?:は)?\s*({_KEYWORD_ALT})$")
STATUS_PREFIX_RE = re.compile(rf"^({_KEYWORD_ALT})\s*[:：]?\s*({_INDEX_LIST})$")
META_RE = re.compile(
    "^(" + "|".join(re.escape(k) for k in META_KEYWORDS) + ")$",
    re.IGNORECASE
)
# A leading number followed by a separator reads as an attempted command
COMMAND_LIKE_RE = re.compile(r"^\d+(?:[\s,、.]|は)")


def parse_indices(raw: str) -> tuple[int, ...]:
    """Split an index list, dropping repeats but keeping first-seen order."""
    seen = []
    for part in re.split(_INDEX_SEP, raw.strip()):
        if part and int(part) not in seen:
            seen.append(int(part))
    return tuple(seen)


def _build_meta(match: re.Match) -> ParsedCommand:
    return MetaCommand(META_KEYWORDS[match.group(1).lower()])


def _build_rename(match: re.Match) -> ParsedCommand:
    return Rename(int(match.group(1)), match.group(2).strip())


def _build_priority(match: re.Match) -> ParsedCommand:
    return SetPriority(int(match.group(1)), Priority(match.group(2).upper()))


def _build_status_suffix(match: re.Match) -> ParsedCommand:
    keyword = match.group(2)
    return SetStatus(parse_indices(match.group(1)), STATUS_KEYWORDS[keyword], keyword)


def _build_status_prefix(match: re.Match) -> ParsedCommand:
    keyword = match.group(1)
    return SetStatus(parse_indices(match.group(2)), STATUS_KEYWORDS[keyword], keyword)


# Most specific first. New command shapes are added here.
COMMAND_PATTERNS: list[tuple[re.Pattern, Callable[[re.Match], ParsedCommand]]] = [
    (META_RE, _build_meta),
    (RENAME_RE, _build_rename),
    (PRIORITY_RE, _build_priority),
    (STATUS_SUFFIX_RE, _build_status_suffix),
    (STATUS_PREFIX_RE, _build_status_prefix),
]


def parse_line(line: str) -> ParsedCommand:
    """Classify one already-normalized line of chat text."""
    line = line.strip()
    for pattern, build in COMMAND_PATTERNS:
        match = pattern.match(line)
        if match:
            return build(match)
    if COMMAND_LIKE_RE.match(line):
        return Unrecognized(line)
    return FreeText(line)


def split_lines(text: str) -> list[str]:
    """Normalize a whole message and split it into non-empty lines."""
    normalized = normalize_text(text)
    return [line.strip() for line in normalized.splitlines() if line.strip()]
