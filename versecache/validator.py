"""Structural validation of the study data files.

Checks the JSON content served by the site:

- bibles/<translation>/<Book>.json: {"<chapter>": ["verse", ...], ...}
- xrefs/*.json: {"<chapter>:<verse>": ["Book C:V[-V]", ...], ...}
- theology/*.json: [{commentary entry}, ...]

Problems are collected per file into a ValidationReport; a single bad file
never stops the run.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .config import DEFAULT_MAX_EXCERPT_WORDS

logger = logging.getLogger(__name__)

CHAPTER_KEY_RE = re.compile(r"[0-9]+")
XREF_KEY_RE = re.compile(r"[0-9]+:[0-9]+")
REFERENCE_RE = re.compile(r"(.+?)\s+([0-9]+):([0-9]+)(?:-([0-9]+))?")

COMMENTARY_REQUIRED_FIELDS = (
    "id",
    "ref",
    "tradition",
    "theologian",
    "work",
    "century",
    "mode",
    "license",
    "summary",
    "takeaways",
    "citation",
)
COMMENTARY_MODES = ("excerpt", "summary")

REPORT_WIDTH = 60


@dataclass(frozen=True)
class Reference:
    """A parsed scripture reference such as "1 John 4:9-10"."""

    book: str
    chapter: str
    verse_start: int
    verse_end: int


def parse_reference(ref: str) -> Reference | None:
    """Parse "Book C:V" or "Book C:V-W"; returns None if the text does not match."""
    match = REFERENCE_RE.fullmatch(ref)
    if not match:
        return None
    book, chapter, start, end = match.groups()
    return Reference(book=book, chapter=chapter, verse_start=int(start), verse_end=int(end or start))


def count_words(text: str) -> int:
    return len(text.split())


@dataclass
class BookStats:
    """Per-book summary across translations."""

    translations: list[str] = field(default_factory=list)
    issues: int = 0


@dataclass
class ValidationReport:
    """Accumulated validation results."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    book_stats: dict[str, BookStats] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors

    def error(self, message: str, book: str | None = None) -> None:
        self.errors.append(message)
        if book is not None:
            self.book_stats.setdefault(book, BookStats()).issues += 1

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    def format_report(self) -> str:
        """Render the textual summary printed by the CLI."""
        rule = "─" * REPORT_WIDTH
        lines = ["", "=== Validation Summary ===", "", "Book Statistics:", rule]
        lines.append(f"{'Book':<30} {'Translations':<15} Issues")
        lines.append(rule)
        for book in sorted(self.book_stats):
            stats = self.book_stats[book]
            lines.append(f"{book:<30} {', '.join(stats.translations):<15} {stats.issues}")
        lines.append(rule)

        if self.errors:
            lines.extend(["", f"Errors ({len(self.errors)}):", rule])
            lines.extend(f"  ✗ {message}" for message in self.errors)

        if self.warnings:
            lines.extend(["", f"Warnings ({len(self.warnings)}):", rule])
            lines.extend(f"  ! {message}" for message in self.warnings)

        if not self.errors and not self.warnings:
            lines.extend(["", "✓ All validations passed!"])

        lines.append("")
        return "\n".join(lines)


def _load_json(path: Path) -> Any:
    """Read a JSON file; raises ValueError or OSError with a readable message."""
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def _bible_files(bibles_dir: Path) -> list[tuple[str, Path]]:
    """(translation, path) for every book file below a translation directory."""
    files = []
    for path in sorted(bibles_dir.rglob("*.json")):
        relative = path.relative_to(bibles_dir)
        if len(relative.parts) < 2:
            # Not inside a translation directory
            continue
        files.append((relative.parts[0], path))
    return files


def validate_bible_files(root: Path, report: ValidationReport) -> None:
    """Check every book file: numeric chapter keys mapping to non-empty lists of verse strings."""
    logger.info("Validating Bible JSON files...")
    bibles_dir = root / "bibles"
    if not bibles_dir.is_dir():
        report.warn("bibles directory not found")
        return

    for translation, path in _bible_files(bibles_dir):
        book = path.stem
        report.book_stats.setdefault(book, BookStats()).translations.append(translation)

        try:
            data = _load_json(path)
        except (OSError, ValueError) as e:
            report.error(f"{path}: {e}", book)
            continue

        if not isinstance(data, dict):
            report.error(f"{path}: Bible data must be an object", book)
            continue

        for chapter, verses in data.items():
            if not CHAPTER_KEY_RE.fullmatch(chapter):
                report.error(f'{path}: Invalid chapter key "{chapter}" - must be numeric string', book)

            if not isinstance(verses, list):
                report.error(f"{path}: Chapter {chapter} must be an array of verses", book)
                continue

            if not verses:
                report.error(f"{path}: Chapter {chapter} has empty verse array", book)

            for index, verse in enumerate(verses, start=1):
                if not isinstance(verse, str):
                    report.error(f"{path}: Chapter {chapter}, verse {index} must be a string", book)


def load_bible_data(root: Path) -> dict[str, dict]:
    """Load one copy of each book (first translation in name order wins).

    Unreadable or malformed files are skipped; validate_bible_files reports them.
    """
    bibles_dir = root / "bibles"
    books: dict[str, dict] = {}
    if not bibles_dir.is_dir():
        return books

    for _, path in _bible_files(bibles_dir):
        if path.stem in books:
            continue
        try:
            data = _load_json(path)
        except (OSError, ValueError):
            continue
        if isinstance(data, dict):
            books[path.stem] = data
    return books


def _check_reference(path: Path, ref: str, bible_data: dict[str, dict], report: ValidationReport) -> None:
    parsed = parse_reference(ref)
    if parsed is None:
        report.warn(f'{path}: Could not parse reference "{ref}"')
        return

    book_data = bible_data.get(parsed.book)
    if book_data is None:
        # Book not included in the data yet
        return

    chapter = book_data.get(parsed.chapter)
    if not isinstance(chapter, list) or not chapter:
        report.error(f'{path}: Reference "{ref}" - chapter {parsed.chapter} does not exist in {parsed.book}')
        return

    for verse in (parsed.verse_start, parsed.verse_end):
        if verse < 1 or verse > len(chapter):
            report.error(
                f'{path}: Reference "{ref}" - verse {verse} does not exist in {parsed.book} {parsed.chapter}'
            )


def validate_xrefs(root: Path, bible_data: dict[str, dict], report: ValidationReport) -> None:
    """Check cross-reference files against the loaded Bible text."""
    logger.info("Validating cross-reference files...")
    xrefs_dir = root / "xrefs"
    if not xrefs_dir.is_dir():
        report.warn("xrefs directory not found")
        return

    for path in sorted(xrefs_dir.rglob("*.json")):
        try:
            data = _load_json(path)
        except (OSError, ValueError) as e:
            report.error(f"{path}: {e}")
            continue

        if not isinstance(data, dict):
            report.error(f"{path}: Cross-reference data must be an object")
            continue

        if data.get("reference") and data.get("crossReferences"):
            # Detailed single-verse format
            continue

        for key, refs in data.items():
            if not XREF_KEY_RE.fullmatch(key):
                report.error(f'{path}: Invalid key "{key}" - must match format "chapter:verse" (e.g., "3:16")')

            if not isinstance(refs, list):
                report.error(f'{path}: Value for key "{key}" must be an array')
                continue

            for ref in refs:
                if not isinstance(ref, str):
                    report.error(f'{path}: Reference in "{key}" must be a string')
                    continue
                _check_reference(path, ref, bible_data, report)


def _check_commentary_entry(prefix: str, entry: Any, max_excerpt_words: int, report: ValidationReport) -> None:
    if not isinstance(entry, dict):
        report.error(f"{prefix}: Commentary entry must be an object")
        return

    for name in COMMENTARY_REQUIRED_FIELDS:
        if name not in entry:
            report.error(f'{prefix}: Missing required field "{name}"')

    mode = entry.get("mode")
    if mode and mode not in COMMENTARY_MODES:
        report.error(f'{prefix}: mode must be "excerpt" or "summary", got "{mode}"')

    excerpt = entry.get("excerpt")
    if mode == "excerpt" and entry.get("license") == "public-domain" and isinstance(excerpt, str) and excerpt:
        words = count_words(excerpt)
        if words > max_excerpt_words:
            report.error(
                f"{prefix}: excerpt has {words} words but must be <= {max_excerpt_words} words "
                "for public-domain license"
            )

    takeaways = entry.get("takeaways")
    if takeaways and not isinstance(takeaways, list):
        report.error(f"{prefix}: takeaways must be an array")


def validate_commentary(
    root: Path,
    report: ValidationReport,
    max_excerpt_words: int = DEFAULT_MAX_EXCERPT_WORDS,
) -> None:
    """Check commentary files: arrays of entries with the required fields."""
    logger.info("Validating commentary files...")
    theology_dir = root / "theology"
    if not theology_dir.is_dir():
        report.warn("theology directory not found")
        return

    for path in sorted(theology_dir.rglob("*.json")):
        try:
            data = _load_json(path)
        except (OSError, ValueError) as e:
            report.error(f"{path}: {e}")
            continue

        if isinstance(data, dict) and data.get("reference") and data.get("commentaries"):
            # Alternative single-reference format
            continue

        if not isinstance(data, list):
            report.error(f"{path}: Commentary data must be an array")
            continue

        for index, entry in enumerate(data):
            _check_commentary_entry(f"{path}[{index}]", entry, max_excerpt_words, report)


def validate_data(root: str = ".", max_excerpt_words: int = DEFAULT_MAX_EXCERPT_WORDS) -> ValidationReport:
    """Validate all study data below root.

    Args:
        root: Directory containing bibles/, xrefs/ and theology/.
        max_excerpt_words: Word limit for public-domain excerpts.

    Returns:
        The accumulated report; report.ok is False if any structural error was found.
    """
    root_path = Path(root)
    report = ValidationReport()

    validate_bible_files(root_path, report)
    bible_data = load_bible_data(root_path)
    validate_xrefs(root_path, bible_data, report)
    validate_commentary(root_path, report, max_excerpt_words)

    logger.info("Validation finished: %d errors, %d warnings", len(report.errors), len(report.warnings))
    return report
