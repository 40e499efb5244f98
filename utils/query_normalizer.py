"""
Typo correction for chart requests, run before the intent resolver.
Misspelled column names ("slaes by stat") and month names ("Febuary") are swapped for the
dataset's spelling when rapidfuzz scores them at or above SIMILARITY_THRESHOLD.
Everything else in the sentence is left exactly as typed.
"""
import calendar
import logging
import re
from typing import Dict, Iterable, List, Optional, Tuple

from rapidfuzz import fuzz
from rapidfuzz.process import extractOne

SIMILARITY_THRESHOLD = 85
# Short tokens match too eagerly ("by" -> "buy"); leave them alone
MIN_TOKEN_LENGTH = 4

# lowercase spelling -> display form, full names and three-letter abbreviations
MONTHS: Dict[str, str] = {}
for _i in range(1, 13):
    MONTHS[calendar.month_name[_i].lower()] = calendar.month_name[_i]
    MONTHS[calendar.month_abbr[_i].lower()] = calendar.month_abbr[_i]

_EDGE_PUNCT = re.compile(r"^([\"'(\[]*)(.*?)([\"')\].,;:!?]*)$")
_NUMERIC = re.compile(r"[\d./\-:,]*")

logger = logging.getLogger(__name__)


def _best(word: str, choices: Dict[str, str], threshold: int) -> Tuple[Optional[str], float]:
    """(display form, score) of the closest lowercase choice, or (None, 0)."""
    if not choices:
        return None, 0
    hit = extractOne(word, list(choices.keys()), scorer=fuzz.ratio)
    if hit is None or hit[1] < threshold:
        return None, 0
    return choices[hit[0]], hit[1]


def closest_column(name: str, column_names: Iterable[str], threshold: int = SIMILARITY_THRESHOLD) -> Optional[str]:
    """Closest column name (case-insensitive ratio) or None below threshold."""
    if not name:
        return None
    match, _ = _best(str(name).lower(), {str(c).lower(): str(c) for c in column_names}, threshold)
    return match


def _correct(core: str, columns: Dict[str, str]) -> Optional[str]:
    if len(core) < MIN_TOKEN_LENGTH or _NUMERIC.fullmatch(core):
        return None
    word = core.lower()
    column, column_score = _best(word, columns, SIMILARITY_THRESHOLD)
    if column_score == 100:
        return column
    month, month_score = _best(word, MONTHS, SIMILARITY_THRESHOLD)
    # Ties go to the column
    return month if month_score > column_score else column


def normalize_query(user_query: str, column_names: Optional[Iterable[str]] = None) -> dict:
    """
    Returns {"normalized_query": str, "correction_map": {typed: corrected}}.
    Surrounding quotes and punctuation on a token survive the correction.
    """
    query = str(user_query or "").strip()
    if not query:
        return {"normalized_query": "", "correction_map": {}}

    columns = {str(c).lower(): str(c) for c in (column_names or [])}
    correction_map: Dict[str, str] = {}
    out: List[str] = []
    for token in query.split():
        lead, core, trail = _EDGE_PUNCT.match(token).groups()
        fixed = _correct(core, columns)
        if fixed is None or fixed.lower() == core.lower():
            out.append(token)
            continue
        correction_map[core] = fixed
        out.append(lead + fixed + trail)

    if correction_map:
        logger.info("query_normalizer: corrections=%s", correction_map)
    return {"normalized_query": " ".join(out), "correction_map": correction_map}
