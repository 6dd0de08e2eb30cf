"""
Utilities for picking which spreadsheet columns hold each membership field.
"""
import json
import re
from typing import Dict, Iterable, List, Optional, Tuple

from adherent_export import ColumnMapping


# French stems found inside joined headers such as "PrénomAdherent" or
# "DateExpiration". Matched anywhere in the header.
ROLE_FRAGMENTS: Dict[str, List[str]] = {
    'first_name': ['prénom', 'prenom'],
    'last_name': ['nom'],
    'start_date': ['début', 'debut'],
    'end_date': ['expiration', 'échéance', 'echeance'],
}

# Short or English terms, matched as whole words only ("end" is not "Gender").
# Roles are tried in this order for each header, so first-name terms win over
# the shorter last-name ones.
ROLE_KEYWORDS: Dict[str, List[str]] = {
    'first_name': ['first name', 'firstname', 'given name', 'forename'],
    'last_name': ['last name', 'lastname', 'surname', 'family name'],
    'start_date': ['start', 'since', 'depuis'],
    'end_date': ['fin', 'end', 'expiry', 'expires'],
}


def normalize_column_name(col: str) -> str:
    """Normalize column name for comparison"""
    return str(col).lower().strip().replace('_', ' ').replace('-', ' ')


def keywords_to_regex_pattern(keywords: List[str], fragments: Optional[List[str]] = None) -> str:
    """
    Convert a list of keywords to a regex pattern.

    Args:
        keywords: List of keyword strings (e.g., ["first name", "end"])
        fragments: Terms that may appear anywhere, even inside a longer word

    Returns:
        Regex pattern string that matches any keyword as a whole word or any
        fragment as a substring
    """
    escaped_keywords = []
    for keyword in keywords:
        keyword = keyword.strip()
        if not keyword:
            continue
        # Allow flexible spacing inside multi-word terms
        escaped = re.escape(keyword).replace(r'\ ', r'\s+')
        escaped_keywords.append(escaped)

    escaped_fragments = [re.escape(fragment.strip()) for fragment in fragments or [] if fragment.strip()]

    alternatives = []
    if escaped_fragments:
        alternatives.append(r'(' + r'|'.join(escaped_fragments) + r')')
    if escaped_keywords:
        alternatives.append(r'\b(' + r'|'.join(escaped_keywords) + r')\b')

    if not alternatives:
        return r'(?!.*)'  # Match nothing

    return r'|'.join(alternatives)


ROLE_PATTERNS = {
    role: re.compile(keywords_to_regex_pattern(keywords, ROLE_FRAGMENTS.get(role)), re.IGNORECASE)
    for role, keywords in ROLE_KEYWORDS.items()
}


def header_fingerprint(headers: Iterable[str]) -> str:
    """Canonical key for a set of headers, independent of column order"""
    return json.dumps(sorted({str(header) for header in headers}), ensure_ascii=False)


def suggest_mapping(headers: Iterable[str]) -> ColumnMapping:
    """
    Guess the column mapping from header names.

    Each header is given at most one role and the first header matching a
    role keeps it.
    """
    mapping = ColumnMapping()
    for header in headers:
        normalized = normalize_column_name(header)
        for role, pattern in ROLE_PATTERNS.items():
            if getattr(mapping, role) is not None:
                continue
            if pattern.search(normalized):
                setattr(mapping, role, header)
                break
    return mapping


def mapping_fits_headers(mapping: ColumnMapping, headers: Iterable[str]) -> bool:
    """Check that every header named by the mapping exists in the sheet"""
    available = set(headers)
    return all(header in available for header in mapping.headers() if header)


def resolve_mapping(headers: List[str], stored: Optional[ColumnMapping]) -> Tuple[ColumnMapping, str]:
    """
    Pick the mapping to offer for a sheet.

    A stored preference is used when all of its headers are still present,
    otherwise the mapping is suggested from header names.

    Returns:
        Tuple of (mapping, source) where source is 'stored' or 'suggested'
    """
    if stored is not None and any(stored.headers()) and mapping_fits_headers(stored, headers):
        return stored, 'stored'
    return suggest_mapping(headers), 'suggested'
