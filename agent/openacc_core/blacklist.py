"""
Blacklist helpers: keyword → match count for the current cycle.
"""

from .constants import BLACKLIST_TIERS
from .errors import NetworkError


def build_blacklist(payload):
    """Flatten the severity tiers into {keyword: 0}. Keywords are lowercased.

    A missing tier is empty; a tier that is not a list raises NetworkError.
    """
    blacklist = {}
    for tier in BLACKLIST_TIERS:
        keywords = payload.get(tier)
        if keywords is None:
            continue
        if not isinstance(keywords, list):
            raise NetworkError(f"Blacklist tier {tier} is not a list")
        for keyword in keywords:
            if not isinstance(keyword, str):
                continue
            keyword = keyword.strip().lower()
            if keyword:
                blacklist.setdefault(keyword, 0)
    return blacklist


def reset_counts(blacklist):
    for keyword in blacklist:
        blacklist[keyword] = 0


def event_report(blacklist):
    """Keywords seen this cycle and how often."""
    return {keyword: count for keyword, count in blacklist.items() if count > 0}
