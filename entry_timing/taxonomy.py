"""Keyword taxonomy of prediction markets from leg metadata."""
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence


CRYPTO_TERMS = ["crypto", "bitcoin", "btc", "ethereum", "eth", "solana", "sol"]
POLITICS_TERMS = ["politic", "election", "president", "senate", "house", "governor"]
SPORTS_TERMS = ["sports", "nba", "nfl", "mlb", "nhl", "soccer", "fifa", "tennis"]
MACRO_TERMS = ["cpi", "inflation", "fed", "fomc", "interest rate", "gdp", "unemployment"]
COMMODITIES_TERMS = ["gold", "silver", "oil", "crude", "natural gas"]

DOMAIN_KEYS = ["politics", "sports", "finance", "technology", "culture", "other"]


@dataclass(frozen=True)
class TaxonomyTag:
    domain: str = "other"
    subdomain: str = "other"
    topic: str = "unknown"
    source: str = "heuristic"

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


def _lower(values: Sequence[Any]) -> List[str]:
    return [value.lower() for value in values if isinstance(value, str) and value]


def _domain_from_categories(categories: Sequence[str]) -> Optional[str]:
    joined = " ".join(categories)
    if "politic" in joined:
        return "politics"
    if "sport" in joined:
        return "sports"
    if any(term in joined for term in ("finance", "econom", "crypto", "business")):
        return "finance"
    if any(term in joined for term in ("culture", "entertainment", "awards")):
        return "culture"
    if any(term in joined for term in ("technology", "tech", "ai", "science")):
        return "technology"
    return None


def _first_match(corpus: str, choices: Sequence[tuple], default: str) -> str:
    for terms, topic in choices:
        if any(term in corpus for term in terms):
            return topic
    return default


def classify_taxonomy(row: Mapping[str, Any]) -> TaxonomyTag:
    """Tag a decision row with ``{domain, subdomain, topic}`` from its market metadata."""
    categories = _lower([row.get("leg1MarketCategory"), row.get("leg2MarketCategory")])
    subcategories = _lower([row.get("leg1MarketSubcategory"), row.get("leg2MarketSubcategory")])
    tags = _lower(list(row.get("leg1MarketTags") or []) + list(row.get("leg2MarketTags") or []))
    titles = _lower(
        [
            row.get("leg1MarketTitle"),
            row.get("leg2MarketTitle"),
            row.get("leg1EventTitle"),
            row.get("leg2EventTitle"),
        ]
    )
    corpus = " ".join(titles + categories + subcategories + tags)

    def has_any(terms: Sequence[str]) -> bool:
        return any(term in corpus for term in terms)

    def has_category(terms: Sequence[str]) -> bool:
        return any(term in category for category in categories for term in terms)

    def has_tag(terms: Sequence[str]) -> bool:
        return any(term in tag for tag in tags for term in terms)

    if has_any(CRYPTO_TERMS) or has_category(["crypto"]) or has_tag(["crypto"]):
        topic = _first_match(
            corpus,
            [(["bitcoin", "btc"], "btc"), (["ethereum", "eth"], "eth"), (["solana", "sol"], "sol")],
            "crypto_other",
        )
        return TaxonomyTag("finance", "crypto", topic, "market_metadata")
    if has_any(COMMODITIES_TERMS):
        topic = _first_match(
            corpus,
            [(["gold"], "gold"), (["silver"], "silver"), (["oil", "crude"], "oil")],
            "commodities_other",
        )
        return TaxonomyTag("finance", "commodities", topic, "market_metadata")
    if has_any(MACRO_TERMS) or has_category(["econom", "finance"]):
        topic = "inflation" if has_any(["cpi", "inflation"]) else "macro_other"
        return TaxonomyTag("finance", "macro", topic, "market_metadata")
    if has_any(POLITICS_TERMS) or has_category(["politic"]):
        topic = "presidential" if has_any(["president"]) else "politics_other"
        return TaxonomyTag("politics", "elections", topic, "market_metadata")
    if has_any(SPORTS_TERMS) or has_category(["sports"]):
        topic = _first_match(corpus, [(["nba"], "nba"), (["nfl"], "nfl"), (["mlb"], "mlb")], "sports_other")
        return TaxonomyTag("sports", "general", topic, "market_metadata")
    if categories or tags or subcategories:
        subdomain = (subcategories or tags or ["other"])[0]
        domain = _domain_from_categories(categories) or "other"
        return TaxonomyTag(domain, subdomain, "metadata_other", "market_metadata")
    return TaxonomyTag()
