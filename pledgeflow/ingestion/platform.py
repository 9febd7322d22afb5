"""
Platform detection and header-to-field mapping for backer exports.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from pledgeflow.ingestion.models import Platform

REWARD_MARKERS = frozenset({"Reward ID", "Reward Title"})
PERK_MARKERS = frozenset({"Perk ID", "Perk"})

# Header text -> canonical field. Kickstarter and Indiegogo names side by side.
FIELD_ALIASES: Dict[str, tuple] = {
    'reward_id': ("Reward ID", "Perk ID"),
    'survey_status': ("Pledged Status", "Fulfillment Status"),
    'bonus_support': ("Bonus Support",),
    'country': ("Shipping Country",),
    'pledge_name': ("Reward Title", "Perk"),
    'price': ("Backing Minimum", "Amount"),
    'backer_name': ("Backer Name", "Name"),
    'backer_email': ("Email",),
}

HEADER_LOOKUP: Dict[str, str] = {
    alias: field_name
    for field_name, aliases in FIELD_ALIASES.items()
    for alias in aliases
}

# Kickstarter lists one column per add-on after "Notes";
# Indiegogo puts a single product in "Item Name".
TRAILING_PRODUCTS_MARKER = "Notes"
SINGLE_PRODUCT_MARKER = "Item Name"

REQUIRED_FIELDS = (
    'reward_id', 'survey_status', 'country', 'pledge_name',
    'price', 'backer_name', 'backer_email',
)


@dataclass
class ColumnMapping:
    """Resolved column positions for one header row."""

    fields: Dict[str, int] = field(default_factory=dict)
    products: List[int] = field(default_factory=list)

    def missing(self, required: Sequence[str] = REQUIRED_FIELDS) -> List[str]:
        return [name for name in required if name not in self.fields]


def detect_platform(headers: Sequence[str]) -> Platform:
    """Infer the export platform; ambiguous headers count as Kickstarter."""
    has_reward = any(header in REWARD_MARKERS for header in headers)
    has_perk = any(header in PERK_MARKERS for header in headers)

    if has_perk and not has_reward:
        return Platform.INDIEGOGO
    return Platform.KICKSTARTER


def map_columns(headers: Sequence[str]) -> ColumnMapping:
    """Resolve header names to field positions and product columns."""
    mapping = ColumnMapping()
    headers = list(headers)

    for header in headers:
        position = headers.index(header)
        field_name = HEADER_LOOKUP.get(header)

        if field_name:
            mapping.fields[field_name] = position
        elif header == TRAILING_PRODUCTS_MARKER:
            for index in range(position + 1, len(headers)):
                if index not in mapping.products:
                    mapping.products.append(index)
        elif header == SINGLE_PRODUCT_MARKER:
            if position not in mapping.products:
                mapping.products.append(position)

    return mapping
