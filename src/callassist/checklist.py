"""Per-call checklist state and templates."""

from __future__ import annotations

from dataclasses import replace
from typing import Dict, Iterable, List, Optional

from .models import ChecklistItem


TEMPLATES: Dict[str, List[str]] = {
    "dubai_vouchers": [
        "Vouchers are live and ready on the Pickyourtrail app",
        "Documents to carry: Original passports with printed copies, flight tickets, "
        "hotel vouchers, colored visa printouts, travel insurance if opted",
        "Emirates Airlines baggage: 30 kg checked baggage and 7 kg cabin baggage per person",
        "Hotel check-in time is 2:00 PM and check-out time is 12:00 PM. "
        "Early check-in and late checkout usually not available",
        "Tourism Dirham Fee: AED 7 to AED 20 per room per night, "
        "payable on arrival at hotel, non-refundable",
        "Activity timings will be shared 1 day in advance. "
        "Driver numbers shared 1 hour before pickup time",
        "All transfers are on shared basis unless upgraded to private at extra cost",
        "Desert Safari and Dhow Cruise: Vegetarian food options are limited. "
        "Dune bashing not recommended for infants, senior citizens, or pregnant women",
        "Burj Khalifa combo ticket: Redeem at Burj Khalifa counter in Dubai Mall. "
        "Arrive 30 minutes before your slot time",
        "BAPS Mandir: Register online 1 day prior at mandir.ae/visit. "
        "Carry passport for verification. Closed on Mondays",
        "Airport arrival: Driver will be in arrivals hall with placard showing your name",
        "Abu Dhabi Airport shuttle: Driver meets at XNB Etihad Travel Mall in Dubai",
        "Transfer waiting time: 5 minutes for shared transfers, "
        "10 minutes for private transfers. No stops in between",
        "24/7 live chat support on app starts 3 days before your trip. "
        "No WhatsApp support available",
        "Contact hours: Available 10 AM to 7 PM for any assistance",
    ],
    "generic": [
        "Confirm the customer's booking details and access to their vouchers",
        "Walk through the essential information needed before the trip",
        "Highlight time-sensitive items and requirements from the customer",
        "Address special conditions or limitations",
        "Provide contact information for ongoing support",
        "Ask if the customer has any questions before closing",
    ],
}


def build_checklist(
    template: Optional[str] = None,
    texts: Optional[Iterable[str]] = None,
) -> List[ChecklistItem]:
    """Create fresh, uncompleted items numbered from 1.

    Explicit ``texts`` win over a named template.
    """
    if texts is None:
        name = template or "generic"
        if name not in TEMPLATES:
            raise KeyError(f"Unknown checklist template: {name}")
        texts = TEMPLATES[name]
    return [
        ChecklistItem(id=str(idx), text=text, completed=False)
        for idx, text in enumerate(texts, start=1)
    ]


class ChecklistState:
    """Monotonic completion record for one call.

    Items only ever move from pending to completed. Merging the same ids
    twice changes nothing the second time, and ids that are not part of the
    checklist are ignored.
    """

    def __init__(self, items: Iterable[ChecklistItem]) -> None:
        self._items: List[ChecklistItem] = []
        self._index: Dict[str, int] = {}
        for item in items:
            if item.id in self._index:
                raise ValueError(f"Duplicate checklist id: {item.id}")
            self._index[item.id] = len(self._items)
            self._items.append(replace(item))

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._index

    @property
    def items(self) -> List[ChecklistItem]:
        return [replace(item) for item in self._items]

    def completed_ids(self) -> List[str]:
        return [item.id for item in self._items if item.completed]

    def is_complete(self) -> bool:
        return all(item.completed for item in self._items)

    def merge(self, completed_ids: Iterable[str]) -> List[str]:
        """Mark ids complete and return the ones that actually changed."""
        changed: List[str] = []
        for item_id in completed_ids:
            idx = self._index.get(str(item_id))
            if idx is None:
                continue
            item = self._items[idx]
            if item.completed:
                continue
            item.completed = True
            changed.append(item.id)
        return changed
