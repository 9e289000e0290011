"""Selective and descriptive attribute handling.

Selective attributes ("spicy", "vegan") tell dish variants apart and take part
in a connection's identity. Descriptive attributes ("amazing", "huge") only
qualify a connection and are unioned in up to
``max_attributes_per_connection``; anything past the cap is dropped.
"""

import logging
from typing import Iterable, Sequence

from dishgraph.config import AttributeProcessingConfig
from dishgraph.connection import Connection, normalize_attributes, selective_signature
from dishgraph.mention import NormalizedMention
from dishgraph.pipeline.interfaces import AttributeOutcome

logger = logging.getLogger(__name__)


def classify_attributes(selective: Sequence[str], descriptive: Sequence[str]) -> AttributeOutcome:
    if selective and descriptive:
        return AttributeOutcome.MIXED
    if selective:
        return AttributeOutcome.SELECTIVE_ONLY
    if descriptive:
        return AttributeOutcome.DESCRIPTIVE_ONLY
    return AttributeOutcome.NONE


def union_attributes(existing: Iterable[str], additions: Iterable[str]) -> tuple[str, ...]:
    """Uncapped, order-preserving union of two attribute lists."""
    return normalize_attributes((*existing, *additions))


class AttributeProcessor:
    """Applies the attribute rules configured by ``AttributeProcessingConfig``."""

    def __init__(self, config: AttributeProcessingConfig | None = None):
        self.config = config or AttributeProcessingConfig()

    def effective_attributes(self, mention: NormalizedMention) -> tuple[tuple[str, ...], tuple[str, ...]]:
        """Return the (selective, descriptive) split actually used for a mention.

        With selective matching disabled, selective attributes no longer pick a
        variant and are treated as descriptive.
        """
        if self.config.enable_selective_matching:
            return mention.selective_attributes, mention.descriptive_attributes
        return (), union_attributes(mention.selective_attributes, mention.descriptive_attributes)

    def signature_for(self, mention: NormalizedMention) -> str:
        selective, _ = self.effective_attributes(mention)
        return selective_signature(selective)

    def outcome_for(self, mention: NormalizedMention) -> AttributeOutcome:
        return classify_attributes(*self.effective_attributes(mention))

    def select_connection(
        self,
        candidates: Sequence[Connection],
        selective: Sequence[str],
    ) -> Connection | None:
        """Pick the existing variant a mention's selective set belongs to.

        Exact mode requires equal signatures. Overlap mode also accepts any
        candidate sharing at least one selective attribute; a mention with no
        selective attributes still only matches the plain variant.

        When several candidates qualify, the most recently mentioned one wins
        (ties broken by connection id) and a warning is logged.

        Args:
            candidates: Every stored variant of one restaurant and dish pair.
            selective: The mention's effective selective attributes.

        Returns:
            The chosen connection, or None when a new variant is needed.
        """
        signature = selective_signature(selective)
        exact = [c for c in candidates if c.signature == signature]
        if exact:
            # Storage keeps one row per signature, so this is unambiguous.
            return exact[0]
        if self.config.require_exact_attribute_match or not signature:
            return None

        wanted = set(normalize_attributes(selective))
        overlapping = [c for c in candidates if wanted & set(c.attributes.selective_attributes)]
        if not overlapping:
            return None
        overlapping.sort(key=lambda c: (c.metrics.last_mentioned_at, c.connection_id), reverse=True)
        if len(overlapping) > 1:
            logger.warning(
                "Selective attributes %s match %d connections; using most recent %s",
                sorted(wanted),
                len(overlapping),
                overlapping[0].connection_id,
            )
        return overlapping[0]

    def merge_descriptive(
        self,
        existing: Sequence[str],
        additions: Sequence[str],
    ) -> tuple[tuple[str, ...], tuple[str, ...]]:
        """Union descriptive attributes up to the configured cap.

        Returns:
            (merged, dropped). ``dropped`` lists new attributes that did not fit.
        """
        limit = self.config.max_attributes_per_connection
        merged = list(normalize_attributes(existing))
        dropped: list[str] = []
        for attribute in normalize_attributes(additions):
            if attribute in merged:
                continue
            if len(merged) >= limit:
                dropped.append(attribute)
            else:
                merged.append(attribute)
        if dropped:
            logger.debug("Dropped descriptive attributes over the cap of %d: %s", limit, dropped)
        return tuple(merged), tuple(dropped)
