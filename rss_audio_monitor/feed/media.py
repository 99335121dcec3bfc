"""Quality-aware selection of an item's audio enclosure.

Feeds may offer several renditions of one episode in a ``media:group``
(lossless original, FLAC, compressed MP3). Matching a rendition to a quality
is heuristic: by ``media:title`` keyword, then MIME family, then URL pattern.
The keyword lists are data so they can be extended without touching the
selection logic.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

DEFAULT_QUALITY = "enclosure"
FALLBACK_ORDER = ("original", "flac", "mp3")


@dataclass(frozen=True)
class Enclosure:
    """The audio resource chosen for an item."""

    url: str
    mime_type: Optional[str] = None
    length: Optional[int] = None


@dataclass(frozen=True)
class MediaVariant:
    """One ``media:content`` rendition from a ``media:group``."""

    url: str
    mime_type: Optional[str] = None
    title: Optional[str] = None
    file_size: Optional[int] = None

    def to_enclosure(self) -> Enclosure:
        return Enclosure(url=self.url, mime_type=self.mime_type, length=self.file_size)


@dataclass(frozen=True)
class QualityRule:
    """Keywords identifying one quality. Matching is case-insensitive substring."""

    title_keywords: Tuple[str, ...] = ()
    mime_keywords: Tuple[str, ...] = ()
    url_keywords: Tuple[str, ...] = ()

    def matches_title(self, title: Optional[str]) -> bool:
        return bool(title) and any(k in title.lower() for k in self.title_keywords)

    def matches_mime(self, mime_type: Optional[str]) -> bool:
        return bool(mime_type) and any(k in mime_type.lower() for k in self.mime_keywords)

    def matches_url(self, url: str) -> bool:
        return any(k in url for k in self.url_keywords)


DEFAULT_QUALITY_RULES: Dict[str, QualityRule] = {
    "original": QualityRule(
        title_keywords=("originale", "original"),
        mime_keywords=("wav", "aiff"),
        url_keywords=("-original",),
    ),
    "flac": QualityRule(
        title_keywords=("brute",),
        mime_keywords=("flac",),
        url_keywords=("-raw",),
    ),
    "mp3": QualityRule(
        title_keywords=("standard", "optimis"),
        mime_keywords=("mpeg", "mp3"),
        url_keywords=("-std",),
    ),
}


def find_variant(
    variants: Sequence[MediaVariant],
    quality: str,
    rules: Optional[Dict[str, QualityRule]] = None
) -> Optional[MediaVariant]:
    """Find the rendition matching a quality.

    Title keywords are tried across all variants first, then MIME family,
    then URL pattern.

    Args:
        variants: Renditions in document order
        quality: Quality name (a key of ``rules``)
        rules: Quality rules (defaults to DEFAULT_QUALITY_RULES)

    Returns:
        The matching variant, or None
    """
    rule = (rules or DEFAULT_QUALITY_RULES).get(quality)
    if rule is None:
        return None

    for matcher in (
        lambda v: rule.matches_title(v.title),
        lambda v: rule.matches_mime(v.mime_type),
        lambda v: rule.matches_url(v.url),
    ):
        for variant in variants:
            if matcher(variant):
                logger.debug(
                    f"Matched media variant for quality '{quality}': {variant.url}"
                )
                return variant

    return None


def select_enclosure(
    variants: Sequence[MediaVariant],
    enclosure: Optional[Enclosure],
    quality: str = DEFAULT_QUALITY,
    rules: Optional[Dict[str, QualityRule]] = None
) -> Optional[Enclosure]:
    """Pick the enclosure to download for an item.

    With the default quality the best of original > flac > mp3 is taken.
    With a specific quality that quality is tried first, then the remaining
    qualities in original > flac > mp3 order. Either way the plain
    ``<enclosure>`` is the last resort.

    Args:
        variants: Renditions from the item's media:group (may be empty)
        enclosure: The item's plain enclosure, if any
        quality: Preferred quality or DEFAULT_QUALITY
        rules: Quality rules (defaults to DEFAULT_QUALITY_RULES)

    Returns:
        The selected enclosure, or None when the item has no audio at all
    """
    if variants:
        if quality == DEFAULT_QUALITY:
            order: List[str] = list(FALLBACK_ORDER)
        else:
            order = [quality] + [q for q in FALLBACK_ORDER if q != quality]

        for candidate in order:
            variant = find_variant(variants, candidate, rules)
            if variant is not None:
                if quality != DEFAULT_QUALITY and candidate != quality:
                    logger.info(
                        f"Quality '{quality}' not found, using fallback '{candidate}'"
                    )
                return variant.to_enclosure()

    return enclosure


def available_media(
    variants: Sequence[MediaVariant],
    enclosure: Optional[Enclosure],
    rules: Optional[Dict[str, QualityRule]] = None
) -> Dict[str, Optional[str]]:
    """List every URL an item offers: the plain enclosure plus one per quality."""
    media = {"standard": enclosure.url if enclosure else None}
    for quality in FALLBACK_ORDER:
        variant = find_variant(variants, quality, rules)
        media[quality] = variant.url if variant else None
    return media
