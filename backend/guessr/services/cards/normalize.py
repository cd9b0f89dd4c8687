"""Provider record -> Card normalization.

Each normalizer accepts one raw record as decoded from the provider's
JSON and returns a ``Card`` or ``None`` when the record cannot be
quizzed (no identity, no usable image).
"""

from typing import Any, Dict, Optional

from guessr.models import Card

UNKNOWN_LICENSE = 'All rights reserved / unknown'
UNKNOWN_NAME = 'Unknown'

LICENSE_LABELS = {
    'cc0': 'CC0',
    'cc-by': 'CC BY',
    'cc-by-sa': 'CC BY-SA',
    'cc-by-nc': 'CC BY-NC',
    'cc-by-nd': 'CC BY-ND',
    'cc-by-nc-sa': 'CC BY-NC-SA',
    'cc-by-nc-nd': 'CC BY-NC-ND',
}

# Checked in order: the longer variants must match before their prefixes
_LICENSE_URI_MARKERS = (
    ('cc0', 'CC0'),
    ('publicdomain/zero', 'CC0'),
    ('by-nc-nd', 'CC BY-NC-ND'),
    ('by-nc-sa', 'CC BY-NC-SA'),
    ('by-nc', 'CC BY-NC'),
    ('by-nd', 'CC BY-ND'),
    ('by-sa', 'CC BY-SA'),
    ('by', 'CC BY'),
)

INAT_HOME = 'https://www.inaturalist.org'
GBIF_HOME = 'https://www.gbif.org'


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ''


def _first(*values: Any) -> str:
    for value in values:
        text = _text(value)
        if text:
            return text
    return ''


def license_label(code: Optional[str]) -> str:
    """Map an iNaturalist style license code (``cc-by-nc``) to a label."""
    code = _text(code)
    if not code:
        return UNKNOWN_LICENSE
    return LICENSE_LABELS.get(code.lower(), code.upper())


def license_label_from_uri(uri: Optional[str]) -> str:
    """Map a license URI or free-form string (GBIF style) to a label."""
    uri = _text(uri)
    if not uri:
        return UNKNOWN_LICENSE
    low = uri.lower()
    if low in LICENSE_LABELS:
        return LICENSE_LABELS[low]
    for marker, label in _LICENSE_URI_MARKERS:
        if marker in low:
            return label
    return uri.upper()


def best_photo_url(photo: Optional[Dict[str, Any]]) -> Optional[str]:
    """Pick the highest resolution URL an iNaturalist photo offers."""
    if not isinstance(photo, dict):
        return None
    for key in ('original_url', 'large_url'):
        url = _text(photo.get(key))
        if url:
            return url
    url = _text(photo.get('url'))
    if url:
        # Typical pattern: .../photos/<id>/square.jpg
        return url.replace('square', 'large')
    return None


def normalize_inat_observation(obs: Dict[str, Any]) -> Optional[Card]:
    if not isinstance(obs, dict):
        return None
    taxon = obs.get('taxon')
    if not isinstance(taxon, dict) or not taxon:
        return None

    photos = obs.get('photos')
    photo = photos[0] if isinstance(photos, list) and photos else None
    image_url = best_photo_url(photo)
    if not image_url:
        return None

    scientific = _first(taxon.get('name')) or UNKNOWN_NAME
    common = _first(
        taxon.get('preferred_common_name'),
        taxon.get('english_common_name'),
        taxon.get('name'),
    ) or UNKNOWN_NAME

    attributions = []
    if photo.get('attribution'):
        attributions.append(_text(photo['attribution']))
    user = obs.get('user') if isinstance(obs.get('user'), dict) else {}
    observer = _first(user.get('name'), user.get('login'))
    if observer:
        attributions.append('Observer: ' + observer)
    attributions.append('iNaturalist')

    return Card(
        image_url=image_url,
        common_name=common,
        scientific_name=scientific,
        license=license_label(photo.get('license_code') or obs.get('license_code')),
        source=_first(obs.get('uri')) or INAT_HOME,
        attributions=tuple(a for a in attributions if a),
    )


def _gbif_image(media: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(media, list):
        return None
    for item in media:
        if not isinstance(item, dict):
            continue
        kind = _text(item.get('type')).lower()
        if kind in ('stillimage', 'image') or _text(item.get('identifier')):
            return item
    return None


def normalize_gbif_occurrence(rec: Dict[str, Any]) -> Optional[Card]:
    if not isinstance(rec, dict):
        return None
    if not any(rec.get(k) for k in ('vernacularName', 'species', 'scientificName', 'taxonKey')):
        return None

    media = _gbif_image(rec.get('media'))
    image_url = _first(media.get('identifier')) if media else ''
    if not image_url:
        return None

    scientific = _first(rec.get('scientificName'), rec.get('species')) or UNKNOWN_NAME
    common = _first(
        rec.get('vernacularName'),
        rec.get('species'),
        rec.get('scientificName'),
    ) or UNKNOWN_NAME

    attributions = []
    credit = _first(media.get('rightsHolder'), media.get('creator'))
    if credit:
        attributions.append(credit)
    if _text(rec.get('recordedBy')):
        attributions.append('Recorded by: ' + _text(rec['recordedBy']))
    if _text(rec.get('basisOfRecord')):
        attributions.append('Basis: ' + _text(rec['basisOfRecord']))
    attributions.append('GBIF')

    source = _first(rec.get('references'))
    if not source:
        source = f"{GBIF_HOME}/occurrence/{rec['key']}" if rec.get('key') else GBIF_HOME

    return Card(
        image_url=image_url,
        common_name=common,
        scientific_name=scientific,
        license=license_label_from_uri(media.get('license') or rec.get('license')),
        source=source,
        attributions=tuple(attributions),
    )
