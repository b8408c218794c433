"""DNA strings: seeded trait selection, encoding and decoding.

A DNA string holds one ``"<variant id>:<filename>"`` segment per configured
layer, joined by ``DNA_DELIMITER``. Alias layers carry the id chosen for the
layer they shadow. Segments may end in a ``?key=value`` query string that is
ignored when decoding and when comparing DNA for uniqueness.
"""
import re
from typing import List, Optional, Sequence, Tuple

import numpy as np
from Crypto.Hash import keccak

from config import DNA_DELIMITER
from layers import LayerCategory, Variant

# Each layer reads its own 64 bit window of the seed
SEED_OFFSET_BITS = 64
UINT256 = 2**256

_QUERY_STRING = re.compile(r"\?.*$")

Selection = List[Tuple[LayerCategory, Variant]]


class DnaCollisionError(RuntimeError):
    """Raised when no unique DNA could be produced for an edition."""


def keccak256(data: bytes) -> bytes:
    """Ethereum flavoured Keccak-256, not the NIST SHA3 padding."""
    return keccak.new(digest_bits=256, data=data).digest()


def salt_from_phrase(phrase: str) -> int:
    return int.from_bytes(keccak256(phrase.encode("utf-8")), "big")


ATTRIBUTE_SALT = salt_from_phrase("Somewhere Nowhere")


def attribute_hash(token_id: int, salt: int = ATTRIBUTE_SALT) -> bytes:
    """32 byte seed for ``token_id``, hashed from two packed uint256 values."""
    packed = (token_id % UINT256).to_bytes(32, "big") + (salt % UINT256).to_bytes(
        32, "big"
    )
    return keccak256(packed)


def effective_index(layer: LayerCategory) -> int:
    """Index whose choice decides ``layer``: its alias target, or itself."""
    return layer.use_index if layer.is_alias else layer.id


def select_variant(seed: bytes, index: int, variants: Sequence[Variant]) -> Variant:
    """Weighted draw from ``variants`` using the seed window at ``index``.

    ``x`` is the seed shifted right by ``64 * index`` bits modulo the total
    weight; the winner is the first variant whose cumulative interval
    ``[sum, sum + weight)`` contains ``x``.
    """
    if not variants:
        raise ValueError("Cannot select from a layer without variants")
    cum_weights = np.cumsum([variant.weight for variant in variants])
    window = int.from_bytes(seed, "big") >> (SEED_OFFSET_BITS * index)
    x = window % int(cum_weights[-1])
    return variants[int(np.searchsorted(cum_weights, x, side="right"))]


def _variant_by_id(layer: LayerCategory, variant_id: int) -> Optional[Variant]:
    for variant in layer.variants:
        if variant.id == variant_id:
            return variant
    return None


def encode_dna(
    layers: Sequence[LayerCategory], choices: Sequence[Optional[int]]
) -> str:
    """Join one segment per layer, reading each choice at its effective index.

    ``choices[i]`` is the variant id picked for layer ``i``; entries at alias
    positions are not consulted.
    """
    segments = []
    for layer in layers:
        variant_id = choices[effective_index(layer)]
        variant = _variant_by_id(layer, variant_id)
        if variant is None:
            raise ValueError(
                f"Layer {layer.name!r} has no variant with id {variant_id}"
            )
        segments.append(f"{variant.id}:{variant.filename or ''}")
    return DNA_DELIMITER.join(segments)


def create_dna(
    layers: Sequence[LayerCategory], token_id: int, salt: int = ATTRIBUTE_SALT
) -> Tuple[str, str]:
    """Return ``(hex seed, dna)`` for ``token_id``."""
    seed = attribute_hash(token_id, salt)
    choices = [
        None if layer.is_alias else select_variant(seed, layer.id, layer.variants).id
        for layer in layers
    ]
    for layer in layers:
        if layer.is_alias and choices[layer.use_index] is None:
            # Layer aliasing itself
            choices[layer.use_index] = select_variant(
                seed, layer.use_index, layer.variants
            ).id
    return "0x" + seed.hex(), encode_dna(layers, choices)


def remove_query_strings(dna: str) -> str:
    """Drop a trailing ``?key=value`` option from a DNA segment."""
    return _QUERY_STRING.sub("", dna)


def clean_dna(segment: str) -> int:
    """Variant id of one DNA segment."""
    return int(remove_query_strings(segment).split(":")[0])


def dna_identity(dna: str) -> str:
    """DNA with every segment's options removed, used for uniqueness."""
    return DNA_DELIMITER.join(
        remove_query_strings(segment) for segment in dna.split(DNA_DELIMITER)
    )


def construct_layer_to_dna(dna: str, layers: Sequence[LayerCategory]) -> Selection:
    """Decode ``dna`` into one ``(layer, variant)`` pair per layer."""
    segments = dna.split(DNA_DELIMITER)
    if len(segments) != len(layers):
        raise ValueError(
            f"DNA has {len(segments)} segments for {len(layers)} layers: {dna}"
        )
    selection = []
    for layer in layers:
        segment = segments[effective_index(layer)]
        variant = _variant_by_id(layer, clean_dna(segment))
        if variant is None:
            raise ValueError(
                f"DNA segment {segment!r} matches no variant of layer {layer.name!r}"
            )
        selection.append((layer, variant))
    return selection
