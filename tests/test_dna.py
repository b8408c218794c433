import pathlib

import pytest

from dna import (
    attribute_hash,
    clean_dna,
    construct_layer_to_dna,
    create_dna,
    dna_identity,
    effective_index,
    encode_dna,
    keccak256,
    remove_query_strings,
    salt_from_phrase,
    select_variant,
)
from layers import LayerCategory, Variant


def variants(*weights, names=None):
    names = names or [f"V{i}" for i in range(len(weights))]
    return tuple(
        Variant(
            id=i,
            name=name,
            filename=f"{name}.png",
            path=pathlib.Path(f"{name}.png"),
            weight=w,
        )
        for i, (name, w) in enumerate(zip(names, weights))
    )


def seed_for(x, index=0):
    return (x << (64 * index)).to_bytes(32, "big")


@pytest.fixture
def clothing_and_hands():
    clothing = LayerCategory(
        id=0,
        name="Clothing",
        folder="Clothing",
        variants=variants(1, 1, names=["Jacket", "Shirt"]),
    )
    jacket, shirt = clothing.variants
    hands = LayerCategory(
        id=1,
        name="Hands",
        folder="Hands",
        use_index=0,
        variants=(
            Variant(id=0, name="Jacket", filename=None, path=None),
            Variant(
                id=1,
                name="Shirt",
                filename="Shirt.png",
                path=pathlib.Path("Hands/Shirt.png"),
            ),
        ),
    )
    return clothing, hands


@pytest.mark.parametrize(
    "x, expected", [(0, 0), (1, 1), (2, 1), (3, 2), (5, 2), (6, 0), (8, 1)]
)
def test_select_variant_uses_cumulative_intervals(x, expected):
    assert select_variant(seed_for(x), 0, variants(1, 2, 3)).id == expected


def test_select_variant_reads_the_window_of_its_index():
    # 3 * 2**64 is a multiple of 6, the total weight
    seed = (3 << 64).to_bytes(32, "big")
    options = variants(1, 2, 3)

    assert select_variant(seed, 0, options).id == 0
    assert select_variant(seed, 1, options).id == 2


def test_select_variant_is_deterministic():
    seed = attribute_hash(42)
    options = variants(3, 1, 7, 2)

    picks = {select_variant(seed, 2, options).id for _ in range(20)}

    assert len(picks) == 1


def test_select_variant_needs_variants():
    with pytest.raises(ValueError):
        select_variant(seed_for(0), 0, ())


def test_keccak256_matches_ethereum_hash():
    assert keccak256(b"").hex() == (
        "c5d2460186f7233c927e7db2dcc703c0e500b653ca82273b7bfad8045d85a470"
    )


def test_attribute_hash_is_fixed_width_and_deterministic():
    assert len(attribute_hash(1)) == 32
    assert attribute_hash(1) == attribute_hash(1)
    assert attribute_hash(1) != attribute_hash(2)
    salted = [attribute_hash(1, salt_from_phrase(phrase)) for phrase in ("a", "b")]
    assert salted[0] != salted[1]


def test_round_trip_without_aliases():
    layers = [
        LayerCategory(
            id=0, name="Background", folder="Background", variants=variants(1, 1)
        ),
        LayerCategory(id=1, name="Body", folder="Body", variants=variants(1, 1, 1)),
    ]

    dna = encode_dna(layers, [1, 2])
    selection = construct_layer_to_dna(dna, layers)

    assert dna == "1:V1.png-2:V2.png"
    assert [(layer.id, variant.id) for layer, variant in selection] == [(0, 1), (1, 2)]


def test_alias_decodes_the_target_choice(clothing_and_hands):
    clothing, hands = clothing_and_hands
    layers = [clothing, hands]

    dna = encode_dna(layers, [1, 0])
    (_, cloth), (_, hand) = construct_layer_to_dna(dna, layers)

    assert dna == "1:Shirt.png-1:Shirt.png"
    assert (cloth.name, hand.name) == ("Shirt", "Shirt")
    assert hand.path == pathlib.Path("Hands/Shirt.png")


def test_alias_without_art_decodes_to_absent_variant(clothing_and_hands):
    layers = list(clothing_and_hands)

    dna = encode_dna(layers, [0, None])
    (_, cloth), (_, hand) = construct_layer_to_dna(dna, layers)

    assert dna == "0:Jacket.png-0:"
    assert cloth.name == hand.name == "Jacket"
    assert not hand.present


def test_create_dna_shares_choice_with_alias_target(clothing_and_hands):
    layers = list(clothing_and_hands)

    for token_id in range(1, 30):
        seed, dna = create_dna(layers, token_id)
        clothing_segment, hands_segment = dna.split("-")
        assert clothing_segment.split(":")[0] == hands_segment.split(":")[0]
        assert seed == "0x" + attribute_hash(token_id).hex()


def test_create_dna_is_reproducible(clothing_and_hands):
    layers = list(clothing_and_hands)

    assert create_dna(layers, 7) == create_dna(layers, 7)


def test_effective_index(clothing_and_hands):
    clothing, hands = clothing_and_hands

    assert effective_index(clothing) == 0
    assert effective_index(hands) == 0


def test_query_strings_are_ignored():
    layers = [
        LayerCategory(
            id=0, name="Background", folder="Background", variants=variants(1, 1)
        ),
        LayerCategory(id=1, name="Body", folder="Body", variants=variants(1, 1, 1)),
    ]
    dna = "1:V1.png?blend=multiply-2:V2.png"

    assert remove_query_strings("1:V1.png?blend=multiply") == "1:V1.png"
    assert clean_dna("12:V1.png?opacity=0.5") == 12
    assert dna_identity(dna) == "1:V1.png-2:V2.png"
    assert [v.id for _, v in construct_layer_to_dna(dna, layers)] == [1, 2]


def test_decode_rejects_malformed_dna():
    layers = [LayerCategory(id=0, name="Body", folder="Body", variants=variants(1, 1))]

    with pytest.raises(ValueError, match="matches no variant"):
        construct_layer_to_dna("9:Nope.png", layers)
    with pytest.raises(ValueError, match="segments"):
        construct_layer_to_dna("0:V0.png-1:V1.png", layers)
