import concurrent.futures
import functools
import logging
import pathlib
import shutil
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Sequence, Set

import numpy as np
from PIL import Image, ImageFont
from progressbar import progressbar

import metadata
from config import DNA_DELIMITER, Background, Settings, Text, load_settings
from dna import (
    UINT256,
    DnaCollisionError,
    Selection,
    construct_layer_to_dna,
    create_dna,
    dna_identity,
    salt_from_phrase,
)
from layers import LayerCategory, Variant, layers_setup
from surface import GifRecorder, Surface, text_anchor

logger = logging.getLogger(__name__)

# Path constants
ASSETS_PATH = pathlib.Path("layers")
OUTPUT_PATH = pathlib.Path("build")


@dataclass
class LoadedLayer:
    """Result of loading one layer's asset; ``error`` is set on failure."""

    layer: LayerCategory
    variant: Variant
    image: Optional[Image.Image] = None
    error: Optional[str] = None


@dataclass
class Rendering:
    image: bytes
    attributes: List[Dict[str, str]]
    failures: List[Dict[str, str]]


@dataclass
class Edition:
    id: int
    dna: str
    hash: str
    block: int = 0
    background: Optional[str] = None
    image_path: Optional[pathlib.Path] = None
    gif_path: Optional[pathlib.Path] = None
    attributes: List[Dict[str, str]] = field(default_factory=list)
    failures: List[Dict[str, str]] = field(default_factory=list)
    metadata: Dict = field(default_factory=dict)


def build_setup(build_dir: pathlib.Path, settings: Settings) -> None:
    """Start from an empty build directory."""
    build_dir = pathlib.Path(build_dir)
    if build_dir.exists():
        shutil.rmtree(build_dir)
    (build_dir / "json").mkdir(parents=True)
    (build_dir / "images").mkdir()
    if settings.gif.export:
        (build_dir / "gifs").mkdir()


def gen_color(rng: np.random.Generator, brightness: str) -> str:
    """Random pastel colour with full saturation."""
    hue = int(rng.integers(0, 360))
    return f"hsl({hue}, 100%, {brightness})"


def background_color(background: Background, rng: np.random.Generator) -> Optional[str]:
    if not background.generate:
        return None
    if background.static:
        return background.default
    return gen_color(rng, background.brightness)


def load_font(text: Text) -> ImageFont.ImageFont:
    """Font for text-only rendering; sizes are in points like a canvas font."""
    size = round(text.size * 4 / 3)
    candidates = [text.family]
    if text.weight not in ("regular", "normal"):
        candidates.insert(0, f"{text.family}-{text.weight.title()}")
    for candidate in candidates:
        try:
            return ImageFont.truetype(candidate, size)
        except OSError:
            logger.debug("Font %s not found", candidate)
    logger.warning("Font %r not found, using Pillow's default font", text.family)
    return ImageFont.load_default(size)


def load_layer_image(layer: LayerCategory, variant: Variant) -> LoadedLayer:
    if not variant.present:
        return LoadedLayer(layer, variant)
    try:
        with Image.open(variant.path) as image:
            return LoadedLayer(layer, variant, image.convert("RGBA"))
    except OSError as error:
        logger.error("Error loading image %s: %s", variant.path, error)
        return LoadedLayer(layer, variant, error=str(error))


def draw_element(
    surface: Surface,
    loaded: LoadedLayer,
    index: int,
    text: Text,
    font: Optional[ImageFont.ImageFont],
    attributes: List[Dict[str, str]],
) -> None:
    layer = loaded.layer
    surface.global_alpha = layer.opacity
    surface.composite_operation = layer.blend
    if loaded.image is not None:
        if text.only:
            surface.fill_text(
                f"{layer.name}{text.spacer}{loaded.variant.name}",
                (text.x_gap, text.y_gap * (index + 1)),
                font,
                text.color,
                text_anchor(text.align, text.baseline),
            )
        else:
            surface.draw_image(loaded.image)
    # Alias layers are reported by the layer they shadow
    if not layer.is_alias:
        attributes.append({"trait_type": layer.name, "value": loaded.variant.name})


def render(
    selection: Selection,
    surface: Surface,
    settings: Settings,
    background: Optional[str] = None,
    gif_path: Optional[pathlib.Path] = None,
    font: Optional[ImageFont.ImageFont] = None,
) -> Rendering:
    """Composite ``selection`` onto ``surface`` in layer order."""
    loaded_layers = [load_layer_image(layer, variant) for layer, variant in selection]
    if settings.text.only and font is None:
        font = load_font(settings.text)

    logger.debug("Clearing canvas")
    surface.clear()
    recorder = None
    if gif_path is not None:
        recorder = GifRecorder(
            surface, gif_path, settings.gif.repeat, settings.gif.delay
        )
        recorder.start()
    if background is not None:
        surface.fill(background)
        if recorder is not None:
            recorder.add()

    attributes: List[Dict[str, str]] = []
    for index, loaded in enumerate(loaded_layers):
        draw_element(surface, loaded, index, settings.text, font, attributes)
        if recorder is not None:
            recorder.add()
    if recorder is not None:
        recorder.stop()

    failures = [
        {
            "trait_type": loaded.layer.name,
            "value": loaded.variant.name,
            "path": str(loaded.variant.path),
            "error": loaded.error,
        }
        for loaded in loaded_layers
        if loaded.error is not None
    ]
    return Rendering(surface.to_png(), attributes, failures)


def new_surface(settings: Settings) -> Surface:
    return Surface(
        settings.format.width, settings.format.height, settings.format.smoothing
    )


def edition_ids(settings: Settings, rng: np.random.Generator) -> List[int]:
    """Edition ids ``1..N``, shuffled when configured."""
    ids = list(range(1, settings.edition_count + 1))
    if settings.shuffle_layer_configurations:
        ids = [int(i) for i in rng.permutation(ids)]
    return ids


def create_unique_dna(
    layers: Sequence[LayerCategory],
    edition_id: int,
    settings: Settings,
    seen: Set[str],
) -> Edition:
    """Create the DNA for ``edition_id`` and apply the collision policy."""
    salt = salt_from_phrase(settings.attribute_salt)
    policy = settings.dna_collision_policy
    attempts = settings.unique_dna_tolerance if policy == "retry" else 1
    for attempt in range(attempts):
        seed, dna = create_dna(layers, edition_id, (salt + attempt) % UINT256)
        identity = dna_identity(dna)
        if identity not in seen:
            break
        logger.debug(
            "DNA exists for edition %d (attempt %d): %s", edition_id, attempt + 1, dna
        )
    else:
        if policy != "ignore":
            raise DnaCollisionError(
                f"Could not create a unique DNA for edition {edition_id} "
                f"after {attempts} attempt(s)"
            )
        logger.debug("Keeping duplicate DNA for edition %d", edition_id)
    seen.add(identity)
    return Edition(id=edition_id, dna=dna, hash=seed)


def create_edition(
    edition: Edition,
    layers: Sequence[LayerCategory],
    settings: Settings,
    build_dir: pathlib.Path,
    surface: Optional[Surface] = None,
    font: Optional[ImageFont.ImageFont] = None,
) -> Edition:
    """Render, save and describe one edition."""
    if surface is None:
        surface = new_surface(settings)
    selection = construct_layer_to_dna(edition.dna, layers)
    if settings.gif.export:
        edition.gif_path = build_dir / "gifs" / f"{edition.id}.gif"
    rendering = render(
        selection, surface, settings, edition.background, edition.gif_path, font
    )

    edition.image_path = build_dir / "images" / f"{edition.id}.png"
    edition.image_path.write_bytes(rendering.image)
    edition.attributes = rendering.attributes
    edition.failures = rendering.failures
    edition.metadata = metadata.assemble(
        edition.id, edition.dna, edition.attributes, settings
    )
    metadata.save_metadata_single_file(
        edition.metadata, build_dir / "json", settings.debug_logs
    )

    logger.debug(edition.hash)
    logger.debug(edition.dna.split(DNA_DELIMITER))
    logger.info("Created edition: %d", edition.id)
    return edition


def _render_all(
    editions: List[Edition],
    layers: Sequence[LayerCategory],
    settings: Settings,
    build_dir: pathlib.Path,
    font: Optional[ImageFont.ImageFont],
) -> Iterator[Edition]:
    job = functools.partial(
        create_edition, layers=layers, settings=settings, build_dir=build_dir, font=font
    )
    if settings.render_workers > 1:
        # Each job draws on a surface of its own
        with concurrent.futures.ThreadPoolExecutor(
            max_workers=settings.render_workers
        ) as executor:
            yield from executor.map(job, editions)
    else:
        surface = new_surface(settings)
        for edition in editions:
            yield job(edition, surface=surface)


def start_creating(
    settings: Optional[Settings] = None,
    layers_dir: pathlib.Path = ASSETS_PATH,
    build_dir: pathlib.Path = OUTPUT_PATH,
    rng: Optional[np.random.Generator] = None,
) -> List[Edition]:
    """Generate every edition of every layer configuration.

    Args:
        settings: Validated settings, loaded from config.py when omitted
        layers_dir: Directory holding one folder per layer
        build_dir: Output directory, prepared by :func:`build_setup`
        rng: Random source for shuffling and background colours

    Returns:
        Editions in ascending id order
    """
    settings = settings if settings is not None else load_settings()
    rng = rng if rng is not None else np.random.default_rng()
    build_dir = pathlib.Path(build_dir)

    ids = edition_ids(settings, rng)
    logger.debug("Editions left to create: %s", ids)
    font = load_font(settings.text) if settings.text.only else None

    editions: List[Edition] = []
    seen: Set[str] = set()
    start = 0
    for block_index, block in enumerate(settings.layer_configurations):
        layers = layers_setup(block.layers_order, layers_dir, settings.rarity_delimiter)
        planned = []
        for edition_id in ids[start:block.grow_edition_size_to]:
            edition = create_unique_dna(layers, edition_id, settings, seen)
            edition.block = block_index
            edition.background = background_color(settings.background, rng)
            planned.append(edition)
        start = block.grow_edition_size_to

        rendered = _render_all(planned, layers, settings, build_dir, font)
        editions.extend(progressbar(rendered, max_value=len(planned)))

    editions.sort(key=lambda edition: edition.id)
    metadata.write_metadata(
        [edition.metadata for edition in editions], build_dir / "json"
    )
    failures = [
        dict(failure, edition=edition.id)
        for edition in editions
        for failure in edition.failures
    ]
    if failures:
        metadata.write_failures(failures, build_dir / "json")
        logger.warning(
            "%d layer image(s) failed to load, see _failures.json", len(failures)
        )
    return editions


def main() -> None:
    """Main NFT generation workflow."""
    settings = load_settings()
    logging.basicConfig(
        level=logging.DEBUG if settings.debug_logs else logging.INFO,
        format="%(message)s",
    )

    print(f"Generating {settings.edition_count} editions from {ASSETS_PATH}/ ...")
    build_setup(OUTPUT_PATH, settings)
    editions = start_creating(settings, ASSETS_PATH, OUTPUT_PATH)

    print("\n=== Rarity Statistics ===")
    metadata_df = metadata.load_metadata(OUTPUT_PATH)
    for block_index, block in enumerate(settings.layer_configurations):
        layers = layers_setup(
            block.layers_order, ASSETS_PATH, settings.rarity_delimiter
        )
        block_ids = [edition.id for edition in editions if edition.block == block_index]
        metadata.generate_rarity_stats(metadata_df.loc[block_ids], layers)

    print("✅ Task complete!")
    print("\n📝 Next step: Run 'python metadata.py' to update names and URIs")


# Run the main function
if __name__ == "__main__":
    main()
