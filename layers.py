import logging
import pathlib
from dataclasses import dataclass, replace
from typing import List, Optional, Sequence, Tuple

from config import DNA_DELIMITER, ConfigurationError, LayerEntry

logger = logging.getLogger(__name__)


class InvalidLayerName(ValueError):
    """Raised when an asset filename contains the DNA delimiter."""


@dataclass(frozen=True)
class Variant:
    """One selectable asset of a layer."""

    id: int
    name: str
    filename: Optional[str]
    path: Optional[pathlib.Path]
    weight: int = 1

    @property
    def present(self) -> bool:
        return self.path is not None


@dataclass(frozen=True)
class LayerCategory:
    """One trait slot, e.g. Background or Body.

    ``use_index`` points at the layer whose selection this one shadows,
    or is -1.
    """

    id: int
    name: str
    folder: str
    variants: Tuple[Variant, ...]
    blend: str = "source-over"
    opacity: float = 1.0
    use_index: int = -1

    @property
    def is_alias(self) -> bool:
        return self.use_index >= 0


def _split_weight(filename: str, rarity_delimiter: str) -> Tuple[str, str]:
    name, delimiter, weight = filename[:-4].rpartition(rarity_delimiter)
    if not delimiter:
        return weight, ""
    return name, weight


def get_rarity_weight(filename: str, rarity_delimiter: str) -> int:
    """Weight encoded after the rarity delimiter, 1 if missing or invalid."""
    _, weight = _split_weight(filename, rarity_delimiter)
    try:
        value = int(weight)
    except ValueError:
        return 1
    return value if value > 0 else 1


def clean_name(filename: str, rarity_delimiter: str) -> str:
    """Display name: filename without extension and rarity weight."""
    name, _ = _split_weight(filename, rarity_delimiter)
    return name


def load_category(path: pathlib.Path, rarity_delimiter: str) -> List[Variant]:
    """Load the variants of one layer directory.

    Hidden files are skipped and ids follow the sorted listing so a DNA
    string maps to the same asset on every run.
    """
    path = pathlib.Path(path)
    if not path.is_dir():
        raise FileNotFoundError(f"Layer directory not found: {path}")

    filenames = sorted(
        entry.name for entry in path.iterdir() if not entry.name.startswith(".")
    )
    variants = []
    for index, filename in enumerate(filenames):
        if DNA_DELIMITER in filename:
            raise InvalidLayerName(
                f"layer name can not contain dashes, please fix: {path / filename}"
            )
        variants.append(
            Variant(
                id=index,
                name=clean_name(filename, rarity_delimiter),
                filename=filename,
                path=path / filename,
                weight=get_rarity_weight(filename, rarity_delimiter),
            )
        )
    return variants


def _find_use_index(entry: LayerEntry, layers_order: Sequence[LayerEntry]) -> int:
    if entry.use is None:
        return -1
    for index, other in enumerate(layers_order):
        if other.name == entry.use:
            return index
    logger.warning("Layer %r uses unknown layer %r, ignoring", entry.name, entry.use)
    return -1


def _shadow(layer: LayerCategory, target: LayerCategory) -> LayerCategory:
    own = {}
    for variant in layer.variants:
        own.setdefault(variant.name, variant)
    variants = []
    for element in target.variants:
        match = own.get(element.name)
        variants.append(
            replace(
                element,
                filename=match.filename if match else None,
                path=match.path if match else None,
            )
        )
    return replace(layer, variants=tuple(variants))


def layers_setup(
    layers_order: Sequence[LayerEntry],
    layers_dir: pathlib.Path,
    rarity_delimiter: str,
) -> List[LayerCategory]:
    """Load every configured layer and resolve ``use`` aliases."""
    layers = []
    for index, entry in enumerate(layers_order):
        variants = load_category(
            pathlib.Path(layers_dir) / entry.name, rarity_delimiter
        )
        if not variants:
            raise ConfigurationError(
                f"Layer {entry.name!r} has no assets in {layers_dir}"
            )
        layers.append(
            LayerCategory(
                id=index,
                name=(
                    entry.display_name
                    if entry.display_name is not None
                    else entry.name
                ),
                folder=entry.name,
                variants=tuple(variants),
                blend=entry.blend,
                opacity=entry.opacity,
                use_index=_find_use_index(entry, layers_order),
            )
        )

    for layer in layers:
        if (
            layer.is_alias
            and layer.use_index != layer.id
            and layers[layer.use_index].is_alias
        ):
            raise ConfigurationError(
                f"Layer {layer.folder!r} uses {layers[layer.use_index].folder!r}, "
                "which itself uses another layer"
            )

    # Substitution only reads unaliased lists, so alias order does not matter
    return [
        _shadow(layer, layers[layer.use_index]) if layer.is_alias else layer
        for layer in layers
    ]
