import hashlib
import json
import logging
import pathlib
from typing import Any, Dict, List, Sequence

import pandas as pd

from config import Settings, load_settings
from layers import LayerCategory

logger = logging.getLogger(__name__)

# Constants
NONE_VALUE = "none"
OUTPUT_DIR = pathlib.Path("build")
METADATA_FILE = "_metadata.json"
FAILURES_FILE = "_failures.json"


def _dump(data: Any, path: pathlib.Path) -> pathlib.Path:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
        f.write("\n")
    return path


def _without_edition(record: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in record.items() if key != "edition"}


def assemble(
    edition_id: int, dna: str, attributes: List[Dict[str, str]], settings: Settings
) -> Dict[str, Any]:
    """Create the metadata record of one edition."""
    record: Dict[str, Any] = {
        "edition": edition_id,
        "image": f"{settings.base_uri}/{edition_id}.png",
    }
    if settings.include_dna:
        record["dna"] = hashlib.sha1(dna.encode("utf-8")).hexdigest()
    record.update(settings.extra_metadata)
    record["attributes"] = list(attributes)
    return record


def save_metadata_single_file(
    record: Dict[str, Any], json_dir: pathlib.Path, debug: bool = False
) -> pathlib.Path:
    """Write ``<edition>.json``; the edition field itself is not persisted."""
    edition = record["edition"]
    data = _without_edition(record)
    if debug:
        logger.debug("Writing metadata for %s: %s", edition, json.dumps(data))
    return _dump(data, pathlib.Path(json_dir) / f"{edition}.json")


def write_metadata(
    records: Sequence[Dict[str, Any]], json_dir: pathlib.Path
) -> pathlib.Path:
    """Write the aggregate metadata file in ascending edition order."""
    ordered = sorted(records, key=lambda record: record["edition"])
    return _dump(
        [_without_edition(record) for record in ordered],
        pathlib.Path(json_dir) / METADATA_FILE,
    )


def write_failures(
    failures: Sequence[Dict[str, Any]], json_dir: pathlib.Path
) -> pathlib.Path:
    return _dump(list(failures), pathlib.Path(json_dir) / FAILURES_FILE)


def update_info(build_dir: pathlib.Path, settings: Settings) -> List[Dict[str, Any]]:
    """Rewrite names, descriptions and URIs of an existing build.

    Editions are numbered by their position in ``_metadata.json``.
    """
    json_dir = pathlib.Path(build_dir) / "json"
    with open(json_dir / METADATA_FILE, encoding="utf-8") as f:
        data = json.load(f)

    for index, item in enumerate(data):
        edition = index + 1
        item["name"] = f"{settings.name_prefix} #{edition}"
        item["description"] = settings.description
        item["image"] = f"{settings.base_uri}/{edition}.png"
        item["external_url"] = f"{settings.base_external_url}/{edition}.png"
        _dump(item, json_dir / f"{edition}.json")

    _dump(data, json_dir / METADATA_FILE)
    return data


def load_metadata(build_dir: pathlib.Path) -> pd.DataFrame:
    """Trait table with one row per edition and one column per trait type."""
    with open(pathlib.Path(build_dir) / "json" / METADATA_FILE, encoding="utf-8") as f:
        data = json.load(f)
    rows = [
        {
            attribute["trait_type"]: attribute["value"]
            for attribute in item["attributes"]
        }
        for item in data
    ]
    df = pd.DataFrame(rows, index=pd.RangeIndex(1, len(rows) + 1, name="edition"))
    return df.fillna(NONE_VALUE)


def target_distribution(layer: LayerCategory) -> Dict[str, float]:
    """Expected share of each trait value from the rarity weights."""
    total = sum(variant.weight for variant in layer.variants)
    target: Dict[str, float] = {}
    for variant in layer.variants:
        target[variant.name] = target.get(variant.name, 0.0) + variant.weight / total
    return target


def _get_actual_distribution(series: pd.Series, expected_traits) -> Dict[str, float]:
    """Calculate actual trait distribution from metadata."""
    frequencies = series.value_counts(normalize=True)
    return {trait: float(frequencies.get(trait, 0.0)) for trait in expected_traits}


def _print_trait_differences(
    target_dist: Dict[str, float], actual_dist: Dict[str, float]
) -> float:
    """Print per-trait differences and return maximum difference."""
    max_diff = 0.0
    for trait, target_prob in target_dist.items():
        actual_prob = actual_dist[trait]
        diff = abs(actual_prob - target_prob)
        max_diff = max(max_diff, diff)
        print(
            f"    {trait}: {actual_prob:.4f} "
            f"(target: {target_prob:.4f}, diff: {diff:.4f})"
        )
    return max_diff


def generate_rarity_stats(
    metadata_df: pd.DataFrame, layers: Sequence[LayerCategory]
) -> Dict[str, float]:
    """Compare actual against target trait distributions.

    Returns:
        Maximum absolute difference per layer display name
    """
    differences = {}
    for layer in layers:
        if layer.is_alias or layer.name not in metadata_df.columns:
            continue

        print(f"\n{layer.name.upper()}:")
        target_dist = target_distribution(layer)
        actual_dist = _get_actual_distribution(
            metadata_df[layer.name], target_dist.keys()
        )
        differences[layer.name] = _print_trait_differences(target_dist, actual_dist)
        print(f"  Max difference: {differences[layer.name]:.4f}")
    return differences


def main() -> None:
    """Update names, descriptions and URIs of the generated metadata."""
    settings = load_settings()
    update_info(OUTPUT_DIR, settings)

    print(f"Updated baseUri for images to ===> {settings.base_uri}")
    print(f"Updated description for images to ===> {settings.description}")
    print(f"Updated name prefix for images to ===> {settings.name_prefix}")


if __name__ == "__main__":
    main()
