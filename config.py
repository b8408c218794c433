"""Collection configuration.

Edit the constants below before running ``python nft.py``. They are read
once by :func:`load_settings`, which fills in defaults and rejects
malformed values before any file is touched.
"""
import dataclasses
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from PIL import ImageColor

from surface import COMPOSITE_OPERATIONS, TEXT_ALIGN, TEXT_BASELINE

# General metadata
NAME_PREFIX = "Somewhere Nowhere"
DESCRIPTION = "This is a project"
BASE_URI = "ipfs://IPFS_HASH"
BASE_EXTERNAL_URL = "https://BASE_EXTERNAL_URL"

# Layer configuration: each block grows the collection up to its edition count.
# Entries: {"name": folder, "use": other layer name, "options": {...}}
# with options "display_name", "blend" and "opacity".
LAYER_CONFIGURATIONS = [
    {
        "grow_edition_size_to": 4,
        "layers_order": [
            {"name": "Background"},
            {"name": "Body"},
            {"name": "Clothing"},
            {"name": "Head"},
            {"name": "Hands", "use": "Clothing"},
        ],
    },
]

SHUFFLE_LAYER_CONFIGURATIONS = False

DEBUG_LOGS = False

FORMAT = {"width": 80, "height": 80, "smoothing": False}

# repeat: 0 loops forever, -1 plays once; delay in milliseconds
GIF = {"export": False, "repeat": 0, "delay": 500}

TEXT = {
    "only": False,
    "color": "#ffffff",
    "size": 20,
    "x_gap": 40,
    "y_gap": 40,
    "align": "left",
    "baseline": "top",
    "weight": "regular",
    "family": "Courier",
    "spacer": " => ",
}

BACKGROUND = {
    "generate": True,
    "brightness": "80%",
    "static": False,
    "default": "#000000",
}

EXTRA_METADATA: Dict[str, Any] = {}

RARITY_DELIMITER = "#"

# "ignore", "fail" or "retry" (re-seed up to UNIQUE_DNA_TOLERANCE times)
DNA_COLLISION_POLICY = "ignore"
UNIQUE_DNA_TOLERANCE = 10000

ATTRIBUTE_SALT = "Somewhere Nowhere"

INCLUDE_DNA = False

RENDER_WORKERS = 1

# Separates DNA segments, so it can never appear in an asset filename
DNA_DELIMITER = "-"

COLLISION_POLICIES = ("ignore", "fail", "retry")


class ConfigurationError(ValueError):
    """Raised when the configuration is malformed."""


@dataclass(frozen=True)
class LayerEntry:
    name: str
    use: Optional[str] = None
    display_name: Optional[str] = None
    blend: str = "source-over"
    opacity: float = 1.0


@dataclass(frozen=True)
class LayerConfiguration:
    grow_edition_size_to: int
    layers_order: Tuple[LayerEntry, ...]


@dataclass(frozen=True)
class Format:
    width: int = 80
    height: int = 80
    smoothing: bool = False


@dataclass(frozen=True)
class Gif:
    export: bool = False
    repeat: int = 0
    delay: int = 500


@dataclass(frozen=True)
class Text:
    only: bool = False
    color: str = "#ffffff"
    size: int = 20
    x_gap: int = 40
    y_gap: int = 40
    align: str = "left"
    baseline: str = "top"
    weight: str = "regular"
    family: str = "Courier"
    spacer: str = " => "


@dataclass(frozen=True)
class Background:
    generate: bool = True
    brightness: str = "80%"
    static: bool = False
    default: str = "#000000"


@dataclass(frozen=True)
class Settings:
    layer_configurations: Tuple[LayerConfiguration, ...]
    name_prefix: str = NAME_PREFIX
    description: str = DESCRIPTION
    base_uri: str = BASE_URI
    base_external_url: str = BASE_EXTERNAL_URL
    shuffle_layer_configurations: bool = False
    debug_logs: bool = False
    format: Format = field(default_factory=Format)
    gif: Gif = field(default_factory=Gif)
    text: Text = field(default_factory=Text)
    background: Background = field(default_factory=Background)
    extra_metadata: Dict[str, Any] = field(default_factory=dict)
    rarity_delimiter: str = "#"
    dna_collision_policy: str = "ignore"
    unique_dna_tolerance: int = 10000
    attribute_salt: str = ATTRIBUTE_SALT
    include_dna: bool = False
    render_workers: int = 1

    @property
    def edition_count(self) -> int:
        """Total number of editions across all layer configurations."""
        return self.layer_configurations[-1].grow_edition_size_to


def load_settings(overrides: Optional[Dict[str, Any]] = None) -> Settings:
    """Read the module constants, apply ``overrides`` and validate them."""
    raw = {
        "layer_configurations": LAYER_CONFIGURATIONS,
        "name_prefix": NAME_PREFIX,
        "description": DESCRIPTION,
        "base_uri": BASE_URI,
        "base_external_url": BASE_EXTERNAL_URL,
        "shuffle_layer_configurations": SHUFFLE_LAYER_CONFIGURATIONS,
        "debug_logs": DEBUG_LOGS,
        "format": FORMAT,
        "gif": GIF,
        "text": TEXT,
        "background": BACKGROUND,
        "extra_metadata": EXTRA_METADATA,
        "rarity_delimiter": RARITY_DELIMITER,
        "dna_collision_policy": DNA_COLLISION_POLICY,
        "unique_dna_tolerance": UNIQUE_DNA_TOLERANCE,
        "attribute_salt": ATTRIBUTE_SALT,
        "include_dna": INCLUDE_DNA,
        "render_workers": RENDER_WORKERS,
    }
    raw.update(overrides or {})
    return parse_settings(raw)


def parse_settings(raw: Dict[str, Any]) -> Settings:
    """Build :class:`Settings` from plain dicts and lists."""
    raw = dict(raw)
    for key, cls in (
        ("format", Format),
        ("gif", Gif),
        ("text", Text),
        ("background", Background),
    ):
        raw[key] = _section(cls, raw.get(key) or {}, key)
    raw["layer_configurations"] = tuple(
        _parse_layer_configuration(block)
        for block in raw.get("layer_configurations") or ()
    )
    raw["extra_metadata"] = dict(raw.get("extra_metadata") or {})
    settings = _section(Settings, raw, "settings")
    _validate(settings)
    return settings


def _section(cls, values: Dict[str, Any], section: str):
    names = {f.name for f in dataclasses.fields(cls)}
    unknown = set(values) - names
    if unknown:
        raise ConfigurationError(f"Unknown {section} option(s): {sorted(unknown)}")
    try:
        return cls(**values)
    except TypeError as error:
        raise ConfigurationError(f"Invalid {section}: {error}") from error


def _parse_layer_configuration(block: Dict[str, Any]) -> LayerConfiguration:
    unknown = set(block) - {"grow_edition_size_to", "layers_order"}
    if unknown:
        raise ConfigurationError(
            f"Unknown layer configuration key(s): {sorted(unknown)}"
        )
    entries = tuple(
        _parse_layer_entry(entry) for entry in block.get("layers_order") or ()
    )
    if not entries:
        raise ConfigurationError("A layer configuration needs at least one layer")
    return LayerConfiguration(
        grow_edition_size_to=block.get("grow_edition_size_to", 0),
        layers_order=entries,
    )


def _parse_layer_entry(entry: Dict[str, Any]) -> LayerEntry:
    if "name" not in entry:
        raise ConfigurationError(f"Layer entry without a name: {entry}")
    unknown = set(entry) - {"name", "use", "options"}
    if unknown:
        raise ConfigurationError(
            f"Unknown key(s) for layer {entry['name']!r}: {sorted(unknown)}"
        )
    values = {"name": entry["name"], "use": entry.get("use")}
    values.update(entry.get("options") or {})
    return _section(LayerEntry, values, f"layer {entry['name']!r} options")


def _check_color(value: str, what: str) -> None:
    try:
        ImageColor.getrgb(value)
    except ValueError as error:
        raise ConfigurationError(f"Invalid {what}: {value!r}") from error


def _validate(settings: Settings) -> None:
    if not settings.layer_configurations:
        raise ConfigurationError("At least one layer configuration is required")

    previous = 0
    for block in settings.layer_configurations:
        if block.grow_edition_size_to <= previous:
            raise ConfigurationError(
                "grow_edition_size_to must be positive and increase between "
                "layer configurations, "
                f"got {block.grow_edition_size_to} after {previous}"
            )
        previous = block.grow_edition_size_to
        for entry in block.layers_order:
            if entry.blend not in COMPOSITE_OPERATIONS:
                raise ConfigurationError(
                    f"Unknown blend {entry.blend!r} for layer {entry.name!r}"
                )
            if not 0 <= entry.opacity <= 1:
                raise ConfigurationError(
                    f"Opacity for layer {entry.name!r} must be within [0, 1], "
                    f"got {entry.opacity}"
                )

    if settings.format.width <= 0 or settings.format.height <= 0:
        raise ConfigurationError("Canvas width and height must be positive")

    delimiter = settings.rarity_delimiter
    if len(delimiter) != 1 or delimiter == DNA_DELIMITER:
        raise ConfigurationError(
            f"Rarity delimiter must be a single character other than {DNA_DELIMITER!r}"
        )

    if settings.dna_collision_policy not in COLLISION_POLICIES:
        raise ConfigurationError(
            f"dna_collision_policy must be one of {COLLISION_POLICIES}, "
            f"got {settings.dna_collision_policy!r}"
        )
    if settings.unique_dna_tolerance < 1:
        raise ConfigurationError("unique_dna_tolerance must be at least 1")
    if settings.render_workers < 1:
        raise ConfigurationError("render_workers must be at least 1")

    _check_color(settings.background.default, "background default color")
    _check_color(
        f"hsl(0, 100%, {settings.background.brightness})", "background brightness"
    )
    _check_color(settings.text.color, "text color")
    if settings.text.align not in TEXT_ALIGN:
        raise ConfigurationError(f"Unknown text align {settings.text.align!r}")
    if settings.text.baseline not in TEXT_BASELINE:
        raise ConfigurationError(f"Unknown text baseline {settings.text.baseline!r}")
    if settings.text.size <= 0:
        raise ConfigurationError("Text size must be positive")
