"""Shared fixtures: tiny layer folders and settings pointing at them."""

import pytest
from PIL import Image

from config import load_settings

RED = (255, 0, 0, 255)
GREEN = (0, 255, 0, 255)
BLUE = (0, 0, 255, 255)
WHITE = (255, 255, 255, 255)
CLEAR = (0, 0, 0, 0)


@pytest.fixture
def layers_dir(tmp_path):
    return tmp_path / "layers"


@pytest.fixture
def build_dir(tmp_path):
    path = tmp_path / "build"
    (path / "json").mkdir(parents=True)
    (path / "images").mkdir()
    (path / "gifs").mkdir()
    return path


@pytest.fixture
def make_layer(layers_dir):
    """Write ``{filename: rgba or raw bytes}`` into ``layers/<name>/``."""

    def _make(name, files):
        folder = layers_dir / name
        folder.mkdir(parents=True, exist_ok=True)
        for filename, content in files.items():
            if isinstance(content, bytes):
                (folder / filename).write_bytes(content)
            else:
                Image.new("RGBA", (4, 4), content).save(folder / filename)
        return folder

    return _make


@pytest.fixture
def make_settings():
    def _make(layers_order, grow=4, **overrides):
        raw = {
            "layer_configurations": [
                {"grow_edition_size_to": grow, "layers_order": layers_order}
            ],
            "format": {"width": 8, "height": 8, "smoothing": False},
            "background": {"generate": False},
            "base_uri": "ipfs://CID",
        }
        raw.update(overrides)
        return load_settings(raw)

    return _make


@pytest.fixture
def basic_layers(make_layer):
    make_layer("Background", {"Blue.png": BLUE, "Red.png": RED})
    make_layer("Body", {"Round.png": GREEN, "Square.png": WHITE, "Tall.png": BLUE})
    return [{"name": "Background"}, {"name": "Body"}]


@pytest.fixture
def clothing_layers(make_layer):
    """Hands shadows Clothing but only has art for the shirt."""
    make_layer("Background", {"Red.png": RED})
    make_layer("Clothing", {"Jacket.png": BLUE, "Shirt.png": GREEN})
    make_layer("Hands", {"Shirt.png": WHITE})
    return [
        {"name": "Background"},
        {"name": "Clothing"},
        {"name": "Hands", "use": "Clothing"},
    ]
