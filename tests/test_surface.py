import numpy as np
import pytest
from PIL import Image, ImageFont

from surface import COMPOSITE_OPERATIONS, GifRecorder, Surface, text_anchor


def pixel(surface, x=0, y=0):
    return np.asarray(surface.to_image())[y, x].astype(int)


def solid(color, size=(2, 2)):
    return Image.new("RGBA", size, color)


def test_clear_resets_pixels_and_state():
    surface = Surface(2, 2)
    surface.fill("#ff0000")
    surface.global_alpha = 0.3
    surface.composite_operation = "multiply"

    surface.clear()

    assert surface.pixels.sum() == 0
    assert surface.global_alpha == 1.0
    assert surface.composite_operation == "source-over"


def test_source_over_applies_global_alpha():
    surface = Surface(2, 2)
    surface.fill("#ff0000")
    surface.global_alpha = 0.5

    surface.draw_image(solid((0, 0, 255, 255)))

    np.testing.assert_allclose(pixel(surface), [128, 0, 128, 255], atol=1)


def test_source_over_on_empty_surface_keeps_partial_alpha():
    surface = Surface(2, 2)
    surface.global_alpha = 0.5

    surface.draw_image(solid((0, 255, 0, 255)))

    np.testing.assert_allclose(pixel(surface), [0, 255, 0, 128], atol=1)


def test_multiply():
    surface = Surface(2, 2)
    surface.fill("#808080")
    surface.composite_operation = "multiply"

    surface.draw_image(solid((128, 128, 128, 255)))

    np.testing.assert_allclose(pixel(surface), [64, 64, 64, 255], atol=1)


def test_difference_of_equal_colours_is_black():
    surface = Surface(2, 2)
    surface.fill("#ff0000")
    surface.composite_operation = "difference"

    surface.draw_image(solid((255, 0, 0, 255)))

    np.testing.assert_allclose(pixel(surface), [0, 0, 0, 255], atol=1)


def test_screen_with_white_is_white():
    surface = Surface(2, 2)
    surface.fill("#336699")
    surface.composite_operation = "screen"

    surface.draw_image(solid((255, 255, 255, 255)))

    np.testing.assert_allclose(pixel(surface), [255, 255, 255, 255], atol=1)


def test_destination_over_keeps_opaque_backdrop():
    surface = Surface(2, 2)
    surface.fill("#ff0000")
    surface.composite_operation = "destination-over"

    surface.draw_image(solid((0, 0, 255, 255)))

    np.testing.assert_allclose(pixel(surface), [255, 0, 0, 255], atol=1)


def test_color_mode_keeps_backdrop_luminosity():
    surface = Surface(2, 2)
    surface.fill("#808080")
    surface.composite_operation = "color"

    surface.draw_image(solid((255, 0, 0, 255)))

    red, green, blue, alpha = pixel(surface)
    assert red > green == blue
    assert alpha == 255


@pytest.mark.parametrize("operation", COMPOSITE_OPERATIONS)
def test_every_operation_stays_in_range(operation):
    surface = Surface(3, 3)
    surface.fill("hsl(200, 100%, 40%)")
    surface.composite_operation = operation
    surface.global_alpha = 0.7

    surface.draw_image(solid((250, 120, 10, 200), (3, 3)))

    assert np.isfinite(surface.pixels).all()
    assert surface.pixels.min() >= 0.0
    assert surface.pixels.max() <= 1.0


def test_draw_image_scales_to_surface_without_smoothing():
    image = Image.new("RGBA", (2, 1))
    image.putpixel((0, 0), (255, 0, 0, 255))
    image.putpixel((1, 0), (0, 0, 255, 255))
    surface = Surface(4, 4, smoothing=False)

    surface.draw_image(image)

    assert tuple(pixel(surface, 0, 3)) == (255, 0, 0, 255)
    assert tuple(pixel(surface, 3, 0)) == (0, 0, 255, 255)


def test_draw_image_interpolates_with_smoothing():
    image = Image.new("RGBA", (2, 1))
    image.putpixel((0, 0), (255, 0, 0, 255))
    image.putpixel((1, 0), (0, 0, 255, 255))
    surface = Surface(4, 4, smoothing=True)

    surface.draw_image(image)

    red, green, blue, alpha = pixel(surface, 1, 2)
    assert 0 < blue < red < 255
    assert green == 0
    assert alpha == 255
    assert tuple(pixel(surface, 0, 2)) == (255, 0, 0, 255)


def test_fill_accepts_hsl():
    surface = Surface(1, 1)

    surface.fill("hsl(0, 100%, 50%)")

    assert tuple(pixel(surface)) == (255, 0, 0, 255)


def test_fill_text_draws_pixels():
    surface = Surface(64, 32)

    surface.fill_text(
        "Hi", (2, 2), ImageFont.load_default(), "#ffffff", text_anchor("left", "top")
    )

    assert surface.pixels[..., 3].max() > 0


def test_text_anchor():
    assert text_anchor("left", "top") == "lt"
    assert text_anchor("center", "alphabetic") == "ms"


def test_to_png_round_trip(tmp_path):
    surface = Surface(5, 3)
    surface.fill("#00ff00")
    path = tmp_path / "out.png"

    path.write_bytes(surface.to_png())

    with Image.open(path) as image:
        assert image.format == "PNG"
        assert image.size == (5, 3)


def test_gif_recorder_writes_animation(tmp_path):
    surface = Surface(4, 4)
    recorder = GifRecorder(surface, tmp_path / "anim.gif", repeat=0, delay=100)
    recorder.start()
    surface.fill("#ff0000")
    recorder.add()
    surface.fill("#0000ff")
    recorder.add()

    path = recorder.stop()

    with Image.open(path) as image:
        assert image.format == "GIF"
        assert image.n_frames == 2


def test_gif_recorder_without_frames_writes_nothing(tmp_path):
    recorder = GifRecorder(Surface(2, 2), tmp_path / "anim.gif")
    recorder.start()

    assert recorder.stop() is None
    assert not (tmp_path / "anim.gif").exists()
