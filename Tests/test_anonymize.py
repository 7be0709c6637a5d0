import numpy as np
import pytest

from face_redactor.anonymize import anonymize, anonymize_regions
from face_redactor.errors import RedactionError
from face_redactor.redaction_types import AnonymizeMode, FaceRegion, PixelBuffer

from Tests.helpers import gradient_buffer


def _outside_mask(shape, region: FaceRegion) -> np.ndarray:
    mask = np.ones(shape[:2], dtype=bool)
    mask[region.y : region.y + region.height, region.x : region.x + region.width] = False
    return mask


def test_pixelate_paints_blocks_with_top_left_colour():
    buffer = gradient_buffer(100, 100)
    original = buffer.pixels.copy()
    region = FaceRegion(x=10, y=20, width=40, height=31)

    assert anonymize(buffer, region, AnonymizeMode.PIXELATE, block_size=15)

    px = buffer.pixels
    # Block anchored at (10, 20) covers x 10..24 and y 20..34.
    assert (px[20:35, 10:25, :3] == original[20, 10, :3]).all()
    # Second block in the first row starts at x=25.
    assert (px[20:35, 25:40, :3] == original[20, 25, :3]).all()
    # Partial blocks at the right and bottom edges use their own top-left pixel.
    assert (px[50:51, 40:50, :3] == original[50, 40, :3]).all()


def test_pixelate_leaves_outside_and_alpha_untouched():
    pixels = gradient_buffer(60, 40).pixels
    pixels[:, :, 3] = np.arange(60, dtype=np.uint8)[np.newaxis, :]
    buffer = PixelBuffer(pixels)
    original = pixels.copy()
    region = FaceRegion(x=5, y=5, width=30, height=20)

    anonymize(buffer, region)

    outside = _outside_mask(original.shape, region)
    assert np.array_equal(buffer.pixels[outside], original[outside])
    assert np.array_equal(buffer.pixels[:, :, 3], original[:, :, 3])


def test_pixelate_is_idempotent():
    buffer = gradient_buffer(50, 50)
    region = FaceRegion(x=3, y=4, width=33, height=29)
    anonymize(buffer, region, block_size=7)
    once = buffer.pixels.copy()
    anonymize(buffer, region, block_size=7)
    assert np.array_equal(buffer.pixels, once)


def test_pixelate_block_size_one_is_noop():
    buffer = gradient_buffer(20, 20)
    original = buffer.pixels.copy()
    anonymize(buffer, FaceRegion(x=0, y=0, width=20, height=20), block_size=1)
    assert np.array_equal(buffer.pixels, original)


def test_blur_changes_region_only():
    buffer = gradient_buffer(80, 80, channels=3)
    original = buffer.pixels.copy()
    region = FaceRegion(x=20, y=20, width=30, height=30)

    assert anonymize(buffer, region, AnonymizeMode.BLUR, blur_radius=5.0)

    inside = buffer.pixels[20:50, 20:50]
    assert not np.array_equal(inside, original[20:50, 20:50])
    # A low-pass filter narrows the spread of values.
    assert inside.astype(float).std() < original[20:50, 20:50].astype(float).std()
    outside = _outside_mask(original.shape, region)
    assert np.array_equal(buffer.pixels[outside], original[outside])


def test_blur_uniform_region_stays_uniform():
    buffer = PixelBuffer(np.full((30, 30, 4), 77, dtype=np.uint8))
    anonymize(buffer, FaceRegion(x=0, y=0, width=30, height=30), AnonymizeMode.BLUR)
    assert (buffer.pixels == 77).all()


def test_blur_grayscale_buffer():
    buffer = gradient_buffer(40, 40, channels=1)
    original = buffer.pixels.copy()
    anonymize(buffer, FaceRegion(x=0, y=0, width=20, height=20), AnonymizeMode.BLUR)
    assert buffer.channels == 1
    assert not np.array_equal(buffer.pixels[:20, :20], original[:20, :20])


def test_region_is_clipped_to_image():
    buffer = gradient_buffer(30, 30)
    original = buffer.pixels.copy()
    region = FaceRegion(x=20, y=-10, width=50, height=25)

    assert anonymize(buffer, region, block_size=4)

    assert (buffer.pixels[0:4, 20:24, :3] == original[0, 20, :3]).all()
    assert np.array_equal(buffer.pixels[15:, :], original[15:, :])


def test_empty_region_returns_false():
    buffer = gradient_buffer(10, 10)
    original = buffer.pixels.copy()
    assert not anonymize(buffer, FaceRegion(x=50, y=50, width=5, height=5))
    assert not anonymize(buffer, FaceRegion(x=2, y=2, width=0, height=5))
    assert np.array_equal(buffer.pixels, original)


def test_anonymize_rejects_bad_arguments():
    buffer = gradient_buffer(10, 10)
    region = FaceRegion(x=0, y=0, width=5, height=5)
    with pytest.raises(ValueError):
        anonymize(buffer, region, block_size=0)
    with pytest.raises(ValueError):
        anonymize(buffer, region, AnonymizeMode.BLUR, blur_radius=0)


def test_anonymize_rejects_unsupported_pixels():
    region = FaceRegion(x=0, y=0, width=2, height=2)
    with pytest.raises(RedactionError):
        anonymize(PixelBuffer(np.zeros((4, 4, 3), dtype=np.float32)), region)
    with pytest.raises(RedactionError):
        anonymize(PixelBuffer(np.zeros((4, 4, 2), dtype=np.uint8)), region)


def test_anonymize_regions_counts_non_empty():
    buffer = gradient_buffer(40, 40)
    regions = [
        FaceRegion(x=0, y=0, width=10, height=10),
        FaceRegion(x=100, y=100, width=10, height=10),
        FaceRegion(x=5, y=5, width=10, height=10),
    ]
    assert anonymize_regions(buffer, regions, block_size=5) == 2
