import math

import numpy as np
import pytest

from colorkey_service.errors import InvalidDimensionsError, InvalidParameterError
from colorkey_service.segmentation import (
    Color,
    adaptive_tolerance,
    detect_structure_edges,
    estimate_background,
    grow_background_region,
    sample_edge_colors,
    segment_background,
)


def _solid(width, height, color=(255, 255, 255), channels=4):
    img = np.zeros((height, width, channels), dtype=np.uint8)
    img[..., :3] = color
    if channels == 4:
        img[..., 3] = 255
    return img


def test_sample_edge_colors_walks_all_four_edges_at_stride():
    img = _solid(40, 31)
    samples = sample_edge_colors(img, 40, 31, 4, interval=15)
    # 3 positions per horizontal edge (0, 15, 30), 3 per vertical edge (0, 15, 30)
    assert samples.shape == (12, 3)


def test_sample_edge_colors_reads_rgb_in_edge_order():
    img = _solid(4, 4, color=(0, 0, 0))
    img[0, :, :3] = (10, 10, 10)  # top
    img[3, :, :3] = (20, 20, 20)  # bottom
    img[1:3, 0, :3] = (30, 30, 30)  # left
    img[1:3, 3, :3] = (40, 40, 40)  # right
    img[..., 3] = 7
    samples = sample_edge_colors(img, 4, 4, 4, interval=2)
    assert samples[:2].tolist() == [[10, 10, 10], [10, 10, 10]]
    assert samples[2:4].tolist() == [[20, 20, 20], [20, 20, 20]]
    assert samples[4].tolist() == [10, 10, 10]  # left column starts at the top row
    assert samples[5].tolist() == [30, 30, 30]
    assert samples[7].tolist() == [40, 40, 40]


def test_sample_edge_colors_large_interval_still_covers_corners():
    img = _solid(5, 5, color=(0, 0, 0))
    img[4, 4, :3] = (200, 100, 50)
    samples = sample_edge_colors(img, 5, 5, 4, interval=50)
    assert [200, 100, 50] in samples.tolist()
    assert len(samples) == 8


def test_sample_edge_colors_accepts_rgb_bytes():
    img = _solid(6, 6, color=(1, 2, 3), channels=3)
    samples = sample_edge_colors(img.tobytes(), 6, 6, 3, interval=2)
    assert (samples == [1, 2, 3]).all()


def test_sample_edge_colors_rejects_non_positive_interval():
    with pytest.raises(InvalidParameterError):
        sample_edge_colors(_solid(4, 4), 4, 4, 4, interval=0)


def test_estimate_background_empty_defaults_to_white():
    color, variance = estimate_background([])
    assert color == Color(255, 255, 255)
    assert variance == 0.0


def test_estimate_background_mean_and_radial_deviation():
    color, variance = estimate_background([Color(0, 0, 0), Color(10, 10, 10)])
    assert color == Color(5, 5, 5)
    assert variance == pytest.approx(math.sqrt(75))


def test_estimate_background_rounds_half_up():
    color, _ = estimate_background(np.array([[0, 0, 0], [1, 1, 1]], dtype=np.uint8))
    assert color == Color(1, 1, 1)


def test_adaptive_tolerance():
    assert adaptive_tolerance(10, 0) == 10
    assert adaptive_tolerance(50, 100) == 100
    assert adaptive_tolerance(20, 25) == pytest.approx(30)


def test_color_hex():
    assert Color(255, 10, 0).hex == "#FF0A00"


def test_detect_structure_edges_uniform_image_has_no_edges():
    img = _solid(12, 9, color=(90, 120, 30))
    edges = detect_structure_edges(img, 12, 9, 4)
    assert edges.shape == (9, 12)
    assert not edges.any()


def test_detect_structure_edges_marks_square_outline(square_image):
    img = square_image()
    edges = detect_structure_edges(img, 20, 20, 4)
    assert set(np.unique(edges).tolist()) <= {0, 255}
    assert edges[7, 7] == 255
    assert edges[10, 6] == 255
    assert edges[10, 10] == 0  # square interior is flat
    assert edges[2, 2] == 0
    # border ring is never marked
    assert not edges[0, :].any() and not edges[-1, :].any()
    assert not edges[:, 0].any() and not edges[:, -1].any()


def test_detect_structure_edges_ignores_alpha():
    img = _solid(8, 8)
    img[2:6, 2:6, 3] = 0
    assert not detect_structure_edges(img, 8, 8, 4).any()


def test_detect_structure_edges_tiny_image():
    assert not detect_structure_edges(_solid(2, 2), 2, 2, 4).any()


def test_grow_uniform_image_removes_everything():
    img = _solid(10, 10)
    edges = np.zeros((10, 10), dtype=np.uint8)
    mask, count = grow_background_region(img, 10, 10, 4, Color(255, 255, 255), 5, edges)
    assert count == 100
    assert (mask == 255).all()


def test_grow_stops_at_protected_edges():
    img = _solid(9, 9)
    edges = np.zeros((9, 9), dtype=np.uint8)
    # closed ring of protected pixels around the center
    edges[2:7, 2] = edges[2:7, 6] = 255
    edges[2, 2:7] = edges[6, 2:7] = 255
    mask, count = grow_background_region(img, 9, 9, 4, Color(255, 255, 255), 5, edges)
    assert not mask[edges == 255].any()
    assert not mask[3:6, 3:6].any()  # sealed off by the ring
    assert count == 81 - 25


def test_grow_does_not_cross_off_color_pixels():
    img = _solid(7, 7)
    img[3, :, :3] = (0, 0, 255)  # stripe splits the image
    img[3, 3, :3] = (255, 255, 255)
    edges = np.zeros((7, 7), dtype=np.uint8)
    mask, count = grow_background_region(img, 7, 7, 4, Color(255, 255, 255), 10, edges)
    assert count == 49 - 6
    assert mask[3, 0] == 0
    assert mask[3, 3] == 255


def test_grow_interior_pocket_not_reachable_from_border():
    img = _solid(9, 9, color=(0, 0, 0))
    img[0, :, :3] = img[-1, :, :3] = img[:, 0, :3] = img[:, -1, :3] = (255, 255, 255)
    img[4, 4, :3] = (255, 255, 255)
    edges = np.zeros((9, 9), dtype=np.uint8)
    mask, count = grow_background_region(img, 9, 9, 4, Color(255, 255, 255), 0, edges)
    assert count == 32
    assert mask[4, 4] == 0


def test_grow_rejects_mismatched_edge_mask():
    with pytest.raises(InvalidDimensionsError):
        grow_background_region(_solid(4, 4), 4, 4, 4, Color(0, 0, 0), 1, np.zeros((3, 4), np.uint8))


def test_segment_solid_white_removes_all_pixels():
    img = _solid(10, 10)
    result = segment_background(img, 10, 10, 4, tolerance=5, edge_feathering=0)
    assert result.removed_pixel_count == 100
    assert (result.pixels[..., 3] == 0).all()
    assert (result.pixels[..., :3] == 255).all()
    assert result.background == Color(255, 255, 255)


def test_segment_uniform_image_zero_tolerance():
    img = _solid(13, 8, color=(12, 200, 99))
    result = segment_background(img, 13, 8, 4, tolerance=0, edge_feathering=0)
    assert result.removed_pixel_count >= (13 - 2) * (8 - 2)
    assert result.removed_pixel_count == 13 * 8


def test_segment_zero_tolerance_without_exact_match_removes_nothing():
    # checkerboard of two grays: the mean (5, 5, 5) matches no pixel exactly
    img = _solid(10, 10, color=(0, 0, 0))
    yy, xx = np.indices((10, 10))
    img[(yy + xx) % 2 == 1, :3] = 10
    result = segment_background(img, 10, 10, 4, tolerance=0, edge_feathering=0)
    assert result.background == Color(5, 5, 5)
    assert result.removed_pixel_count == 0
    assert (result.pixels[..., 3] == 255).all()


def test_segment_keeps_square_and_removes_background(square_image):
    img = square_image()
    result = segment_background(img, 20, 20, 4, tolerance=10, edge_feathering=0)
    square = np.zeros((20, 20), dtype=bool)
    square[7:13, 7:13] = True

    background_unprotected = ~square & (result.edge_mask == 0)
    assert result.removed_pixel_count == int(np.count_nonzero(background_unprotected))
    # the one-pixel ring hugging the square is protected by the edge map
    assert result.removed_pixel_count == 400 - 64
    assert not result.mask[square].any()
    assert result.edge_mask[7, 7] == 255
    assert not ((result.edge_mask == 255) & (result.mask == 255)).any()
    assert (result.pixels[square, 3] == 255).all()
    assert (result.pixels[background_unprotected, 3] == 0).all()


def test_segment_feathering_softens_only_the_boundary(square_image):
    img = square_image(size=30, inset=10, side=10)
    result = segment_background(img, 30, 30, 4, tolerance=10, edge_feathering=2)
    alpha = result.pixels[..., 3]
    assert alpha.min() >= 0 and alpha.max() <= 255
    assert alpha[0, 0] == 0
    assert alpha[15, 15] == 255
    soft = (alpha > 0) & (alpha < 255)
    assert soft.any()
    # count is taken before feathering
    assert result.removed_pixel_count == 900 - 12 * 12


def test_segment_mutates_writable_buffer_in_place():
    buf = bytearray(_solid(6, 6).tobytes())
    result = segment_background(buf, 6, 6, 4, tolerance=5, edge_feathering=0)
    assert result.removed_pixel_count == 36
    assert buf[3] == 0
    assert buf[0] == 255


def test_segment_copies_read_only_buffer():
    data = _solid(6, 6).tobytes()
    result = segment_background(data, 6, 6, 4, tolerance=5, edge_feathering=0)
    assert data[3] == 255
    assert result.pixels[0, 0, 3] == 0


def test_segment_single_pixel_with_feathering():
    result = segment_background(_solid(1, 1), 1, 1, 4, tolerance=0, edge_feathering=3)
    assert result.removed_pixel_count == 1
    assert result.pixels[0, 0, 3] == 0


@pytest.mark.parametrize(
    "width,height,length",
    [(0, 5, 0), (5, 0, 0), (4, 4, 4 * 4 * 4 - 1)],
)
def test_segment_rejects_bad_dimensions(width, height, length):
    with pytest.raises(InvalidDimensionsError):
        segment_background(bytes(length), width, height, 4, tolerance=10, edge_feathering=0)


def test_segment_rejects_bad_parameters():
    img = _solid(4, 4)
    with pytest.raises(InvalidParameterError):
        segment_background(img, 4, 4, 4, tolerance=10, edge_feathering=-1)
    with pytest.raises(InvalidParameterError):
        segment_background(img, 4, 4, 4, tolerance=float("nan"), edge_feathering=0)
    with pytest.raises(InvalidParameterError):
        segment_background(img, 4, 4, 4, tolerance=float("inf"), edge_feathering=0)


def test_segment_requires_alpha_channel():
    img = _solid(4, 4, channels=3)
    with pytest.raises(InvalidParameterError):
        segment_background(img, 4, 4, 3, tolerance=10, edge_feathering=0)


def test_segmentation_errors_are_value_errors():
    with pytest.raises(ValueError):
        segment_background(b"", 0, 0, 4, tolerance=10, edge_feathering=0)
