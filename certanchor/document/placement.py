"""
QR placement on raster images.

Scores the four corners for how much light, low-detail area they offer and
returns the best one. Sampling is sparse (every `stride` pixels) so a
large scan costs a few hundred pixel reads per corner.
"""
import logging
from dataclasses import dataclass
from typing import List, Tuple

from PIL import Image

logger = logging.getLogger(__name__)

LIGHT_THRESHOLD = 200
EDGE_THRESHOLD = 50
WHITE_WEIGHT = 0.7
EDGE_WEIGHT = 0.3

DEFAULT_STRIDE = 5
DEFAULT_PADDING = 10


@dataclass(frozen=True)
class PlacementResult:
    """Top-left corner of the QR box in image pixels."""
    x: int
    y: int
    score: float
    region: str


def _corner_regions(width: int, height: int, qr_size: int) -> List[Tuple[str, int, int]]:
    # Order matters: ties keep the earlier corner
    return [
        ("top-left", 0, 0),
        ("top-right", width - qr_size, 0),
        ("bottom-left", 0, height - qr_size),
        ("bottom-right", width - qr_size, height - qr_size),
    ]


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def find_optimal_position(
    image: Image.Image,
    qr_size: int,
    stride: int = DEFAULT_STRIDE,
    padding: int = DEFAULT_PADDING,
) -> PlacementResult:
    """
    Choose the corner of `image` where a qr_size x qr_size code hides the least.

    score = 0.7 * white_ratio - 0.3 * edge_ratio, where a sample is white
    if its mean RGB exceeds 200 and an edge if it differs from its upper-left
    neighbour by more than 50. Corners with no samples are skipped; if none
    can be sampled the result falls back to top-right with score -1.

    The returned coordinates are clamped to [padding, dim - qr_size - padding].
    """
    width, height = image.size
    pixels = image.convert("RGB").load()

    def brightness(px: int, py: int) -> float:
        r, g, b = pixels[px, py]
        return (r + g + b) / 3

    regions = _corner_regions(width, height, qr_size)
    best_region, best_x, best_y = regions[1]
    best_score = -1.0

    for name, rx, ry in regions:
        white = edges = total = 0
        for y in range(max(0, ry), min(height, ry + qr_size), stride):
            for x in range(max(0, rx), min(width, rx + qr_size), stride):
                value = brightness(x, y)
                if value > LIGHT_THRESHOLD:
                    white += 1
                if x > 0 and y > 0 and abs(value - brightness(x - 1, y - 1)) > EDGE_THRESHOLD:
                    edges += 1
                total += 1

        if not total:
            continue

        score = (white / total) * WHITE_WEIGHT - (edges / total) * EDGE_WEIGHT
        logger.debug(f"Placement {name}: score={score:.3f} ({white} light, {edges} edges of {total})")
        if score > best_score:
            best_score = score
            best_region, best_x, best_y = name, rx, ry

    return PlacementResult(
        x=_clamp(best_x, padding, width - qr_size - padding),
        y=_clamp(best_y, padding, height - qr_size - padding),
        score=best_score,
        region=best_region,
    )
