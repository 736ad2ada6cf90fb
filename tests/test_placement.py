"""
Tests for QR corner placement on images.
"""
from PIL import Image, ImageDraw

from certanchor.document.placement import find_optimal_position


def _blank(width=800, height=600, colour="white"):
    return Image.new("RGB", (width, height), colour)


def _striped(img, box):
    """Fill a box with 2px vertical black lines every 6px."""
    draw = ImageDraw.Draw(img)
    x0, y0, x1, y1 = box
    for x in range(x0, x1, 6):
        draw.line([(x, y0), (x, y1)], fill="black", width=2)
    return img


class TestFindOptimalPosition:
    def test_blank_image_ties_keep_top_left(self):
        """All corners score the same; the first one scored wins."""
        result = find_optimal_position(_blank(), 100)
        assert result.region == "top-left"
        assert (result.x, result.y) == (10, 10)
        assert result.score == 0.7

    def test_busy_top_left_moves_to_top_right(self):
        img = _striped(_blank(), (0, 0, 400, 300))
        result = find_optimal_position(img, 100)
        assert result.region == "top-right"
        # 800 - 100 clamped to 800 - 100 - 10
        assert (result.x, result.y) == (690, 10)

    def test_only_bottom_right_is_light(self):
        img = _blank(colour="black")
        ImageDraw.Draw(img).rectangle([400, 300, 800, 600], fill="white")
        result = find_optimal_position(img, 100)
        assert result.region == "bottom-right"
        assert (result.x, result.y) == (690, 490)

    def test_dark_image_still_places(self):
        """No light pixels anywhere: every corner scores 0, beating the -1 default."""
        result = find_optimal_position(_blank(colour="black"), 100)
        assert result.region == "top-left"
        assert result.score == 0

    def test_edges_lower_the_score(self):
        plain = find_optimal_position(_blank(), 100)
        busy = find_optimal_position(_striped(_blank(), (0, 0, 800, 600)), 100)
        assert busy.score < plain.score

    def test_result_clamped_to_padding(self):
        result = find_optimal_position(_blank(800, 600), 100, padding=25)
        assert result.x >= 25 and result.y >= 25
        assert result.x + 100 <= 800 - 25
        assert result.y + 100 <= 600 - 25

    def test_image_smaller_than_code(self):
        """Upper clamp goes negative; the lower bound (padding) wins."""
        result = find_optimal_position(_blank(50, 50), 100)
        assert (result.x, result.y) == (10, 10)

    def test_accepts_rgba(self):
        img = Image.new("RGBA", (400, 400), (255, 255, 255, 0))
        result = find_optimal_position(img, 60)
        assert result.region in {"top-left", "top-right", "bottom-left", "bottom-right"}
