"""
Tests for verification URLs and QR rendering.
"""
import pytest

from certanchor.config import Settings
from certanchor.document.qr import (
    build_verification_url,
    draw_qr,
    parse_verification_url,
    qr_module_count,
    render_qr,
    render_qr_png,
)
from certanchor.exceptions import InputError

from conftest import CONTRACT_ADDRESS

URL = f"https://verify.example.org/verify?chain=amoy&contract={CONTRACT_ADDRESS}&id=CERTIFICATE-1a2b3c4d"


class TestVerificationUrl:
    def test_build(self):
        url = build_verification_url("https://verify.example.org", "amoy", CONTRACT_ADDRESS, "CERTIFICATE-1a2b3c4d")
        assert url == URL

    def test_build_strips_trailing_slash(self):
        url = build_verification_url("https://verify.example.org/", "amoy", CONTRACT_ADDRESS, "CERTIFICATE-1a2b3c4d")
        assert url == URL

    def test_build_encodes_query_values(self):
        url = build_verification_url("https://v.example", "amoy", "0xabc", "ID CARD&1")
        assert url.endswith("id=ID+CARD%261")

    def test_parse(self):
        target = parse_verification_url(URL)
        assert target.chain == "amoy"
        assert target.contract == CONTRACT_ADDRESS
        assert target.document_id == "CERTIFICATE-1a2b3c4d"

    def test_parse_requires_id(self):
        with pytest.raises(InputError):
            parse_verification_url("https://verify.example.org/verify?chain=amoy")

    def test_parse_rejects_plain_text(self):
        with pytest.raises(InputError):
            parse_verification_url("CERTIFICATE-1a2b3c4d")


class TestRenderQr:
    def test_size_is_twice_display_size(self, settings):
        img = render_qr(URL, 80, settings)
        assert img.size == (160, 160)
        assert img.mode == "RGB"

    def test_default_colours_stay_pure(self, settings):
        """Sharpening clamps, so a black/white code stays two-coloured."""
        img = render_qr(URL, 80, settings)
        colours = {colour for _, colour in img.getcolors(maxcolors=1024)}
        assert colours == {(0, 0, 0), (255, 255, 255)}

    def test_quiet_zone_is_background(self, settings):
        img = render_qr(URL, 80, settings)
        assert img.getpixel((0, 0)) == (255, 255, 255)
        assert img.getpixel((159, 159)) == (255, 255, 255)

    def test_custom_colours(self):
        settings = Settings(_env_file=None, QR_COLOR="#1a237e", QR_BACKGROUND="#fffde7")
        img = render_qr(URL, 60, settings)
        colours = {colour for _, colour in img.getcolors(maxcolors=4096)}
        assert (0x1A, 0x23, 0x7E) in colours
        assert img.getpixel((0, 0)) == (0xFF, 0xFD, 0xE7)

    def test_payload_above_max_version(self):
        settings = Settings(_env_file=None, QR_MAX_VERSION=2)
        with pytest.raises(InputError) as exc_info:
            render_qr(URL, 80, settings)
        assert exc_info.value.code == "QR_PAYLOAD_TOO_LARGE"

    def test_payload_too_large_for_any_version(self, settings):
        with pytest.raises(InputError) as exc_info:
            render_qr("x" * 4000, 80, Settings(_env_file=None, QR_MAX_VERSION=40))
        assert exc_info.value.code == "QR_PAYLOAD_TOO_LARGE"

    def test_png_bytes(self, settings):
        data = render_qr_png(URL, 80, settings)
        assert data[:8] == b"\x89PNG\r\n\x1a\n"

    def test_sharpening_leaves_border_and_sharpens_edges(self):
        """3x3 sharpen: outer rows/columns copied, interior = 5c - 4 neighbours, clamped."""
        settings = Settings(_env_file=None, QR_COLOR="#505050", QR_BACKGROUND="#b4b4b4")
        base = draw_qr(URL, 160, settings)
        img = render_qr(URL, 80, settings)
        size = img.size[0]

        for i in range(size):
            for point in ((i, 0), (i, size - 1), (0, i), (size - 1, i)):
                assert img.getpixel(point) == base.getpixel(point)

        def sharpened(x, y):
            centre = base.getpixel((x, y))
            around = [base.getpixel(p) for p in ((x, y - 1), (x, y + 1), (x - 1, y), (x + 1, y))]
            return tuple(
                max(0, min(255, 5 * centre[band] - sum(n[band] for n in around)))
                for band in range(3)
            )

        edges = [
            (x, y)
            for y in range(1, size - 1)
            for x in range(1, size - 2)
            if base.getpixel((x, y)) != base.getpixel((x + 1, y))
        ]
        assert edges
        for point in edges[:50]:
            assert img.getpixel(point) == sharpened(*point)
        assert img.getpixel(edges[0]) != base.getpixel(edges[0])


class TestDrawQr:
    def test_exact_multiple_gives_solid_modules(self, settings):
        modules = qr_module_count(URL, settings)
        img = draw_qr(URL, modules * 4, settings)
        assert img.size == (modules * 4, modules * 4)
        for row in range(modules):
            for col in range(modules):
                block = img.crop((col * 4, row * 4, (col + 1) * 4, (row + 1) * 4))
                assert len(block.getcolors()) == 1

    def test_module_count_includes_quiet_zone(self, settings):
        short = qr_module_count("https://v.example/verify?id=1", settings)
        assert (short - 2 * settings.qr_margin - 17) % 4 == 0
        assert qr_module_count(URL, settings) > short

    def test_overflow_is_input_error(self, settings):
        with pytest.raises(InputError) as exc_info:
            qr_module_count("x" * 4000, settings)
        assert exc_info.value.code == "QR_PAYLOAD_TOO_LARGE"
