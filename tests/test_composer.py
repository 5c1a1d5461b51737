"""
Tests for PDF composition: page order, numbering and placeholder pages.
"""

import threading

import pytest
from pypdf import PdfReader

from conftest import data_uri, make_broken_png, make_png
from coloringbook_backend import composer as composer_module
from coloringbook_backend.composer import DocumentComposer, PageKind, fit_within, load_image
from coloringbook_backend.errors import JobCancelledError
from coloringbook_backend.image_refs import InlineRef, RemoteRef, StorageRef


@pytest.fixture
def composer(resolver, work_dir, settings):
    return DocumentComposer(resolver, work_dir, settings.layout)


def inline(width, height, **kwargs):
    payload = data_uri(make_png(width, height, **kwargs)).split(",", 1)[1]
    return InlineRef(content_type="image/png", payload=payload)


def page_texts(path):
    return [page.extract_text() for page in PdfReader(str(path)).pages]


def image_sizes(page):
    """(width, height) of every image XObject drawn on a page."""
    resources = page.get("/Resources")
    if resources is None or "/XObject" not in resources:
        return []
    sizes = []
    for xobject in resources["/XObject"].values():
        xobject = xobject.get_object()
        if xobject.get("/Subtype") == "/Image":
            sizes.append((xobject["/Width"], xobject["/Height"]))
    return sizes


class TestFitWithin:
    def test_wide_image_is_limited_by_width(self):
        assert fit_within(200, 100, 500, 600) == (500, 250)

    def test_tall_image_is_limited_by_height(self):
        assert fit_within(100, 400, 500, 600) == (150, 600)

    def test_zero_size_is_rejected(self):
        with pytest.raises(ValueError):
            fit_within(0, 10, 500, 600)


class TestLoadImage:
    def test_transparent_image_is_flattened(self):
        image = load_image(make_png(10, 10, mode="RGBA"))
        assert image.mode == "RGB"

    def test_greyscale_is_kept(self):
        assert load_image(make_png(10, 10, mode="L")).mode == "L"

    def test_garbage_raises(self):
        with pytest.raises(OSError):
            load_image(b"definitely not an image")


class TestCompose:
    def test_cover_and_pages_in_input_order(self, composer):
        sizes = [(40, 20), (20, 40), (30, 30)]
        refs = [inline(width, height) for width, height in sizes]

        document = composer.compose(refs, "Test Book")

        assert document.page_count == 4
        assert [page.kind for page in document.pages] == [PageKind.COVER] + [PageKind.IMAGE] * 3
        assert [page.source_index for page in document.pages[1:]] == [0, 1, 2]

        reader = PdfReader(str(document.path))
        assert len(reader.pages) == 4
        assert "Test Book" in reader.pages[0].extract_text()
        for page_index, (width, height) in enumerate(sizes, start=1):
            assert image_sizes(reader.pages[page_index]) == [(width, height)]

    def test_every_page_is_numbered(self, composer):
        document = composer.compose([inline(10, 10), inline(12, 12)], "Numbers")
        texts = page_texts(document.path)
        assert "Page 1 of 3" in texts[0]
        assert "Page 2 of 3" in texts[1]
        assert "Page 3 of 3" in texts[2]

    def test_cover_states_page_count_and_instructions(self, composer):
        document = composer.compose([inline(10, 10)], "Cover")
        cover = page_texts(document.path)[0]
        assert "Created with Coloring Book Studio" in cover
        assert "Contains 1 pages to color" in cover
        assert "2 pages in this book" in cover
        assert "Instructions:" in cover

    def test_failed_images_become_placeholders(self, composer):
        refs = []
        for index in range(10):
            if index in (2, 5):
                refs.append(StorageRef(bucket="books", key=f"gone-{index}.png", url=f"http://localstack:4566/books/gone-{index}.png"))
            else:
                refs.append(inline(10 + index, 10))

        document = composer.compose(refs, "Partial")

        assert document.page_count == 11
        assert document.placeholder_count == 2
        placeholders = [page.source_index for page in document.pages if page.kind is PageKind.PLACEHOLDER]
        assert placeholders == [2, 5]

        reader = PdfReader(str(document.path))
        assert len(reader.pages) == 11
        for index in range(10):
            page = reader.pages[index + 1]
            text = page.extract_text()
            assert f"Page {index + 2} of 11" in text
            if index in (2, 5):
                assert f"Unable to process image {index + 1}" in text
                assert image_sizes(page) == []
            else:
                assert len(image_sizes(page)) == 1

    def test_undecodable_bytes_become_placeholder(self, composer):
        ref = InlineRef(content_type="image/png", payload="bm90IGFuIGltYWdl")
        document = composer.compose([ref], "Broken")
        assert document.pages[1].kind is PageKind.PLACEHOLDER
        assert "decoded" in document.pages[1].detail

    def test_broken_png_chunk_becomes_placeholder(self, composer):
        broken = data_uri(make_broken_png()).split(",", 1)[1]
        refs = [inline(10, 10), InlineRef(content_type="image/png", payload=broken), inline(12, 12)]

        document = composer.compose(refs, "Broken chunk")

        assert [page.kind for page in document.pages] == [
            PageKind.COVER,
            PageKind.IMAGE,
            PageKind.PLACEHOLDER,
            PageKind.IMAGE,
        ]
        texts = page_texts(document.path)
        assert "Unable to process image 2" in texts[2]
        assert "Page 3 of 4" in texts[2]

    def test_any_decoder_error_becomes_placeholder(self, composer, monkeypatch):
        def broken_decoder(data):
            raise SyntaxError("broken PNG file")

        monkeypatch.setattr(composer_module, "load_image", broken_decoder)

        document = composer.compose([inline(10, 10)], "Decoder")

        assert document.pages[1].kind is PageKind.PLACEHOLDER
        assert "broken PNG file" in document.pages[1].detail

    def test_unreachable_remote_image_becomes_placeholder(self, composer):
        document = composer.compose([RemoteRef(url="https://nowhere.example.com/a.png")], "Remote")
        assert document.page_count == 2
        assert "Unable to process image 1" in page_texts(document.path)[1]

    def test_empty_list_produces_cover_only(self, composer):
        document = composer.compose([], "Empty")
        assert document.page_count == 1
        assert len(PdfReader(str(document.path)).pages) == 1

    def test_blank_title_uses_default(self, composer):
        document = composer.compose([], "   ")
        assert document.title == "My Coloring Book"

    def test_cancelled_composition_writes_nothing(self, composer, work_dir):
        cancel_event = threading.Event()
        cancel_event.set()
        with pytest.raises(JobCancelledError):
            composer.compose([inline(10, 10)], "Cancelled", cancel_event)
        assert list(work_dir.glob("*.pdf")) == []
