"""
Tests for PageRangeParser (vision caller replaced with a scripted fake).
"""

import threading

import pytest

from docstruct.errors import OperationAbortedError, PageRangeParseError
from docstruct.models import PageRange
from docstruct.pages.page_range_parser import COMPONENT_NAME, PageRangeParser
from tests.conftest import FakeVisionCaller, FirstSamples


def make_parser(caller, tmp_path, **kwargs):
    kwargs.setdefault("rng", FirstSamples())
    return PageRangeParser(caller, str(tmp_path), "vision-test", **kwargs)


def offset_pages(offset):
    return lambda p: (p + offset, None)


class RecordingCaller(FakeVisionCaller):

    def __init__(self, mapping):
        super().__init__(mapping)
        self.messages = []

    def call_vision(self, schema, messages, *args, **kwargs):
        self.messages.append(messages)
        return super().call_vision(schema, messages, *args, **kwargs)


class TestParse:

    def test_empty_document(self, tmp_path):
        caller = FakeVisionCaller(offset_pages(0))

        result = make_parser(caller, tmp_path).parse({})

        assert result["page_range_map"] == {}
        assert len(result["usage"]) == 1
        usage = result["usage"][0]
        assert (usage.component, usage.phase, usage.model_name) == (COMPONENT_NAME, "sampling", "vision-test")
        assert usage.total_tokens == 0
        assert caller.calls == []

    def test_offset_pattern_applied_to_group(self, tmp_path, page_images):
        caller = FakeVisionCaller(offset_pages(5))
        doc = page_images(8).build()

        result = make_parser(caller, tmp_path).parse(doc)

        page_map = result["page_range_map"]
        assert len(page_map) == 8
        assert page_map[1] == PageRange(6, 6)
        assert page_map[8] == PageRange(13, 13)
        assert caller.calls == [[1, 2, 3]]
        assert len(result["usage"]) == 1

    def test_double_sided_scans(self, tmp_path, page_images):
        caller = FakeVisionCaller(lambda p: (2 * p - 1, 2 * p))
        doc = page_images(6).build()

        page_map = make_parser(caller, tmp_path).parse(doc)["page_range_map"]

        assert page_map[1] == PageRange(1, 2)
        assert page_map[6] == PageRange(11, 12)

    def test_small_group_mapped_directly(self, tmp_path, page_images):
        answers = {1: (None, None), 2: (12, None), 3: (13, None)}
        caller = FakeVisionCaller(answers.get)
        doc = page_images(3).build()

        page_map = make_parser(caller, tmp_path).parse(doc)["page_range_map"]

        assert caller.calls == [[1, 2, 3]]
        assert page_map == {1: PageRange(11, 11), 2: PageRange(12, 12), 3: PageRange(13, 13)}

    def test_negative_answers_are_backfilled(self, tmp_path, page_images):
        answers = {1: (-1, None), 2: (2, None), 3: (3, None)}
        doc = page_images(3).build()

        page_map = make_parser(FakeVisionCaller(answers.get), tmp_path).parse(doc)["page_range_map"]

        assert page_map[1] == PageRange(1, 1)

    def test_partial_sample_retries_with_new_pages(self, tmp_path, page_images):
        caller = FakeVisionCaller(lambda p: (None, None) if p == 2 else (p + 5, None))
        doc = page_images(8).build()

        result = make_parser(caller, tmp_path).parse(doc)

        assert caller.calls == [[1, 2, 3], [4, 5, 6]]
        assert result["page_range_map"][2] == PageRange(7, 7)
        assert len(result["usage"]) == 2

    def test_undetectable_pattern_raises(self, tmp_path, page_images):
        caller = FakeVisionCaller(lambda p: (100, None) if p % 2 else (1, None))
        doc = page_images(8).build()

        with pytest.raises(PageRangeParseError, match="after 7 attempts"):
            make_parser(caller, tmp_path).parse(doc)

        assert len(caller.calls) == 7

    def test_size_groups_processed_separately(self, tmp_path, page_images):
        sizes = {2: (595.3, 842.2), 5: (842.0, 595.0), 6: (842.0, 595.0)}
        caller = FakeVisionCaller(offset_pages(0))
        doc = page_images(6, sizes).build()

        result = make_parser(caller, tmp_path).parse(doc)

        assert sorted(caller.calls) == [[1, 2, 3], [5, 6]]
        assert result["page_range_map"] == {p: PageRange(p, p) for p in range(1, 7)}
        assert len(result["usage"]) == 2

    def test_group_failure_stops_remaining_groups(self, tmp_path, page_images):
        landscape = (842.0, 595.0)
        sizes = {3: landscape, 4: landscape, 7: landscape, 8: landscape}

        def answer(p):
            if p == 1:
                raise RuntimeError("model offline")
            return (p, None)

        caller = FakeVisionCaller(answer)
        doc = page_images(8, sizes).build()

        with pytest.raises(PageRangeParseError, match="model offline"):
            make_parser(caller, tmp_path, max_workers=1).parse(doc)

        assert caller.calls == [[1, 2]]


class TestSizeGrouping:

    def test_consecutive_runs(self, tmp_path, page_images):
        sizes = {3: (600.0, 842.0), 4: (595.0, 842.0)}
        parser = make_parser(FakeVisionCaller(offset_pages(0)), tmp_path)
        pages = parser.extract_pages(page_images(4, sizes).build())

        assert parser.analyze_sizes(pages) == [[1, 2], [3], [4]]

    def test_tolerance(self, tmp_path, page_images):
        sizes = {2: (595.4, 842.0), 3: (594.6, 841.6)}
        parser = make_parser(FakeVisionCaller(offset_pages(0)), tmp_path)
        pages = parser.extract_pages(page_images(3, sizes).build())

        assert parser.analyze_sizes(pages) == [[1, 2, 3]]


class TestSampling:

    def test_excludes_already_sampled_pages(self, tmp_path):
        parser = make_parser(FakeVisionCaller(offset_pages(0)), tmp_path)

        assert parser.select_random_samples([1, 2, 3, 4, 5, 6], 3, {1, 2, 3}) == [4, 5, 6]

    def test_falls_back_to_whole_group(self, tmp_path):
        parser = make_parser(FakeVisionCaller(offset_pages(0)), tmp_path)

        assert parser.select_random_samples([1, 2, 3, 4], 3, {1, 2}) == [1, 2, 3]


class TestVisionRequest:

    def test_message_layout(self, tmp_path, page_images):
        caller = RecordingCaller(offset_pages(0))
        doc = page_images(2).build()

        make_parser(caller, tmp_path).parse(doc)

        system, human = caller.messages[0]
        assert "page number" in system.content
        assert human.content[0]["type"] == "text"
        assert "PDF pages: 1, 2." in human.content[0]["text"]
        assert [c["type"] for c in human.content[1:]] == ["image_url", "image_url"]
        assert human.content[1]["image_url"]["url"].startswith("data:image/png;base64,")

    def test_abort_before_call(self, tmp_path, page_images):
        caller = FakeVisionCaller(offset_pages(0))
        abort = threading.Event()
        abort.set()

        with pytest.raises(OperationAbortedError):
            make_parser(caller, tmp_path, abort_event=abort).parse(page_images(4).build())

        assert caller.calls == []

    def test_call_failure_is_wrapped(self, tmp_path, page_images):
        caller = FakeVisionCaller(offset_pages(0), error=RuntimeError("model offline"))

        with pytest.raises(PageRangeParseError) as exc_info:
            make_parser(caller, tmp_path).parse(page_images(2).build())

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert "model offline" in str(exc_info.value)

    def test_missing_page_image(self, tmp_path, builder):
        builder.page(1)
        caller = FakeVisionCaller(offset_pages(0))

        with pytest.raises(PageRangeParseError) as exc_info:
            make_parser(caller, tmp_path).parse(builder.build())

        assert isinstance(exc_info.value.__cause__, FileNotFoundError)
        assert caller.calls == []

    def test_single_page_request(self, tmp_path, page_images):
        parser = make_parser(FakeVisionCaller(offset_pages(3)), tmp_path)
        pages_by_no = {p["page_no"]: p for p in parser.extract_pages(page_images(2).build())}

        samples, usage = parser.extract_multiple_pages(pages_by_no, [2])

        assert [(s.pdf_page_no, s.start_page_no) for s in samples] == [(2, 5)]
        assert usage.input_tokens == 100

    def test_from_config_env_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DOCSTRUCT_PRIMARY_MODEL", "custom-vision")

        parser = PageRangeParser.from_config(FakeVisionCaller(offset_pages(0)), str(tmp_path))

        assert parser.primary_model == "custom-vision"
        assert parser.sample_size == 3
        assert parser.max_pattern_retries == 6
