"""
Unit tests for structural extraction of HTML documents.
"""
import pytest

from adlingo.core.exceptions import ExtractionError
from adlingo.core.html import StructuralExtractor, extract_units
from adlingo.models import UnitKind


class TestUnitCollection:
    """Tests for which content becomes a translation unit"""

    def test_sample_page_units(self, sample_html):
        """Stray text, leaf blocks and alt text are extracted in document order"""
        result = extract_units(sample_html)

        assert [u.unit_id for u in result.units] == ['t0', 'b1', 'b2', 'a3']
        assert result.units[0].source_text == 'Welcome back'
        assert result.units[1].source_markup == 'Sleep <strong>better</strong> tonight'
        assert result.units[1].source_text == 'Sleep better tonight'
        assert result.units[2].source_markup == 'Anna Svensson tried it for <em>30 nights</em>.'
        assert result.units[3].kind == UnitKind.ATTRIBUTE
        assert result.units[3].source_markup == 'A soft pillow'

    def test_leaf_block_keeps_inline_markup(self):
        result = extract_units('<html><body><p>Click <a href="/buy">here</a> now</p></body></html>')

        assert len(result.units) == 1
        assert result.units[0].kind == UnitKind.BLOCK
        assert result.units[0].source_markup == 'Click <a href="/buy">here</a> now'
        assert '{{b0}}' in result.skeleton
        assert 'here' not in result.skeleton

    def test_container_blocks_are_descended(self):
        """Only blocks without block descendants become units"""
        html = '<html><body><section><div><p>First</p><p>Second</p></div></section></body></html>'
        result = extract_units(html)

        assert [u.source_markup for u in result.units] == ['First', 'Second']
        assert all(u.kind == UnitKind.BLOCK for u in result.units)

    def test_attribute_inside_block_gets_nested_token(self):
        html = '<html><body><p>See <img src="a.png" alt="happy dog"> here</p></body></html>'
        result = extract_units(html)

        assert [u.unit_id for u in result.units] == ['a0', 'b1']
        assert 'alt="{{a0}}"' in result.units[1].source_markup

    def test_attribute_without_letters_ignored(self):
        html = '<html><body><img src="a.png" alt="123"><img src="b.png" alt=""></body></html>'
        result = extract_units(html)

        assert result.units == []

    def test_title_and_placeholder_attributes(self):
        html = ('<html><body><form><input placeholder="Your email">'
                '<span title="Free shipping">*</span></form></body></html>')
        result = extract_units(html)

        values = {u.source_markup for u in result.units if u.kind == UnitKind.ATTRIBUTE}
        assert values == {'Your email', 'Free shipping'}

    def test_hidden_elements_skipped(self):
        html = '<html><body><p hidden>Secret offer</p><p>Visible</p></body></html>'
        result = extract_units(html)

        assert [u.source_markup for u in result.units] == ['Visible']

    def test_stray_text_keeps_surrounding_whitespace(self):
        html = '<html><body><div><p>Para</p>  Loose text \n</div></body></html>'
        result = extract_units(html)

        text_unit = result.units[1]
        assert text_unit.kind == UnitKind.TEXT
        assert text_unit.source_markup == 'Loose text'
        assert text_unit.leading_space == '  '
        assert text_unit.trailing_space == ' \n'

    def test_ids_are_unique_across_kinds(self, sample_html):
        result = extract_units(sample_html)
        ids = [u.unit_id for u in result.units]

        assert len(ids) == len(set(ids))
        numbers = [int(i[1:]) for i in ids]
        assert numbers == sorted(numbers)


class TestStrippingAndMetadata:
    """Tests for stripped subtrees and page metadata"""

    def test_script_and_style_stripped(self, sample_html):
        result = extract_units(sample_html)

        assert len(result.stripped) == 2
        assert 'window.track' not in result.skeleton
        assert '.hero' not in result.skeleton
        assert all(s.placeholder in result.skeleton for s in result.stripped)
        assert 'window.track' in result.stripped[1].original_markup

    def test_markup_in_script_is_not_a_unit(self, sample_html):
        result = extract_units(sample_html)

        assert all('not text' not in u.source_markup for u in result.units)

    def test_metadata_read(self, sample_html):
        result = extract_units(sample_html)

        assert result.metadata == {
            'title': 'Sleep better tonight',
            'description': 'The pillow that changes everything',
        }

    def test_open_graph_metadata(self):
        html = ('<html><head><meta property="og:title" content="Big sale">'
                '<meta property="og:description" content="   "></head>'
                '<body><p>Hi there</p></body></html>')
        result = extract_units(html)

        assert result.metadata == {'og:title': 'Big sale'}

    def test_stats(self, sample_html):
        stats = extract_units(sample_html).stats()

        assert stats == {'block': 2, 'text': 1, 'attribute': 1, 'stripped': 2}


class TestExtractionContract:
    """Tests for determinism and failure modes"""

    def test_extraction_is_deterministic(self, sample_html):
        extractor = StructuralExtractor()
        first = extractor.extract(sample_html)
        second = extractor.extract(sample_html)

        assert first.unit_map() == second.unit_map()
        assert first.skeleton == second.skeleton

    def test_doctype_preserved(self, sample_html):
        result = extract_units(sample_html)

        assert result.doctype == '<!DOCTYPE html>'
        assert result.skeleton.startswith('<!DOCTYPE html>')

    def test_get_unit(self, sample_html):
        result = extract_units(sample_html)

        assert result.get_unit('b1').source_text == 'Sleep better tonight'
        assert result.get_unit('b99') is None

    @pytest.mark.parametrize("content", ["", "   \n  "])
    def test_empty_document_raises(self, content):
        with pytest.raises(ExtractionError):
            extract_units(content)
