"""
Tests for text extraction from uploaded files.
"""
import io
import json

import pytest

from apps.ingestion.extractor import (
    DOCX_TYPE,
    PDF_TYPE,
    EmptyExtraction,
    ExtractionError,
    UnsupportedFileType,
    UploadedContent,
    decode_text,
    extract,
    resolve_content_type,
)


class TestResolveContentType:
    """Tests for deciding which extractor applies."""

    def test_declared_type_wins(self):
        assert resolve_content_type('application/pdf', 'notes.txt') == PDF_TYPE

    def test_generic_type_falls_back_to_extension(self):
        assert resolve_content_type('application/octet-stream', 'report.docx') == DOCX_TYPE
        assert resolve_content_type('', 'data.csv') == 'text/csv'
        assert resolve_content_type(None, 'readme.md') == 'text/markdown'

    def test_text_plain_trusts_known_extension(self):
        assert resolve_content_type('text/plain', 'table.csv') == 'text/csv'

    @pytest.mark.parametrize('declared', ['application/vnd.ms-excel', 'text/x-csv', 'application/x-csv'])
    def test_spreadsheet_types_defer_to_csv_extension(self, declared):
        assert resolve_content_type(declared, 'prefs.csv') == 'text/csv'

    def test_spreadsheet_type_without_known_extension_is_kept(self):
        assert resolve_content_type('application/vnd.ms-excel', 'budget.xls') == 'application/vnd.ms-excel'

    def test_parameters_are_ignored(self):
        assert resolve_content_type('text/plain; charset=utf-8', 'a.txt') == 'text/plain'

    def test_unknown_type_is_returned_as_is(self):
        assert resolve_content_type('image/png', 'photo.png') == 'image/png'


class TestDecodeText:
    """Tests for byte decoding."""

    def test_utf8_bom_is_stripped(self):
        assert decode_text('\ufeffhello'.encode('utf-8')) == 'hello'

    def test_non_utf8_falls_back(self):
        text = decode_text('café au lait, crème brûlée'.encode('latin-1'))
        assert text.startswith('caf')
        assert 'lait' in text


class TestExtract:
    """Tests for the extraction entry point."""

    def test_plain_text_is_kept(self):
        upload = UploadedContent(data=b'Hello world', content_type='text/plain', name='a.txt')
        assert extract(upload) == 'Hello world'

    def test_markdown_keeps_syntax(self):
        upload = UploadedContent(data=b'# Title\n\n- item', content_type='text/markdown', name='a.md')
        assert extract(upload) == '# Title\n\n- item'

    def test_csv_rows_become_json_records(self):
        data = b'name,city,age\nAda,London,36\nBob,Paris,41\n'
        upload = UploadedContent(data=data, content_type='text/csv', name='people.csv')

        lines = extract(upload).split('\n')

        assert [json.loads(line) for line in lines] == [
            {'name': 'Ada', 'city': 'London', 'age': '36'},
            {'name': 'Bob', 'city': 'Paris', 'age': '41'},
        ]

    def test_csv_declared_as_excel_is_extracted(self):
        upload = UploadedContent(
            data=b'name,likes\nAda,tea\n',
            content_type='application/vnd.ms-excel',
            name='prefs.csv',
        )

        assert json.loads(extract(upload)) == {'name': 'Ada', 'likes': 'tea'}

    def test_docx_paragraphs_are_extracted(self):
        from docx import Document

        document = Document()
        document.add_paragraph('First paragraph')
        document.add_paragraph('Second paragraph')
        buffer = io.BytesIO()
        document.save(buffer)

        upload = UploadedContent(data=buffer.getvalue(), content_type=DOCX_TYPE, name='a.docx')
        text = extract(upload)

        assert 'First paragraph' in text
        assert 'Second paragraph' in text

    def test_pdf_text_is_extracted(self):
        import fitz

        doc = fitz.open()
        page = doc.new_page()
        page.insert_text((72, 72), 'Quarterly revenue grew')
        data = doc.tobytes()
        doc.close()

        upload = UploadedContent(data=data, content_type=PDF_TYPE, name='a.pdf')
        assert 'Quarterly revenue grew' in extract(upload)

    def test_corrupt_pdf_raises_extraction_error(self):
        upload = UploadedContent(data=b'not a pdf', content_type=PDF_TYPE, name='bad.pdf')
        with pytest.raises(ExtractionError):
            extract(upload)

    def test_unsupported_type_raises(self):
        upload = UploadedContent(data=b'\x89PNG', content_type='image/png', name='photo.png')
        with pytest.raises(UnsupportedFileType):
            extract(upload)

    def test_blank_file_raises_empty_extraction(self):
        upload = UploadedContent(data=b'  \n\t ', content_type='text/plain', name='blank.txt')
        with pytest.raises(EmptyExtraction):
            extract(upload)
