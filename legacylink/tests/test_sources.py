"""Tests for legacy source collection."""

import pytest

from legacylink.ingestion.sources import MARKER, collect_files, collect_sources


@pytest.fixture
def legacy_tree(tmp_path):
    (tmp_path / 'copy').mkdir()
    (tmp_path / 'PAYROLL.cbl').write_text('       IDENTIFICATION DIVISION.\n       PROGRAM-ID. PAYROLL.\n')
    (tmp_path / 'copy' / 'EMPREC.cpy').write_text('       01 EMP-REC.\n')
    (tmp_path / 'ACCOUNTS.cob').write_text('       PROGRAM-ID. ACCOUNTS.\n')
    (tmp_path / 'notes.pdf').write_bytes(b'%PDF')
    return tmp_path


class TestCollectSources:

    def test_files_sorted_and_filtered(self, legacy_tree):
        names = [p.name for p in collect_files(legacy_tree)]
        assert names == ['ACCOUNTS.cob', 'PAYROLL.cbl', 'EMPREC.cpy']

    def test_each_file_gets_a_marker(self, legacy_tree):
        text = collect_sources(legacy_tree)

        assert text.count(MARKER) == 3
        assert f'{MARKER}PAYROLL.cbl\n       IDENTIFICATION DIVISION.' in text
        assert f'{MARKER}copy/EMPREC.cpy' in text
        assert '%PDF' not in text
        assert '\n\n' + MARKER in text

    def test_single_file(self, legacy_tree):
        text = collect_sources(legacy_tree / 'ACCOUNTS.cob')
        assert text == f'{MARKER}ACCOUNTS.cob\n       PROGRAM-ID. ACCOUNTS.'

    def test_custom_extensions(self, legacy_tree):
        text = collect_sources(legacy_tree, extensions=['.CPY'])
        assert text.count(MARKER) == 1

    def test_missing_path(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            collect_sources(tmp_path / 'nope')
