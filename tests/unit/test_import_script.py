"""Unit tests for the import_documents command-line helpers."""

from pathlib import Path

import pytest

from scripts.import_documents import collect_xml_files, export_csv, import_files
from services.reconciler.service import ImportStatus
from services.repository.service import InvoiceRepository
from tests.samples import NfeBuilder


@pytest.fixture
def inbox(tmp_path: Path, nfe_xml: NfeBuilder, nfse_xml: str) -> Path:
    directory = tmp_path / "inbox"
    directory.mkdir()
    (directory / "b_nota.xml").write_text(nfe_xml(), encoding="utf-8")
    (directory / "a_servico.XML").write_text(nfse_xml, encoding="utf-8")
    (directory / "leia-me.txt").write_text("not a document", encoding="utf-8")
    return directory


def test_collect_expands_directories(inbox: Path) -> None:
    files = collect_xml_files([inbox])

    assert [f.name for f in files] == ["a_servico.XML", "b_nota.xml"]


def test_collect_deduplicates_paths(inbox: Path) -> None:
    files = collect_xml_files([inbox / "b_nota.xml", inbox])

    assert [f.name for f in files] == ["b_nota.xml", "a_servico.XML"]


def test_collect_missing_path(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        collect_xml_files([tmp_path / "missing"])


def test_import_files(inbox: Path, repository: InvoiceRepository) -> None:
    batch = import_files(repository, collect_xml_files([inbox]))

    assert [r.status for r in batch.files] == [ImportStatus.IMPORTED, ImportStatus.IMPORTED]
    assert len(repository.invoices) == 2

    again = import_files(repository, [inbox / "b_nota.xml"])
    assert again.duplicates == 1


def test_export_csv(inbox: Path, tmp_path: Path, repository: InvoiceRepository) -> None:
    import_files(repository, collect_xml_files([inbox]))

    output = export_csv(repository, tmp_path / "out")

    assert output.name == "relatorio_notas_2024-06-01.csv"
    lines = output.read_text(encoding="utf-8").splitlines()
    assert lines[0].startswith("Numero;Serie")
    assert len(lines) == 3
