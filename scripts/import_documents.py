"""Import NF-e / NFS-e XML files into the payables ledger.

Reads every XML file given on the command line (directories are scanned
for *.xml), imports them one at a time into the configured storage
backend and prints a per-file report.

Example:
    python -m scripts.import_documents data/inbox --export-csv out/
"""

import logging
from collections.abc import Iterator
from pathlib import Path

from services.reconciler.service import FileImportResult, ImportBatchResult, ImportReconciler
from services.reports.service import (
    InvoiceFilter,
    export_filename,
    export_invoices_csv,
    filter_invoices,
)
from services.repository.service import InvoiceRepository
from services.shared.config import get_settings
from services.storage.factory import create_storage

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)


def collect_xml_files(paths: list[Path]) -> list[Path]:
    """Expand the given paths into a sorted, de-duplicated list of XML files.

    Args:
        paths: Files and/or directories

    Returns:
        XML file paths, directories expanded non-recursively

    Raises:
        FileNotFoundError: If a path does not exist
    """
    files: list[Path] = []
    for path in paths:
        if not path.exists():
            raise FileNotFoundError(f"Path not found: {path}")
        if path.is_dir():
            files.extend(sorted(p for p in path.iterdir() if p.suffix.lower() == ".xml"))
        else:
            files.append(path)

    seen: set[Path] = set()
    unique: list[Path] = []
    for file in files:
        resolved = file.resolve()
        if resolved not in seen:
            seen.add(resolved)
            unique.append(file)
    return unique


def read_documents(files: list[Path]) -> Iterator[tuple[str, bytes]]:
    for file in files:
        yield file.name, file.read_bytes()


def import_files(repository: InvoiceRepository, files: list[Path]) -> ImportBatchResult:
    """Import files through an ImportReconciler, logging each outcome."""

    def report(result: FileImportResult) -> None:
        detail = result.error or result.invoice_id or result.access_key or ""
        logger.info(f"{result.filename}: {result.status.value} {detail}".rstrip())

    reconciler = ImportReconciler(repository)
    return reconciler.import_batch(read_documents(files), on_progress=report)


def export_csv(repository: InvoiceRepository, output_dir: Path) -> Path:
    """Write every invoice, ordered by due date, to a dated CSV file."""
    as_of = repository.today()
    invoices = filter_invoices(repository.invoices, repository.suppliers, InvoiceFilter())
    output_dir.mkdir(parents=True, exist_ok=True)
    output = output_dir / export_filename(as_of)
    output.write_text(
        export_invoices_csv(invoices, repository.suppliers, as_of), encoding="utf-8"
    )
    return output


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Import NF-e / NFS-e XML documents")
    parser.add_argument(
        "paths",
        type=Path,
        nargs="+",
        help="XML files or directories containing them",
    )
    parser.add_argument(
        "--export-csv",
        type=Path,
        default=None,
        help="Directory to write the invoice CSV report to after importing",
    )

    args = parser.parse_args()

    settings = get_settings()
    repository = InvoiceRepository(create_storage(settings))
    files = collect_xml_files(args.paths)
    logger.info(f"Importing {len(files)} files into {settings.storage_backend} storage")

    batch = import_files(repository, files)

    print(f"\n=== Imported {batch.total} files ===\n")
    print(f"  imported:   {batch.imported}")
    print(f"  duplicates: {batch.duplicates}")
    print(f"  failed:     {batch.failed}")

    if args.export_csv is not None:
        output = export_csv(repository, args.export_csv)
        logger.info(f"Saved report to {output}")
