from src.cellar.core.services.imports.pipeline import ImportPipeline, ImportReport, RejectedRow
from src.cellar.core.services.imports.spreadsheet import Spreadsheet, SpreadsheetRow, parse_spreadsheet
from src.cellar.core.services.imports.uploads import StoredFile, UploadStore, read_upload

__all__ = [
    "ImportPipeline",
    "ImportReport",
    "RejectedRow",
    "Spreadsheet",
    "SpreadsheetRow",
    "StoredFile",
    "UploadStore",
    "parse_spreadsheet",
    "read_upload",
]
