from .spreadsheet import SpreadsheetError, SpreadsheetTransformer, reshape_structure

__all__ = ["SpreadsheetError", "SpreadsheetTransformer", "reshape_structure"]
