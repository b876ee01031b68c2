"""
Document Converter package.

Accepts uploaded office documents, converts them to HTML with an external
LibreOffice process and pushes job-status changes to live WebSocket
observers. The FastAPI application lives in `doc_converter.webapi`.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
