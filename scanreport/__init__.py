"""Scan-to-report pipeline.

Turns photographed or scanned documents into structured reports:
OCR through a local Tesseract engine or hosted vision models, then
chat-model enhancement into titled sections, with offline fallbacks
whenever no backend is configured or reachable.
"""

__version__ = "1.0.0"
