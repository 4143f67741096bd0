"""Invoice OCR engine.

Text detection, orientation classification, CTC text recognition,
layout analysis and table structure recognition over ONNX models,
producing reading-ordered text and table data from page images.
"""
