import io
import os
import tempfile
import unittest
from datetime import datetime
from unittest.mock import patch

import numpy as np
from PIL import Image

from passportprint.core.errors import EncodingFailure
from passportprint.core.models import DEFAULT_PREVIEW_PX
from passportprint.imaging.export import encode_jpeg, encode_pdf, export_filename, save_jpeg, save_pdf
from passportprint.imaging.sheet import plan_layout, render_sheet


def _sheet():
    photo = np.full((80, 62, 4), 180, dtype=np.uint8)
    return render_sheet(photo, plan_layout(4, *DEFAULT_PREVIEW_PX))


class TestExport(unittest.TestCase):
    def test_filename(self):
        name = export_filename(8, "pdf", datetime(2024, 3, 9, 7, 5, 1))
        self.assertEqual(name, "passport_sheet_2024-03-09_070501_x8.pdf")

    def test_jpeg_roundtrip_size(self):
        data = encode_jpeg(_sheet())
        self.assertTrue(data.startswith(b"\xff\xd8"))
        self.assertEqual(Image.open(io.BytesIO(data)).size, DEFAULT_PREVIEW_PX)

    def test_pdf_is_single_page_document(self):
        data = encode_pdf(_sheet())
        self.assertTrue(data.startswith(b"%PDF"))
        self.assertIn(b"/Count 1", data)

    def test_encoding_errors_are_wrapped(self):
        with patch.object(Image.Image, "save", side_effect=OSError("disk full")):
            with self.assertRaises(EncodingFailure):
                encode_jpeg(_sheet())
            with self.assertRaises(EncodingFailure):
                encode_pdf(_sheet())

    def test_save_to_disk(self):
        sheet = _sheet()
        with tempfile.TemporaryDirectory() as d:
            jpg = save_jpeg(sheet, os.path.join(d, "a.jpg"))
            pdf = save_pdf(sheet, os.path.join(d, "a.pdf"))
            self.assertGreater(os.path.getsize(jpg), 0)
            self.assertGreater(os.path.getsize(pdf), 0)
