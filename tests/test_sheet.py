import unittest

import numpy as np

from passportprint.core.models import DEFAULT_PREVIEW_PX, PHOTO_PX, SHEET_PX
from passportprint.imaging.sheet import grid_for_quantity, plan_layout, render_sheet, render_sheets


def _photo(color=(10, 120, 200)):
    photo = np.zeros((PHOTO_PX[1], PHOTO_PX[0], 4), dtype=np.uint8)
    photo[..., :3] = color
    photo[..., 3] = 255
    return photo


class TestGrid(unittest.TestCase):
    def test_table(self):
        self.assertEqual(grid_for_quantity(1), (1, 1))
        self.assertEqual(grid_for_quantity(4), (2, 2))
        self.assertEqual(grid_for_quantity(8), (2, 4))
        self.assertEqual(grid_for_quantity(12), (3, 4))

    def test_unlisted_quantities_use_two_columns(self):
        self.assertEqual(grid_for_quantity(6), (2, 3))
        self.assertEqual(grid_for_quantity(3), (2, 2))
        self.assertEqual(grid_for_quantity(2), (2, 1))


class TestPlanLayout(unittest.TestCase):
    def test_export_scale_is_one(self):
        layout = plan_layout(4, *SHEET_PX)
        self.assertAlmostEqual(layout.scale, 1.0)
        self.assertAlmostEqual(layout.photo_w, 413.0)
        self.assertAlmostEqual(layout.photo_h, 531.0)
        self.assertAlmostEqual(layout.gap_x_px, 7 * 300 / 25.4)
        self.assertAlmostEqual(layout.margin_px, 10 * 300 / 25.4)

    def test_exactly_quantity_slots(self):
        for qty in (1, 3, 4, 5, 8, 12):
            with self.subTest(qty=qty):
                layout = plan_layout(qty, *SHEET_PX)
                self.assertEqual(len(list(layout.slots())), qty)
                self.assertLessEqual(qty, layout.cols * layout.rows)

    def test_grid_is_centred(self):
        layout = plan_layout(12, *SHEET_PX)
        self.assertAlmostEqual(layout.start_x * 2 + layout.grid_w, SHEET_PX[0])
        self.assertAlmostEqual(layout.start_y * 2 + layout.grid_h, SHEET_PX[1])

    def test_preview_and_export_share_relative_positions(self):
        for qty in (1, 4, 8, 12, 7):
            with self.subTest(qty=qty):
                full = plan_layout(qty, *SHEET_PX)
                prev = plan_layout(qty, *DEFAULT_PREVIEW_PX)
                for (fx, fy), (px, py) in zip(full.slot_centers(), prev.slot_centers()):
                    self.assertAlmostEqual((fx - full.canvas_w / 2) / full.scale, (px - prev.canvas_w / 2) / prev.scale)
                    self.assertAlmostEqual((fy - full.canvas_h / 2) / full.scale, (py - prev.canvas_h / 2) / prev.scale)

    def test_gap_shrinks_only_on_overflowing_axis(self):
        layout = plan_layout(20, *SHEET_PX)  # 2 x 10 cannot fit vertically
        self.assertEqual((layout.cols, layout.rows), (2, 10))
        self.assertAlmostEqual(layout.gap_y_px, 2.0)
        self.assertAlmostEqual(layout.gap_x_px, 7 * 300 / 25.4)

    def test_invalid_inputs(self):
        with self.assertRaises(ValueError):
            plan_layout(0, *SHEET_PX)
        with self.assertRaises(ValueError):
            plan_layout(4, 0, 100)


class TestRenderSheet(unittest.TestCase):
    def test_blank_cells_stay_white(self):
        layout = plan_layout(3, *DEFAULT_PREVIEW_PX)
        sheet = render_sheet(_photo(), layout)
        arr = np.asarray(sheet.image)
        self.assertEqual(sheet.size, DEFAULT_PREVIEW_PX)

        for cx, cy in layout.slot_centers():
            r, g, b = arr[int(cy), int(cx)]
            self.assertLess(int(r), 60)
            self.assertGreater(int(b), 150)

        # fourth cell of the 2x2 grid is not drawn
        x = layout.start_x + (layout.photo_w + layout.gap_x_px) + layout.photo_w / 2
        y = layout.start_y + (layout.photo_h + layout.gap_y_px) + layout.photo_h / 2
        self.assertEqual(arr[int(y), int(x)].tolist(), [255, 255, 255])

    def test_render_sheets_sizes(self):
        preview, export = render_sheets(_photo(), 4)
        self.assertEqual(export.size, SHEET_PX)
        self.assertEqual(preview.size, DEFAULT_PREVIEW_PX)
        self.assertEqual(export.layout.quantity, 4)
        self.assertIn("Qty 4", export.describe())
        # page corner is untouched margin
        self.assertEqual(np.asarray(export.image)[5, 5].tolist(), [255, 255, 255])
