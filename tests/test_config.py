import unittest
from unittest import mock

from pydantic import ValidationError

from tvgrab.config import CustomSettings


class SettingsTests(unittest.TestCase):
    def test_defaults_are_valid(self) -> None:
        settings = CustomSettings(_env_file=None)
        self.assertEqual(settings.workers, 8)
        self.assertEqual(settings.utc_offset_hours, -8)
        self.assertTrue(settings.observes_dst)
        self.assertIn("{start}", settings.listing_url_template)

    def test_invalid_values_are_rejected(self) -> None:
        invalid = [
            {"workers": 0},
            {"days": 0},
            {"days": 30},
            {"utc_offset_hours": -13},
            {"listing_window_hours": 5},
            {"listing_url_template": "ftp://listings.test/{start}"},
            {"listing_url_template": "https://listings.test/grid"},
            {"detail_url_template": "https://listings.test/program"},
            {"log_level": "chatty"},
            {"mp_start_method": "teleport"},
        ]
        for overrides in invalid:
            with self.subTest(overrides=overrides):
                with self.assertRaises(ValidationError):
                    CustomSettings(_env_file=None, **overrides)

    def test_log_level_is_normalized(self) -> None:
        self.assertEqual(CustomSettings(_env_file=None, log_level="debug").log_level, "DEBUG")

    def test_environment_overrides(self) -> None:
        with mock.patch.dict("os.environ", {"TVGRAB_WORKERS": "3", "TVGRAB_OBSERVES_DST": "false"}):
            settings = CustomSettings(_env_file=None)
        self.assertEqual(settings.workers, 3)
        self.assertFalse(settings.observes_dst)


if __name__ == "__main__":
    unittest.main()
