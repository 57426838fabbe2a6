import unittest

from tvgrab.main import build_parser, main


class CommandLineTests(unittest.TestCase):
    def test_channel_flag_is_repeatable(self) -> None:
        args = build_parser().parse_args(["--channel", "2", "--channel", "702", "--days", "3", "--offset", "1"])
        self.assertEqual(args.channels, [2, 702])
        self.assertEqual((args.days, args.offset), (3, 1))
        self.assertFalse(args.list_channels)

    def test_quiet_and_verbose_are_exclusive(self) -> None:
        with self.assertRaises(SystemExit):
            build_parser().parse_args(["--quiet", "--verbose"])

    def test_invalid_day_count_exits_with_failure(self) -> None:
        self.assertEqual(main(["--days", "0", "--quiet"]), 1)

    def test_options_are_checked_against_settings_limits(self) -> None:
        for argv in (["--days", "30"], ["--workers", "0"], ["--offset", "-1"]):
            with self.subTest(argv=argv):
                self.assertEqual(main([*argv, "--quiet"]), 1)


if __name__ == "__main__":
    unittest.main()
