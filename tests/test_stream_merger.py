import tempfile
import unittest
from datetime import timedelta, timezone
from pathlib import Path

from tests.helpers import base_time, make_record, write_worker_file
from tvgrab.services.stream_merger import END_OF_STREAM, StreamMerger
from tvgrab.utils.file_operations import worker_output_path


class EndOfStreamTests(unittest.TestCase):
    def test_sentinel_sorts_after_every_key(self) -> None:
        key = ("99999.zzz", base_time() + timedelta(days=3650))
        self.assertTrue(key < END_OF_STREAM)
        self.assertTrue(END_OF_STREAM > key)
        self.assertFalse(END_OF_STREAM < key)
        self.assertFalse(END_OF_STREAM < END_OF_STREAM)
        self.assertEqual(END_OF_STREAM, END_OF_STREAM)
        self.assertNotEqual(END_OF_STREAM, key)


class StreamMergerTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.work_dir = Path(self._tmp.name)
        self.merger = StreamMerger(self.work_dir)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _write(self, index, records):
        write_worker_file(worker_output_path(self.work_dir, index), records)

    def test_merge_is_ordered_and_complete(self) -> None:
        start = base_time()
        hour = timedelta(hours=1)
        files = [
            [make_record("00002.test", start + hour * n, f"a{n}") for n in (0, 3, 6)]
            + [make_record("00005.test", start + hour * n, f"d{n}") for n in (1, 2)],
            [make_record("00002.test", start + hour * n, f"b{n}") for n in (1, 4)]
            + [make_record("00009.test", start, "e0")],
            [make_record("00002.test", start + hour * n, f"c{n}") for n in (2, 5)]
            + [make_record("00005.test", start + hour * n, f"d{n}") for n in (0, 3)],
        ]
        for index, records in enumerate(files):
            self._write(index, records)

        merged = list(self.merger.merge(len(files)))
        keys = [record.sort_key for record in merged]

        self.assertEqual(keys, sorted(keys))
        self.assertEqual(len(merged), sum(len(records) for records in files))
        self.assertEqual(
            sorted(record.title for record in merged),
            sorted(record.title for records in files for record in records),
        )
        self.assertEqual([record.title for record in merged[:7]], ["a0", "b1", "c2", "a3", "b4", "c5", "a6"])

    def test_all_empty_files_yield_nothing(self) -> None:
        for index in range(3):
            self._write(index, [])
        self.assertEqual(list(self.merger.merge(3)), [])

    def test_zero_files_yield_nothing(self) -> None:
        self.assertEqual(list(self.merger.merge(0)), [])

    def test_missing_file_counts_as_empty(self) -> None:
        self._write(0, [make_record("00002.test", base_time(), "only")])
        merged = list(self.merger.merge(2))
        self.assertEqual([record.title for record in merged], ["only"])
        self.assertEqual(self.merger.warnings, 1)

    def test_equal_keys_favour_lower_worker_index(self) -> None:
        start = base_time()
        self._write(0, [make_record("00002.test", start, "from-0")])
        self._write(1, [make_record("00002.test", start, "from-1")])
        self._write(2, [make_record("00002.test", start, "from-2")])

        # Worker 1 must still beat worker 2 even when worker 0 is exhausted first
        self.assertEqual([record.title for record in self.merger.merge(3)], ["from-0", "from-1", "from-2"])

    def test_keys_compare_as_absolute_times(self) -> None:
        start = base_time()
        later_in_other_offset = (start + timedelta(minutes=30)).astimezone(timezone(timedelta(hours=-7)))
        self._write(0, [make_record("00002.test", later_in_other_offset, "second")])
        self._write(1, [make_record("00002.test", start, "first")])
        self.assertEqual([record.title for record in self.merger.merge(2)], ["first", "second"])

    def test_corrupt_lines_are_skipped(self) -> None:
        path = worker_output_path(self.work_dir, 0)
        write_worker_file(path, [make_record("00002.test", base_time(), "good")])
        with open(path, "a", encoding="utf-8") as f:
            f.write("{not json\n")
        self.assertEqual([record.title for record in self.merger.merge(1)], ["good"])
        self.assertEqual(self.merger.warnings, 1)

    def test_merge_is_lazy(self) -> None:
        start = base_time()
        self._write(0, [make_record("00002.test", start + timedelta(hours=n), f"p{n}") for n in range(3)])
        stream = self.merger.merge(1)
        self.assertEqual(next(stream).title, "p0")
        stream.close()


if __name__ == "__main__":
    unittest.main()
