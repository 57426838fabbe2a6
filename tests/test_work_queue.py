import os
import tempfile
import threading
import unittest
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from unittest import mock

from tests.helpers import fork_context
from tvgrab.services.fetch_types import TaskRecord
from tvgrab.services.work_queue import MalformedTaskRecord, WorkQueue


def _claim_all(queue, handle, out_path):
    with open(out_path, "w", encoding="utf-8") as out:
        while True:
            task = queue.claim_next(handle)
            if task is None:
                break
            out.write(f"{task.channel_id} {task.programme_id}\n")
    handle.close()


def _tasks(count):
    return [TaskRecord(channel_id=f"{n % 7:05d}.test", programme_id=f"EP{n:06d}") for n in range(count)]


class WorkQueueTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.work_dir = Path(self._tmp.name)
        self.queue = WorkQueue(self.work_dir / "tasks.queue", mp_context=fork_context())

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_records_have_constant_width(self) -> None:
        tasks = [
            TaskRecord(channel_id="00002.test", programme_id="1"),
            TaskRecord(channel_id="00702.test", programme_id="EP0123456789ABCDEF"),
        ]
        self.assertEqual(self.queue.populate(tasks), 2)
        self.assertEqual(os.path.getsize(self.queue.path), 2 * self.queue.record_width)
        self.assertEqual({len(self.queue.encode(task)) for task in tasks}, {self.queue.record_width})

    def test_unencodable_tasks_are_rejected_not_queued(self) -> None:
        tasks = [
            TaskRecord(channel_id="00002.test", programme_id="1"),
            TaskRecord(channel_id="00002.test", programme_id="X" * 40),
            TaskRecord(channel_id="00002.test", programme_id="has space"),
            TaskRecord(channel_id="00004.test", programme_id="2"),
        ]
        self.assertEqual(self.queue.populate(tasks), 2)
        self.assertEqual(self.queue.rejected, 2)
        self.assertEqual(os.path.getsize(self.queue.path), 2 * self.queue.record_width)

    def test_sequential_claims_return_every_task_then_exhaust(self) -> None:
        tasks = _tasks(5)
        self.queue.populate(tasks)
        handle = self.queue.open_for_concurrent_read()

        claimed = []
        while (task := self.queue.claim_next(handle)) is not None:
            claimed.append(task)
        handle.close()

        self.assertEqual(claimed, tasks)
        self.assertIsNone(self.queue.claim_next(handle))

    def test_empty_queue_is_exhausted_immediately(self) -> None:
        self.assertEqual(self.queue.populate([]), 0)
        handle = self.queue.open_for_concurrent_read()
        self.assertIsNone(self.queue.claim_next(handle))
        handle.close()

    def test_oversized_or_blank_values_are_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self.queue.encode(TaskRecord(channel_id="x" * 40, programme_id="1"))
        with self.assertRaises(ValueError):
            self.queue.encode(TaskRecord(channel_id="00002.test", programme_id=""))
        with self.assertRaises(ValueError):
            self.queue.encode(TaskRecord(channel_id="00002.test", programme_id="has space"))

    def test_malformed_chunk_is_reported_and_skipped(self) -> None:
        good_first, good_last = _tasks(2)
        with open(self.queue.path, "wb") as f:
            f.write(self.queue.encode(good_first))
            f.write(b"#" * self.queue.record_width)
            f.write(self.queue.encode(good_last))
        handle = self.queue.open_for_concurrent_read()

        self.assertEqual(self.queue.claim_next(handle), good_first)
        with self.assertRaises(MalformedTaskRecord) as ctx:
            self.queue.claim_next(handle)
        self.assertEqual(ctx.exception.index, 1)
        self.assertEqual(self.queue.claim_next(handle), good_last)
        self.assertIsNone(self.queue.claim_next(handle))
        handle.close()

    def test_open_requires_populated_queue(self) -> None:
        with self.assertRaises(FileNotFoundError):
            self.queue.open_for_concurrent_read()

    def test_concurrent_processes_claim_each_task_exactly_once(self) -> None:
        tasks = _tasks(300)
        self.queue.populate(tasks)
        handle = self.queue.open_for_concurrent_read()
        ctx = fork_context()

        outputs = [self.work_dir / f"claimed-{i}.txt" for i in range(4)]
        processes = [
            ctx.Process(target=_claim_all, args=(self.queue, handle, str(path)))
            for path in outputs
        ]
        for process in processes:
            process.start()
        for process in processes:
            process.join()

        claimed = Counter()
        for path in outputs:
            for line in path.read_text(encoding="utf-8").splitlines():
                channel_id, programme_id = line.split()
                claimed[TaskRecord(channel_id=channel_id, programme_id=programme_id)] += 1

        self.assertEqual(claimed, Counter(tasks))

    def test_concurrent_threads_claim_each_task_exactly_once(self) -> None:
        tasks = _tasks(200)
        self.queue.populate(tasks)
        handle = self.queue.open_for_concurrent_read()

        def drain():
            claimed = []
            while (task := self.queue.claim_next(handle)) is not None:
                claimed.append(task)
            return claimed

        with ThreadPoolExecutor(max_workers=6) as pool:
            results = list(pool.map(lambda _: drain(), range(6)))
        handle.close()

        self.assertEqual(Counter(task for claimed in results for task in claimed), Counter(tasks))

    def test_threads_sharing_a_handle_open_one_descriptor(self) -> None:
        self.queue.populate(_tasks(4))
        handle = self.queue.open_for_concurrent_read()
        barrier = threading.Barrier(8)

        def first_fileno():
            barrier.wait()
            return handle.fileno()

        with mock.patch("tvgrab.services.work_queue.os.open", wraps=os.open) as opener:
            with ThreadPoolExecutor(max_workers=8) as pool:
                descriptors = set(pool.map(lambda _: first_fileno(), range(8)))
        handle.close()

        self.assertEqual(len(descriptors), 1)
        self.assertEqual(opener.call_count, 1)


if __name__ == "__main__":
    unittest.main()
