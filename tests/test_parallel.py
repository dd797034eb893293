import threading
import unittest

from crudrepo.utils import parallel
from crudrepo.utils.parallel import Decision


class ChunkTest(unittest.TestCase):
    def test_chunk(self):
        self.assertEqual(parallel.chunk([1, 2, 3, 4, 5], 2), [[1, 2], [3, 4], [5]])
        self.assertEqual(parallel.chunk([], 3), [])

    def test_chunk_invalid_size(self):
        with self.assertRaises(ValueError):
            parallel.chunk([1], 0)


class RunParallelTest(unittest.TestCase):
    def test_results_keep_submission_order(self):
        results = parallel.run_parallel(
            lambda value: value * 2, [dict(value=i) for i in range(10)], max_workers=4
        )

        self.assertEqual(results, [i * 2 for i in range(10)])

    def test_failure_does_not_stop_other_calls(self):
        done = []

        def work(value):
            if value == 1:
                raise ValueError("group failed")
            done.append(value)
            return value

        with self.assertRaises(ValueError):
            parallel.run_parallel(work, [dict(value=i) for i in range(4)])

        self.assertEqual(sorted(done), [0, 2, 3])

    def test_no_work(self):
        self.assertEqual(parallel.run_parallel(lambda: None, []), [])


class FanOutTest(unittest.TestCase):
    page = [{"id": str(i)} for i in range(4)]

    def test_consumes_every_entity(self):
        seen = []
        stop = parallel.fan_out(lambda entity: seen.append(entity["id"]))(self.page)

        self.assertFalse(stop)
        self.assertEqual(sorted(seen), ["0", "1", "2", "3"])

    def test_entities_run_concurrently(self):
        # every consumer waits for all the others to have started
        barrier = threading.Barrier(len(self.page), timeout=5)
        stop = parallel.fan_out(lambda entity: barrier.wait() and False)(self.page)

        self.assertFalse(stop)

    def test_any_stop_stops_page(self):
        seen = []

        def consume(entity):
            seen.append(entity["id"])
            return entity["id"] == "2"

        self.assertTrue(parallel.fan_out(consume)(self.page))
        self.assertEqual(len(seen), 4)

    def test_error_without_handler(self):
        def consume(entity):
            if entity["id"] == "1":
                raise KeyError(entity["id"])

        with self.assertRaises(KeyError):
            parallel.fan_out(consume)(self.page)

    def test_handled_error_continues(self):
        handled = []

        def consume(entity):
            raise ValueError(entity["id"])

        def handle(error, entity):
            handled.append(entity["id"])
            return Decision.CONTINUE

        self.assertFalse(parallel.fan_out(consume, handle)(self.page))
        self.assertEqual(sorted(handled), ["0", "1", "2", "3"])

    def test_handled_error_with_other_stop(self):
        def consume(entity):
            if entity["id"] == "0":
                raise ValueError("boom")
            return entity["id"] == "3"

        self.assertTrue(parallel.fan_out(consume, lambda error, entity: None)(self.page))

    def test_handler_abort(self):
        def consume(entity):
            raise ValueError(entity["id"])

        with self.assertRaises(ValueError):
            parallel.fan_out(consume, lambda error, entity: Decision.ABORT)(self.page)

    def test_max_workers(self):
        lock = threading.Lock()
        running = {"now": 0, "max": 0}

        def consume(entity):
            with lock:
                running["now"] += 1
                running["max"] = max(running["max"], running["now"])
            with lock:
                running["now"] -= 1

        parallel.fan_out(consume, max_workers=1)(self.page)

        self.assertEqual(running["max"], 1)
