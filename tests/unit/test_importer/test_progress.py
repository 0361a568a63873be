# SPDX-License-Identifier: LGPL-3.0-or-later
import unittest

from volimporter.importer.progress import (
    LoggingProgressReporter,
    NoopProgressReporter,
    RichProgressReporter,
    create_progress_reporter,
)

from fakes.fake_logger import FakeLogger


class TestCreateProgressReporter(unittest.TestCase):
    def test_disabled(self):
        self.assertIsInstance(create_progress_reporter(False, FakeLogger()), NoopProgressReporter)

    def test_tty(self):
        self.assertIsInstance(create_progress_reporter(True, FakeLogger(), tty=True), RichProgressReporter)

    def test_not_a_tty(self):
        self.assertIsInstance(create_progress_reporter(True, FakeLogger(), tty=False), LoggingProgressReporter)


class TestLoggingProgressReporter(unittest.TestCase):
    def test_logs_every_interval(self):
        lg = FakeLogger()
        r = LoggingProgressReporter(lg, log_every_bytes=100)
        r.start("http://images/disk.img", 400)
        for _ in range(8):
            r.update(50)
        r.finish()
        progress = [m for m in lg.messages("info") if m.startswith("Import progress")]
        self.assertEqual(len(progress), 4)
        self.assertIn("100.0%", progress[-1])
        self.assertEqual(r.done, 400)

    def test_unknown_total(self):
        lg = FakeLogger()
        r = LoggingProgressReporter(lg, log_every_bytes=10)
        r.start("upload")
        r.update(10)
        self.assertTrue(any(m.startswith("Import progress: ") and "%" not in m for m in lg.messages("info")))
