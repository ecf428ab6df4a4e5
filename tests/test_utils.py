import unittest
import sys
import os
from datetime import datetime

os.environ['FLASK_ENV'] = 'testing'
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from schoolgrid.clock import FixedClock, SystemClock, current_clock
from schoolgrid.errors import ValidationError, TeacherConflictError
from schoolgrid.utils import as_int, require_int, parse_datetime


class UtilsTests(unittest.TestCase):

    def test_as_int(self):
        self.assertEqual(as_int('7'), 7)
        self.assertEqual(as_int(3.0), 3)
        self.assertIsNone(as_int(3.5))
        self.assertIsNone(as_int(True))
        self.assertIsNone(as_int('x'))
        with self.assertRaises(ValidationError):
            require_int(None, 'dayIndex')

    def test_parse_datetime_normalizes_to_naive_utc(self):
        self.assertEqual(parse_datetime('2025-03-03T10:00:00+01:00', 'when'), datetime(2025, 3, 3, 9, 0))
        self.assertEqual(parse_datetime('2025-03-03T09:00:00Z', 'when'), datetime(2025, 3, 3, 9, 0))
        self.assertIsNone(parse_datetime('', 'when'))
        with self.assertRaises(ValidationError):
            parse_datetime('next tuesday', 'when')

    def test_fixed_clock(self):
        clock = FixedClock(datetime(2025, 1, 1))
        clock.advance(days=1, hours=2)
        self.assertEqual(clock.now(), datetime(2025, 1, 2, 2))

        class App:
            config = {}
        self.assertIsInstance(current_clock(App), SystemClock)
        App.config['CLOCK'] = clock
        self.assertIs(current_clock(App), clock)

    def test_teacher_conflict_body(self):
        err = TeacherConflictError(4, 2, 0, 2)
        self.assertEqual(err.status_code, 409)
        self.assertEqual(err.to_dict(), {
            'success': False,
            'msg': 'Teacher already assigned to another section at this time',
            'data': {'teacherId': 4, 'section': 2, 'dayIndex': 0, 'periodIndex': 2},
        })


if __name__ == '__main__':
    unittest.main()
