import unittest
import sys
import os

os.environ['FLASK_ENV'] = 'testing'
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from tests.base import SchoolGridTestCase
from schoolgrid import db
from schoolgrid.errors import ValidationError, RangeError, NotFoundError, ConflictError, TeacherConflictError
from schoolgrid.models import TimetableSlot, ParentLink
from schoolgrid.timetable import (
    create_grid, create_grid_by_section_name, check_availability, assign_slot, clear_slot,
    plan_resize, resize_grid, delete_grid, grid_for_section, find_section_by_name,
    timetables_for_user, validate_dimensions,
)


class TimetableGridTests(SchoolGridTestCase):

    def setUp(self):
        super().setUp()
        self.admin = self.make_user('admin', 'admin')
        self.teacher = self.make_user('tina', 'teacher')
        self.other_teacher = self.make_user('omar', 'teacher')
        self.section_x = self.make_section('Grade 5-A', 'G5A', self.teacher, creator=self.admin)
        self.section_y = self.make_section('Grade 5-B', 'G5B', self.other_teacher, creator=self.admin)
        self.math_x = self.make_course('Mathematics', self.section_x, [self.teacher], code='G5A-MATH')
        self.math_y = self.make_course('Mathematics', self.section_y, [self.teacher], code='G5B-MATH')
        self.hist_x = self.make_course('History', self.section_x, [self.other_teacher], code='G5A-HIST')

    def test_dimensions_outside_bounds_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            create_grid(self.section_x.id, 8, 8, self.school.id)
        self.assertIn('Days must be between 1 and 7', ctx.exception.message)
        with self.assertRaises(ValidationError) as ctx:
            create_grid(self.section_x.id, 5, 0, self.school.id)
        self.assertIn('Periods per day must be between 1 and 12', ctx.exception.message)
        self.assertIsNone(grid_for_section(self.section_x.id))

    def test_dimension_errors_are_combined(self):
        with self.assertRaises(ValidationError) as ctx:
            validate_dimensions(0, 13)
        self.assertEqual(ctx.exception.message,
                         'Days must be between 1 and 7, Periods per day must be between 1 and 12')

    def test_dimensions_accept_numeric_strings(self):
        self.assertEqual(validate_dimensions('5', '8'), (5, 8))

    def test_create_grid_for_unknown_section(self):
        with self.assertRaises(NotFoundError):
            create_grid(9999, 5, 6, self.school.id)

    def test_create_grid_requires_section_id(self):
        with self.assertRaises(ValidationError) as ctx:
            create_grid(None, 5, 5, self.school.id)
        self.assertEqual(ctx.exception.status_code, 400)
        self.assertEqual(ctx.exception.message, 'sectionId is required')

    def test_caller_without_school_owns_no_sections(self):
        with self.assertRaises(NotFoundError):
            create_grid(self.section_x.id, 5, 8, None)
        self.assertIsNone(grid_for_section(self.section_x.id))

    def test_one_grid_per_section(self):
        first = create_grid(self.section_x.id, 5, 8, self.school.id)
        with self.assertRaises(ConflictError) as ctx:
            create_grid(self.section_x.id, 3, 3, self.school.id)
        self.assertEqual(ctx.exception.payload['id'], first.id)
        self.assertEqual(grid_for_section(self.section_x.id).days, 5)

    def test_create_grid_from_other_school_is_not_found(self):
        with self.assertRaises(NotFoundError):
            create_grid(self.section_x.id, 5, 8, school_id=self.school.id + 100)

    def test_find_section_by_name_variants(self):
        for spelling in ('Grade 5-A', 'grade 5-a', 'grade-5-a', 'Grade 5 A'):
            section = find_section_by_name(self.school.id, spelling)
            self.assertIsNotNone(section, spelling)
            self.assertEqual(section.id, self.section_x.id)
        self.assertIsNone(find_section_by_name(self.school.id, 'Grade 9'))

    def test_create_grid_by_section_name(self):
        grid = create_grid_by_section_name(self.school.id, 'grade-5-b', 4, 4)
        self.assertEqual(grid.section_id, self.section_y.id)
        with self.assertRaises(NotFoundError):
            create_grid_by_section_name(self.school.id, 'Nowhere', 4, 4)

    def test_assign_overwrites_position(self):
        grid = create_grid(self.section_x.id, 5, 8, self.school.id)
        assign_slot(grid.id, 1, 1, self.math_x.id, self.teacher.id)
        assign_slot(grid.id, 1, 1, self.hist_x.id, self.other_teacher.id)
        slots = TimetableSlot.query.filter_by(timetable_id=grid.id, day_index=1, period_index=1).all()
        self.assertEqual(len(slots), 1)
        self.assertEqual(slots[0].course_id, self.hist_x.id)
        self.assertEqual(slots[0].teacher_id, self.other_teacher.id)

    def test_slot_count_never_exceeds_grid_size(self):
        grid = create_grid(self.section_x.id, 2, 2, self.school.id)
        for _ in range(2):
            for d in range(2):
                for p in range(2):
                    assign_slot(grid.id, d, p, self.math_x.id, self.teacher.id)
        self.assertEqual(len(grid.slots), 4)

    def test_assign_out_of_range(self):
        grid = create_grid(self.section_x.id, 5, 8, self.school.id)
        with self.assertRaises(RangeError):
            assign_slot(grid.id, 5, 0, self.math_x.id, self.teacher.id)
        with self.assertRaises(RangeError):
            assign_slot(grid.id, 0, 8, self.math_x.id, self.teacher.id)
        with self.assertRaises(RangeError):
            assign_slot(grid.id, -1, 0, self.math_x.id, self.teacher.id)
        self.assertEqual(len(grid.slots), 0)

    def test_assign_requires_real_course_and_teacher(self):
        grid = create_grid(self.section_x.id, 5, 8, self.school.id)
        with self.assertRaises(NotFoundError):
            assign_slot(grid.id, 0, 0, 9999, self.teacher.id)
        with self.assertRaises(NotFoundError):
            assign_slot(grid.id, 0, 0, self.math_x.id, self.admin.id)
        with self.assertRaises(ValidationError):
            assign_slot(grid.id, 0, 0, None, self.teacher.id)

    def test_availability_across_grids(self):
        grid_a = create_grid(self.section_x.id, 5, 8, self.school.id)
        grid_b = create_grid(self.section_y.id, 5, 8, self.school.id)
        assign_slot(grid_a.id, 0, 2, self.math_x.id, self.teacher.id)

        result = check_availability(self.teacher.id, 0, 2)
        self.assertFalse(result['available'])
        self.assertEqual(result['conflict'], {
            'sectionId': self.section_x.id,
            'gridId': grid_a.id,
            'dayIndex': 0,
            'periodIndex': 2,
        })
        self.assertEqual(check_availability(self.teacher.id, 0, 2, exclude_grid_id=grid_a.id), {'available': True})
        self.assertFalse(check_availability(self.teacher.id, 0, 2, exclude_grid_id=grid_b.id)['available'])
        self.assertTrue(check_availability(self.teacher.id, 0, 3)['available'])
        self.assertTrue(check_availability(self.other_teacher.id, 0, 2)['available'])

    def test_double_booking_rejected(self):
        grid_a = create_grid(self.section_x.id, 5, 8, self.school.id)
        grid_b = create_grid(self.section_y.id, 5, 8, self.school.id)
        assign_slot(grid_a.id, 0, 2, self.math_x.id, self.teacher.id)
        with self.assertRaises(TeacherConflictError) as ctx:
            assign_slot(grid_b.id, 0, 2, self.math_y.id, self.teacher.id)
        self.assertEqual(ctx.exception.status_code, 409)
        self.assertEqual(ctx.exception.payload, {
            'teacherId': self.teacher.id,
            'section': self.section_x.id,
            'dayIndex': 0,
            'periodIndex': 2,
        })
        self.assertIsNone(grid_b.slot_at(0, 2))

    def test_reassigning_own_slot_is_not_a_conflict(self):
        grid_a = create_grid(self.section_x.id, 5, 8, self.school.id)
        assign_slot(grid_a.id, 0, 2, self.math_x.id, self.teacher.id)
        assign_slot(grid_a.id, 0, 2, self.math_x.id, self.teacher.id)
        self.assertEqual(len(grid_a.slots), 1)

    def test_clear_slot(self):
        grid = create_grid(self.section_x.id, 5, 8, self.school.id)
        assign_slot(grid.id, 2, 3, self.math_x.id, self.teacher.id)
        clear_slot(grid.id, 2, 3)
        self.assertIsNone(grid.slot_at(2, 3))
        # Clearing an empty position is a no-op
        clear_slot(grid.id, 2, 3)
        self.assertTrue(check_availability(self.teacher.id, 2, 3)['available'])

    def test_plan_resize_does_not_mutate(self):
        slots = [TimetableSlot(day_index=d, period_index=p, course_id=1, teacher_id=1)
                 for d, p in [(0, 0), (1, 5), (4, 1), (2, 2)]]
        kept, removed = plan_resize(slots, 3, 3)
        self.assertEqual([s.position for s in kept], [(0, 0), (2, 2)])
        self.assertEqual([s.position for s in removed], [(1, 5), (4, 1)])
        self.assertEqual(len(slots), 4)

    def test_resize_keeps_in_bounds_slots(self):
        grid = create_grid(self.section_x.id, 5, 8, self.school.id)
        assign_slot(grid.id, 0, 0, self.math_x.id, self.teacher.id)
        assign_slot(grid.id, 2, 1, self.hist_x.id, self.other_teacher.id)
        assign_slot(grid.id, 4, 1, self.math_x.id, self.teacher.id)
        assign_slot(grid.id, 1, 7, self.math_x.id, self.teacher.id)

        grid, removed = resize_grid(grid.id, 3, 6)
        self.assertEqual((grid.days, grid.periods_per_day), (3, 6))
        self.assertEqual(sorted(s.position for s in grid.slots), [(0, 0), (2, 1)])
        self.assertEqual(sorted((r['day_index'], r['period_index']) for r in removed), [(1, 7), (4, 1)])
        kept = grid.slot_at(2, 1)
        self.assertEqual((kept.course_id, kept.teacher_id), (self.hist_x.id, self.other_teacher.id))
        self.assertEqual(TimetableSlot.query.filter_by(timetable_id=grid.id).count(), 2)
        # The removed positions no longer block the teacher
        self.assertTrue(check_availability(self.teacher.id, 4, 1)['available'])

    def test_resize_rejects_bad_dimensions(self):
        grid = create_grid(self.section_x.id, 5, 8, self.school.id)
        assign_slot(grid.id, 4, 7, self.math_x.id, self.teacher.id)
        with self.assertRaises(ValidationError):
            resize_grid(grid.id, 0, 8)
        self.assertEqual(len(grid.slots), 1)

    def test_delete_grid_removes_slots(self):
        grid = create_grid(self.section_x.id, 5, 8, self.school.id)
        assign_slot(grid.id, 0, 2, self.math_x.id, self.teacher.id)
        grid_id = grid.id
        delete_grid(grid_id)
        self.assertEqual(TimetableSlot.query.filter_by(timetable_id=grid_id).count(), 0)
        self.assertTrue(check_availability(self.teacher.id, 0, 2)['available'])


class TimetableVisibilityTests(SchoolGridTestCase):

    def setUp(self):
        super().setUp()
        self.admin = self.make_user('admin', 'admin')
        self.teacher = self.make_user('tina', 'teacher')
        self.other_teacher = self.make_user('omar', 'teacher')
        self.student = self.make_user('sam', 'student')
        self.parent = self.make_user('pat', 'parent')
        self.section_x = self.make_section('Grade 5-A', 'G5A', self.teacher, creator=self.admin)
        self.section_y = self.make_section('Grade 5-B', 'G5B', self.other_teacher, creator=self.admin)
        self.section_x.add_student(self.student)
        db.session.add(ParentLink(parent_id=self.parent.id, student_id=self.student.id))
        db.session.commit()
        course_x = self.make_course('Mathematics', self.section_x, [self.teacher], code='G5A-MATH')
        course_y = self.make_course('History', self.section_y, [self.other_teacher], code='G5B-HIST')
        self.grid_x = create_grid(self.section_x.id, 5, 6, self.school.id)
        self.grid_y = create_grid(self.section_y.id, 5, 6, self.school.id)
        assign_slot(self.grid_x.id, 0, 0, course_x.id, self.teacher.id)
        assign_slot(self.grid_y.id, 0, 0, course_y.id, self.other_teacher.id)

    def test_student_affairs_sees_every_grid(self):
        self.grant(self.teacher, 'student_affairs', self.admin)
        self.assertEqual({g.id for g in timetables_for_user(self.teacher)}, {self.grid_x.id, self.grid_y.id})
        self.assertEqual(len(timetables_for_user(self.admin)), 2)

    def test_teacher_sees_grids_they_teach_in(self):
        self.assertEqual([g.id for g in timetables_for_user(self.teacher)], [self.grid_x.id])
        self.assertEqual([g.id for g in timetables_for_user(self.other_teacher)], [self.grid_y.id])

    def test_student_and_parent_see_the_student_section(self):
        self.assertEqual([g.id for g in timetables_for_user(self.student)], [self.grid_x.id])
        self.assertEqual([g.id for g in timetables_for_user(self.parent)], [self.grid_x.id])

    def test_unlinked_parent_sees_nothing(self):
        stranger = self.make_user('quinn', 'parent')
        self.assertEqual(timetables_for_user(stranger), [])


if __name__ == '__main__':
    unittest.main()
