import unittest
from datetime import datetime
from types import SimpleNamespace

from equipment_loans.schemas.actors import Actor
from equipment_loans.services.notification_emitter import (
    NOTIFICATION_TYPES,
    build_due_notification,
    build_notifications,
    supervisor_recipients,
)


def _loan(teacher_id="teacher-1", condition=None):
    return SimpleNamespace(
        LoanID="loan-1",
        UserID="student-1",
        TeacherID=teacher_id,
        EquipmentConditionOnReturn=condition,
        PreferredEndDate=datetime(2026, 3, 12, 17, 0),
    )


STUDENT = Actor(id="student-1", role="student", teacherId="teacher-1")
ORPHAN = Actor(id="student-1", role="student")
TEACHER = Actor(id="teacher-1", role="teacher")
ADMIN = Actor(id="admin-1", role="admin")


class NotificationEmitterTests(unittest.TestCase):
    def test_request_goes_to_supervising_teacher(self):
        records = build_notifications("create", _loan(), STUDENT, admin_ids=["admin-1"], equipment_name="Projector")
        self.assertEqual([(r.userId, r.type) for r in records], [("teacher-1", "pending")])
        self.assertIn('"Projector"', records[0].message)

    def test_request_without_teacher_fans_out_to_admins(self):
        records = build_notifications("create", _loan(teacher_id=None), ORPHAN, admin_ids=["admin-2", "admin-1", "admin-2"])
        self.assertEqual([r.userId for r in records], ["admin-1", "admin-2"])
        self.assertTrue(all(r.relatedLoanId == "loan-1" for r in records))

    def test_same_input_same_records(self):
        first = build_notifications("reject", _loan(), TEACHER, reason="Broken lamp")
        second = build_notifications("reject", _loan(), TEACHER, reason="Broken lamp")
        self.assertEqual(first, second)
        self.assertIn("Reason: Broken lamp", first[0].message)

    def test_return_notice_depends_on_processor_role(self):
        by_teacher = build_notifications("processReturn", _loan(condition="good"), TEACHER)
        by_admin = build_notifications("processReturn", _loan(condition="good"), ADMIN)
        self.assertEqual([r.type for r in by_teacher], ["return_approved"])
        self.assertEqual([r.type for r in by_admin], ["return_processed"])

    def test_damaged_return_adds_a_second_notice(self):
        records = build_notifications("processReturn", _loan(condition="damaged"), ADMIN, damaged=True)
        self.assertEqual([r.type for r in records], ["return_processed", "damaged"])
        self.assertTrue(all(r.userId == "student-1" for r in records))

    def test_return_request_and_pickup(self):
        records = build_notifications("requestReturn", _loan(), STUDENT)
        self.assertEqual([(r.userId, r.type) for r in records], [("teacher-1", "return_request")])
        self.assertEqual(build_notifications("activate", _loan(), ADMIN), [])

    def test_unknown_kind_is_rejected(self):
        with self.assertRaises(ValueError):
            build_notifications("archive", _loan(), ADMIN)

    def test_due_notices(self):
        overdue = build_due_notification("overdue", _loan(), "Camera")
        self.assertEqual(overdue.type, "overdue")
        self.assertIn("2026-03-12", overdue.message)
        self.assertEqual(build_due_notification("reminder", _loan()).userId, "student-1")
        self.assertTrue({"overdue", "reminder"} <= NOTIFICATION_TYPES)

    def test_supervisor_recipients_prefers_teacher(self):
        self.assertEqual(supervisor_recipients(_loan(), ["admin-1"]), ["teacher-1"])
        self.assertEqual(supervisor_recipients(_loan(teacher_id=None), ["admin-1"], "teacher-9"), ["teacher-9"])
        self.assertEqual(supervisor_recipients(_loan(teacher_id=None), []), [])


if __name__ == "__main__":
    unittest.main()
