import unittest
from types import SimpleNamespace

from equipment_loans.schemas.actors import Actor
from equipment_loans.services.access_policy import can_transition, require_transition, supervises
from equipment_loans.services.errors import Forbidden, InvalidTransition


def _loan(user_id="student-1", teacher_id="teacher-1"):
    return SimpleNamespace(LoanID="loan-1", UserID=user_id, TeacherID=teacher_id)


ADMIN = Actor(id="admin-1", role="admin")
TEACHER = Actor(id="teacher-1", role="teacher")
OTHER_TEACHER = Actor(id="teacher-2", role="teacher")
STUDENT = Actor(id="student-1", role="student", teacherId="teacher-1")


class AccessPolicyTests(unittest.TestCase):
    def test_only_active_students_create(self):
        self.assertTrue(can_transition(STUDENT, None, "create"))
        self.assertFalse(can_transition(STUDENT.model_copy(update={"isActive": False}), None, "create"))
        self.assertFalse(can_transition(TEACHER, None, "create"))
        self.assertFalse(can_transition(ADMIN, None, "create"))

    def test_admin_may_supervise_any_loan(self):
        for action in ("approve", "reject", "activate", "processReturn"):
            self.assertTrue(can_transition(ADMIN, _loan(teacher_id=None), action))

    def test_teacher_supervises_through_loan_or_borrower(self):
        self.assertTrue(supervises(TEACHER, _loan()))
        borrower = SimpleNamespace(UserID="student-1", TeacherID="teacher-1")
        self.assertTrue(supervises(TEACHER, _loan(teacher_id=None), borrower))
        self.assertFalse(supervises(OTHER_TEACHER, _loan(), borrower))
        self.assertFalse(supervises(ADMIN, _loan()))

    def test_students_never_supervise(self):
        self.assertFalse(can_transition(STUDENT, _loan(), "approve"))
        self.assertFalse(can_transition(STUDENT, _loan(), "processReturn"))

    def test_only_the_borrower_requests_a_return(self):
        self.assertTrue(can_transition(STUDENT, _loan(), "requestReturn"))
        self.assertFalse(can_transition(ADMIN, _loan(), "requestReturn"))
        self.assertFalse(can_transition(TEACHER, _loan(), "requestReturn"))

    def test_unknown_action_is_invalid(self):
        with self.assertRaises(InvalidTransition):
            can_transition(ADMIN, _loan(), "archive")

    def test_require_transition_raises_forbidden(self):
        with self.assertLogs("equipment_loans.policy", level="WARNING"):
            with self.assertRaises(Forbidden) as ctx:
                require_transition(OTHER_TEACHER, _loan(), "approve")
        self.assertEqual(ctx.exception.entity_id, "loan-1")
        self.assertEqual(ctx.exception.to_dict()["kind"], "Forbidden")


if __name__ == "__main__":
    unittest.main()
