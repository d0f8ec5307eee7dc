import os
import shutil
import tempfile
import unittest

from sqlalchemy import create_engine

from equipment_loans.db.base import Base
from equipment_loans.db.store import SqlAlchemyStore
from equipment_loans.models.loan_models import Equipment, Loan, Notification
from equipment_loans.services.errors import Conflict
from equipment_loans.services.loan_state_machine import approve_loan, create_loan
from equipment_loans.services.query_service import ledger_discrepancies
from equipment_loans.tests.helpers import NOW, add_equipment, add_user, loan_request, session_factory


class ConcurrentApprovalTests(unittest.TestCase):
    """Two sessions on one SQLite file stand in for two API workers."""

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp(prefix="loans-")
        url = f"sqlite+pysqlite:///{os.path.join(self.tmpdir, 'loans.db')}"
        self.engine_a = create_engine(url, future=True)
        self.engine_b = create_engine(url, future=True)
        Base.metadata.create_all(self.engine_a)

        self.db_a = session_factory(self.engine_a)()
        self.db_b = session_factory(self.engine_b)()
        self.store_a = SqlAlchemyStore(self.db_a)
        self.store_b = SqlAlchemyStore(self.db_b)

        self.admin = add_user(self.db_a, "admin-1", "admin")
        self.teacher = add_user(self.db_a, "teacher-1", "teacher")
        self.student = add_user(self.db_a, "student-1", "student", teacher_id="teacher-1")
        add_equipment(self.db_a, total=1)

    def tearDown(self):
        self.db_a.close()
        self.db_b.close()
        self.engine_a.dispose()
        self.engine_b.dispose()
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_stale_reader_loses_the_approval_race(self):
        loan = create_loan(self.store_a, self.student, loan_request(), now=NOW)
        stale = self.db_b.get(Loan, loan.LoanID)
        self.assertEqual(stale.Status, "pending")

        approve_loan(self.store_a, self.teacher, loan.LoanID, now=NOW)
        with self.assertRaises(Conflict):
            approve_loan(self.store_b, self.admin, loan.LoanID, now=NOW)

        self.db_a.expire_all()
        self.assertEqual(self.db_a.get(Equipment, "eq-1").AvailableQuantity, 0)
        self.assertEqual(self.db_a.get(Loan, loan.LoanID).ApprovedBy, "teacher-1")
        approved = self.store_a.query("notifications", Notification.Type == "approved")
        self.assertEqual(len(approved), 1)
        self.assertEqual(ledger_discrepancies(self.store_a), [])

    def test_last_unit_goes_to_one_of_two_pending_requests(self):
        other = add_user(self.db_a, "student-2", "student", teacher_id="teacher-1")
        first = create_loan(self.store_a, self.student, loan_request(), now=NOW)
        second = create_loan(self.store_a, other, loan_request(), now=NOW)

        approve_loan(self.store_a, self.teacher, first.LoanID, now=NOW)
        with self.assertRaises(Conflict):
            approve_loan(self.store_b, self.admin, second.LoanID, now=NOW)

        self.db_a.expire_all()
        self.assertEqual(self.db_a.get(Loan, second.LoanID).Status, "pending")
        self.assertEqual(self.db_a.get(Equipment, "eq-1").AvailableQuantity, 0)
        self.assertEqual(ledger_discrepancies(self.store_a), [])


if __name__ == "__main__":
    unittest.main()
