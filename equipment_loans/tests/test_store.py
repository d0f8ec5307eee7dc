import unittest

from equipment_loans.models.loan_models import Equipment, Loan
from equipment_loans.services.equipment_ledger import adjust_availability, set_condition
from equipment_loans.services.errors import Conflict, InvariantViolation, LoanValidationError, NotFound
from equipment_loans.tests.helpers import StoreTestMixin, add_equipment, add_loan, add_user


class SqlAlchemyStoreTests(StoreTestMixin, unittest.TestCase):
    def setUp(self):
        super().setUp()
        add_user(self.db, "student-1", "student")
        add_equipment(self.db, total=2)
        add_loan(self.db, "loan-1", "student-1", status="pending")

    def test_get_and_find(self):
        self.assertEqual(self.store.get("loans", "loan-1").Status, "pending")
        self.assertIsNone(self.store.find("loans", "missing"))
        self.assertIsNone(self.store.find("loans", None))
        with self.assertRaises(NotFound):
            self.store.get("equipment", "missing")
        with self.assertRaises(ValueError):
            self.store.get("widgets", "x")

    def test_put_with_expected_value_is_compare_and_swap(self):
        loan = self.store.put("loans", "loan-1", {"Status": "approved"}, expected={"Status": "pending"})
        self.assertEqual(loan.Status, "approved")
        with self.assertRaises(Conflict) as ctx:
            self.store.put("loans", "loan-1", {"Status": "approved"}, expected={"Status": "pending"})
        self.assertEqual(ctx.exception.field, "Status")
        with self.assertRaises(NotFound):
            self.store.put("loans", "missing", {"Status": "approved"})

    def test_atomic_rolls_back_every_write(self):
        with self.assertRaises(InvariantViolation):
            with self.store.atomic():
                self.store.put("loans", "loan-1", {"Status": "approved"}, expected={"Status": "pending"})
                adjust_availability(self.store, "eq-1", -1)
                adjust_availability(self.store, "eq-1", -1)
                adjust_availability(self.store, "eq-1", -1)
        self.assertEqual(self.db.get(Loan, "loan-1", populate_existing=True).Status, "pending")
        self.assertEqual(self.db.get(Equipment, "eq-1", populate_existing=True).AvailableQuantity, 2)

    def test_nested_atomic_commits_once(self):
        with self.store.atomic():
            with self.store.atomic():
                self.store.put("loans", "loan-1", {"Purpose": "lab"})
            self.assertTrue(self.db.in_transaction())
        self.assertEqual(self.db.get(Loan, "loan-1", populate_existing=True).Purpose, "lab")

    def test_counter_stays_within_total(self):
        with self.assertRaises(InvariantViolation):
            adjust_availability(self.store, "eq-1", 1)
        with self.assertRaises(NotFound):
            adjust_availability(self.store, "missing", -1)
        with self.assertRaises(ValueError):
            adjust_availability(self.store, "eq-1", -2)
        self.assertEqual(adjust_availability(self.store, "eq-1", -1).AvailableQuantity, 1)

    def test_set_condition_validates_grade(self):
        unit = set_condition(self.store, "eq-1", "excellent", damaged=False)
        self.assertEqual((unit.Condition, unit.Status), ("excellent", "available"))
        with self.assertRaises(LoanValidationError):
            set_condition(self.store, "eq-1", "shiny", damaged=False)

    def test_subscribers_see_committed_changes_only(self):
        seen = []
        unsubscribe = self.store.subscribe("loans", Loan.Status == "approved", seen.append)

        with self.assertRaises(Conflict):
            with self.store.atomic():
                self.store.put("loans", "loan-1", {"Status": "approved"})
                raise Conflict("abort")
        self.assertEqual(seen, [])

        with self.store.atomic():
            self.store.put("loans", "loan-1", {"Status": "approved"})
        self.assertEqual([[loan.LoanID for loan in batch] for batch in seen], [["loan-1"]])

        unsubscribe()
        with self.store.atomic():
            self.store.put("loans", "loan-1", {"Purpose": "again"})
        self.assertEqual(len(seen), 1)

    def test_failing_subscriber_is_logged(self):
        def boom(_rows):
            raise RuntimeError("listener down")

        self.store.subscribe("equipment", None, boom)
        with self.assertLogs("equipment_loans.store", level="ERROR"):
            with self.store.atomic():
                self.store.put("equipment", "eq-1", {"Location": "Room 4"})


if __name__ == "__main__":
    unittest.main()
