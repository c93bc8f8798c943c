from datetime import date
from decimal import Decimal
from types import SimpleNamespace

from django.test import SimpleTestCase
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from accounts.models import User
from hr.models import Advance, AdvanceSettlement, Fine, MainCategory, Payroll, Remark, Subcategory, WorkLog
from hr.payroll import (
    FIRST_HALF,
    MONTHLY,
    SECOND_HALF,
    allocate_deduction,
    calculate_log_salary,
    half_month_bounds,
    period_bounds,
)
from .status import AdvanceStatus, FineStatus, LogPaymentType, PaymentStatus, PaymentType, SettlementType


# ----------------------------
# Pagination helper
# ----------------------------

class PaginationMixin:
    """
    Works with paginated and non-paginated responses.
    """
    def results(self, res):
        return res.data["results"] if isinstance(res.data, dict) and "results" in res.data else res.data


def make_user(email, role=User.Role.EMPLOYEE, status_=User.Status.APPROVED, full_name=None):
    return User.objects.create_user(
        username=email,
        email=email,
        password="Pass12345!",
        full_name=full_name or email.split("@")[0],
        role=role,
        status=status_,
    )


def make_log(employee, sub, work_date, quantity="0", hours="0", **extra):
    return WorkLog.objects.create(
        employee=employee,
        subcategory=sub,
        work_date=work_date,
        quantity=Decimal(quantity),
        hours_worked=Decimal(hours),
        rate_at_time=sub.rate,
        payment_type_at_time=sub.payment_type,
        subcategory_name_at_time=sub.name,
        **extra,
    )


class HRTestMixin(PaginationMixin):
    def setUp(self):
        self.admin = make_user("admin@test.com", role=User.Role.ADMIN, full_name="Admin")
        self.employee = make_user("emp1@test.com", full_name="Aung")
        self.other = make_user("emp2@test.com", full_name="Zaw")

        self.main = MainCategory.objects.create(name="Sewing")
        self.piece = Subcategory.objects.create(
            name="Collar", main_category=self.main, payment_type=PaymentType.PER_PIECE, rate=Decimal("500")
        )
        self.day = Subcategory.objects.create(
            name="Day shift", main_category=self.main, payment_type=PaymentType.PER_DAY, rate=Decimal("10000")
        )
        self.hour = Subcategory.objects.create(
            name="Overtime", main_category=self.main, payment_type=PaymentType.PER_HOUR, rate=Decimal("2000")
        )

    def auth(self, user):
        self.client.force_authenticate(user=user)


# -----------------
# Payroll rules
# -----------------

class PayrollRuleTests(SimpleTestCase):
    def log(self, payment_type, rate, quantity=0, hours=0, override=None):
        return SimpleNamespace(
            payment_type_at_time=payment_type,
            rate_at_time=Decimal(rate),
            quantity=Decimal(quantity),
            hours_worked=Decimal(hours),
            edited_total_payment=None if override is None else Decimal(override),
            is_admin_edited=override is not None,
        )

    def test_per_piece_pays_quantity_times_rate(self):
        self.assertEqual(calculate_log_salary(self.log("perPiece", "500", quantity=12)), Decimal("6000"))

    def test_per_dozen_and_per_viss_pay_quantity_times_rate(self):
        self.assertEqual(calculate_log_salary(self.log("perDozen", "1200", quantity=3)), Decimal("3600"))
        self.assertEqual(calculate_log_salary(self.log("perViss", "800", quantity="2.5")), Decimal("2000"))

    def test_per_hour_pays_hours_times_rate(self):
        self.assertEqual(calculate_log_salary(self.log("perHour", "2000", hours="3.5")), Decimal("7000"))

    def test_per_day_ignores_quantity(self):
        self.assertEqual(calculate_log_salary(self.log("perDay", "10000", quantity=99)), Decimal("10000"))

    def test_admin_override_wins(self):
        self.assertEqual(calculate_log_salary(self.log("perPiece", "500", quantity=12, override="4500")), Decimal("4500"))

    def test_delivery_pays_nothing(self):
        self.assertEqual(calculate_log_salary(self.log("delivery", "0", quantity=40)), Decimal("0"))

    def test_semi_monthly_split(self):
        self.assertEqual(period_bounds(date(2025, 2, 15)), (date(2025, 2, 1), date(2025, 2, 15)))
        self.assertEqual(period_bounds(date(2025, 2, 16)), (date(2025, 2, 16), date(2025, 2, 28)))
        self.assertEqual(period_bounds(date(2024, 2, 29)), (date(2024, 2, 16), date(2024, 2, 29)))
        self.assertEqual(period_bounds(date(2025, 1, 1)), (date(2025, 1, 1), date(2025, 1, 15)))

    def test_monthly_and_half_bounds(self):
        self.assertEqual(period_bounds(date(2025, 4, 20), MONTHLY), (date(2025, 4, 1), date(2025, 4, 30)))
        self.assertEqual(half_month_bounds(2025, 4, FIRST_HALF), (date(2025, 4, 1), date(2025, 4, 15)))
        self.assertEqual(half_month_bounds(2025, 4, SECOND_HALF), (date(2025, 4, 16), date(2025, 4, 30)))
        with self.assertRaises(ValueError):
            half_month_bounds(2025, 4, "thirdHalf")

    def test_allocation_never_exceeds_balances(self):
        advances = [
            SimpleNamespace(amount=Decimal("3000"), paid_amount=Decimal("1000")),
            SimpleNamespace(amount=Decimal("500"), paid_amount=Decimal("500")),
            SimpleNamespace(amount=Decimal("4000"), paid_amount=Decimal("0")),
        ]
        for requested, expected in [("0", "0"), ("1500", "1500"), ("2000", "2000"), ("5000", "6000"), ("9999", "6000")]:
            allocation = allocate_deduction(advances, Decimal(requested))
            total = sum((amount for _, amount in allocation), Decimal("0"))
            self.assertEqual(total, min(Decimal(requested), Decimal(expected)))
            for advance, amount in allocation:
                self.assertLessEqual(amount, advance.amount - advance.paid_amount)

    def test_allocation_is_oldest_first(self):
        first = SimpleNamespace(amount=Decimal("1000"), paid_amount=Decimal("0"))
        second = SimpleNamespace(amount=Decimal("1000"), paid_amount=Decimal("0"))
        allocation = allocate_deduction([first, second], Decimal("1500"))
        self.assertEqual(allocation, [(first, Decimal("1000")), (second, Decimal("500"))])

    def test_negative_deduction_rejected(self):
        with self.assertRaises(ValueError):
            allocate_deduction([], Decimal("-1"))


# -----------------
# Categories
# -----------------

class CategoryAPITests(HRTestMixin, APITestCase):
    def test_employee_can_list_but_not_create(self):
        self.auth(self.employee)
        res = self.client.get(reverse("subcategory-list"))
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual(len(self.results(res)), 3)

        res = self.client.post(reverse("main-category-list"), {"name": "Cutting"}, format="json")
        self.assertEqual(res.status_code, status.HTTP_403_FORBIDDEN)

    def test_pending_employee_is_blocked(self):
        pending = make_user("pending@test.com", status_=User.Status.PENDING)
        self.auth(pending)
        res = self.client.get(reverse("subcategory-list"))
        self.assertEqual(res.status_code, status.HTTP_403_FORBIDDEN)

    def test_admin_creates_subcategory(self):
        self.auth(self.admin)
        payload = {"name": "Sleeve", "main_category": self.main.id, "payment_type": "perDozen", "rate": "1200.00"}
        res = self.client.post(reverse("subcategory-list"), payload, format="json")
        self.assertEqual(res.status_code, status.HTTP_201_CREATED)
        self.assertEqual(res.data["main_category_name"], "Sewing")

    def test_subcategory_rejects_unknown_payment_type(self):
        self.auth(self.admin)
        payload = {"name": "Sleeve", "main_category": self.main.id, "payment_type": "perWeek", "rate": "10"}
        res = self.client.post(reverse("subcategory-list"), payload, format="json")
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("payment_type", res.data)

    def test_deleting_main_category_removes_subcategories(self):
        self.auth(self.admin)
        res = self.client.delete(reverse("main-category-detail", args=[self.main.id]))
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertFalse(Subcategory.objects.exists())

    def test_reorder(self):
        self.auth(self.admin)
        payload = {"new_order": [{"id": self.hour.id, "order": 0}, {"id": self.piece.id, "order": 1}, {"id": self.day.id, "order": 2}]}
        res = self.client.put(reverse("subcategory-reorder"), payload, format="json")
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual(res.data["updated"], 3)

        names = [s.name for s in Subcategory.objects.all()]
        self.assertEqual(names, ["Overtime", "Collar", "Day shift"])

    def test_reorder_accepts_post(self):
        self.auth(self.admin)
        payload = {"new_order": [{"id": self.day.id, "order": 0}, {"id": self.hour.id, "order": 1}, {"id": self.piece.id, "order": 2}]}
        res = self.client.post(reverse("subcategory-reorder"), payload, format="json")
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual(res.data["updated"], 3)

        names = [s.name for s in Subcategory.objects.all()]
        self.assertEqual(names, ["Day shift", "Overtime", "Collar"])


# -----------------
# Work logs
# -----------------

class WorkLogAPITests(HRTestMixin, APITestCase):
    def test_create_freezes_rate_type_and_name(self):
        self.auth(self.employee)
        payload = {"subcategory": self.piece.id, "work_date": "2025-01-03", "quantity": "12"}
        res = self.client.post(reverse("worklog-create"), payload, format="json")
        self.assertEqual(res.status_code, status.HTTP_201_CREATED)
        self.assertEqual(Decimal(res.data["total_payment"]), Decimal("6000"))

        self.piece.rate = Decimal("900")
        self.piece.name = "Collar v2"
        self.piece.save()

        log = WorkLog.objects.get(id=res.data["id"])
        self.assertEqual(log.employee, self.employee)
        self.assertEqual(log.rate_at_time, Decimal("500"))
        self.assertEqual(log.subcategory_name_at_time, "Collar")
        self.assertEqual(calculate_log_salary(log), Decimal("6000"))

    def test_per_day_log_drops_quantity(self):
        self.auth(self.employee)
        payload = {"subcategory": self.day.id, "work_date": "2025-01-03", "quantity": "7", "hours_worked": "3"}
        res = self.client.post(reverse("worklog-create"), payload, format="json")
        self.assertEqual(res.status_code, status.HTTP_201_CREATED)
        log = WorkLog.objects.get(id=res.data["id"])
        self.assertEqual(log.quantity, Decimal("0"))
        self.assertEqual(log.hours_worked, Decimal("0"))
        self.assertEqual(Decimal(res.data["total_payment"]), Decimal("10000"))

    def test_per_hour_requires_hours(self):
        self.auth(self.employee)
        res = self.client.post(
            reverse("worklog-create"), {"subcategory": self.hour.id, "work_date": "2025-01-03"}, format="json"
        )
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("hours_worked", res.data)

    def test_delivery_log_has_no_pay(self):
        self.auth(self.employee)
        payload = {"main_category": self.main.id, "work_date": "2025-01-03", "quantity": "40", "description": "Van 2"}
        res = self.client.post(reverse("worklog-delivery"), payload, format="json")
        self.assertEqual(res.status_code, status.HTTP_201_CREATED)
        self.assertEqual(res.data["payment_type_at_time"], LogPaymentType.DELIVERY)
        self.assertEqual(res.data["payment_status"], PaymentStatus.NA)
        self.assertEqual(Decimal(res.data["total_payment"]), Decimal("0"))
        self.assertEqual(res.data["employee"], self.employee.id)

    def test_my_logs_filters(self):
        make_log(self.employee, self.piece, date(2025, 1, 3), quantity="1")
        make_log(self.employee, self.piece, date(2025, 2, 3), quantity="1")
        make_log(self.employee, self.piece, date(2024, 12, 31), quantity="1")
        make_log(self.other, self.piece, date(2025, 1, 3), quantity="1")

        self.auth(self.employee)
        url = reverse("worklog-mine")
        self.assertEqual(len(self.results(self.client.get(url))), 3)
        self.assertEqual(len(self.results(self.client.get(url, {"custom_month": "2025-01"}))), 1)
        self.assertEqual(len(self.results(self.client.get(url, {"selected_year": "2025"}))), 2)
        self.assertEqual(len(self.results(self.client.get(url, {"custom_date": "2024-12-31"}))), 1)
        res = self.client.get(url, {"start_date": "2024-12-31", "end_date": "2025-01-03"})
        self.assertEqual(len(self.results(res)), 2)

        # custom_date wins over the other filters
        res = self.client.get(url, {"custom_date": "2025-02-03", "selected_year": "2024"})
        self.assertEqual(len(self.results(res)), 1)

    def test_bad_filter_is_rejected(self):
        self.auth(self.employee)
        res = self.client.get(reverse("worklog-mine"), {"custom_month": "2025-13"})
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
        res = self.client.get(reverse("worklog-mine"), {"start_date": "2025-02-01", "end_date": "2025-01-01"})
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)

    def test_all_logs_admin_only(self):
        make_log(self.employee, self.piece, date(2025, 1, 3), quantity="1")
        make_log(self.other, self.piece, date(2025, 1, 3), quantity="1")

        self.auth(self.employee)
        self.assertEqual(self.client.get(reverse("worklog-all")).status_code, status.HTTP_403_FORBIDDEN)

        self.auth(self.admin)
        res = self.client.get(reverse("worklog-all"), {"employee": self.other.id})
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual(len(self.results(res)), 1)

    def test_current_salary(self):
        today = timezone.localdate()
        make_log(self.employee, self.piece, today, quantity="12")
        make_log(self.employee, self.day, today)

        self.auth(self.employee)
        res = self.client.get(reverse("worklog-current-salary"))
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual(Decimal(res.data["total_salary"]), Decimal("16000"))
        self.assertEqual(res.data["work_log_count"], 2)
        self.assertEqual((res.data["start_date"], res.data["end_date"]), period_bounds(today))

    def test_admin_override_and_clear(self):
        log = make_log(self.employee, self.piece, date(2025, 1, 3), quantity="12")
        url = reverse("worklog-detail", args=[log.id])

        self.auth(self.admin)
        res = self.client.patch(url, {"edited_total_payment": "4500.00"}, format="json")
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertTrue(res.data["is_admin_edited"])
        self.assertEqual(Decimal(res.data["total_payment"]), Decimal("4500"))

        res = self.client.patch(url, {"edited_total_payment": None}, format="json")
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertFalse(res.data["is_admin_edited"])
        self.assertEqual(Decimal(res.data["total_payment"]), Decimal("6000"))

    def test_employee_cannot_edit_and_cannot_see_others(self):
        own = make_log(self.employee, self.piece, date(2025, 1, 3), quantity="1")
        theirs = make_log(self.other, self.piece, date(2025, 1, 3), quantity="1")

        self.auth(self.employee)
        res = self.client.patch(reverse("worklog-detail", args=[own.id]), {"quantity": "5"}, format="json")
        self.assertEqual(res.status_code, status.HTTP_403_FORBIDDEN)
        res = self.client.get(reverse("worklog-detail", args=[theirs.id]))
        self.assertEqual(res.status_code, status.HTTP_404_NOT_FOUND)

    def test_owner_deletes_unpaid_but_not_paid(self):
        unpaid = make_log(self.employee, self.piece, date(2025, 1, 3), quantity="1")
        paid = make_log(self.employee, self.piece, date(2025, 1, 4), quantity="1", payment_status=PaymentStatus.PAID)

        self.auth(self.employee)
        res = self.client.delete(reverse("worklog-detail", args=[unpaid.id]))
        self.assertEqual(res.status_code, status.HTTP_204_NO_CONTENT)
        res = self.client.delete(reverse("worklog-detail", args=[paid.id]))
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)

        self.auth(self.admin)
        res = self.client.patch(reverse("worklog-detail", args=[paid.id]), {"quantity": "5"}, format="json")
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)


# -----------------
# Advances & fines
# -----------------

class AdvanceAPITests(HRTestMixin, APITestCase):
    def setUp(self):
        super().setUp()
        self.advance = Advance.objects.create(employee=self.employee, amount=Decimal("5000"), date=date(2025, 1, 1))

    def test_admin_creates_advance(self):
        self.auth(self.admin)
        payload = {"employee": self.other.id, "amount": "2000.00", "date": "2025-01-05", "description": "Rent"}
        res = self.client.post(reverse("advance-list"), payload, format="json")
        self.assertEqual(res.status_code, status.HTTP_201_CREATED)
        self.assertEqual(res.data["status"], AdvanceStatus.ONGOING)
        self.assertEqual(Decimal(res.data["balance"]), Decimal("2000"))

    def test_employee_cannot_create_advance(self):
        self.auth(self.employee)
        payload = {"employee": self.employee.id, "amount": "2000.00", "date": "2025-01-05"}
        res = self.client.post(reverse("advance-list"), payload, format="json")
        self.assertEqual(res.status_code, status.HTTP_403_FORBIDDEN)

    def test_partial_above_balance_rejected(self):
        self.auth(self.admin)
        url = reverse("advance-settle", args=[self.advance.id])
        res = self.client.post(url, {"type": "Partial", "amount": "6000"}, format="json")
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("amount", res.data)

    def test_partial_then_full(self):
        self.auth(self.admin)
        url = reverse("advance-settle", args=[self.advance.id])

        res = self.client.post(url, {"type": "Partial", "amount": "1500", "date": "2025-01-10"}, format="json")
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual(Decimal(res.data["paid_amount"]), Decimal("1500"))
        self.assertEqual(res.data["status"], AdvanceStatus.ONGOING)

        res = self.client.post(url, {"type": "Full"}, format="json")
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual(res.data["status"], AdvanceStatus.SETTLED)
        self.assertEqual(Decimal(res.data["balance"]), Decimal("0"))
        self.assertEqual(Decimal(res.data["settlements"][1]["amount"]), Decimal("3500"))

        res = self.client.post(url, {"type": "Full"}, format="json")
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)

    def test_deleting_settlement_reopens_advance(self):
        settlement = AdvanceSettlement.objects.create(
            advance=self.advance, amount=Decimal("5000"), date=date(2025, 1, 2), type=SettlementType.FULL
        )
        self.advance.recalculate()
        self.assertEqual(self.advance.status, AdvanceStatus.SETTLED)

        self.auth(self.admin)
        res = self.client.delete(reverse("advance-settlement-detail", args=[self.advance.id, settlement.id]))
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.advance.refresh_from_db()
        self.assertEqual(self.advance.status, AdvanceStatus.ONGOING)
        self.assertEqual(self.advance.paid_amount, Decimal("0"))

    def test_settlement_update_cannot_exceed_amount(self):
        settlement = AdvanceSettlement.objects.create(advance=self.advance, amount=Decimal("1000"), date=date(2025, 1, 2))
        self.advance.recalculate()

        self.auth(self.admin)
        url = reverse("advance-settlement-detail", args=[self.advance.id, settlement.id])
        res = self.client.patch(url, {"amount": "5001"}, format="json")
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)

        res = self.client.patch(url, {"amount": "2000"}, format="json")
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.advance.refresh_from_db()
        self.assertEqual(self.advance.paid_amount, Decimal("2000"))

    def test_summary_and_employee_listing(self):
        Advance.objects.create(employee=self.employee, amount=Decimal("1000"), date=date(2025, 1, 8))

        self.auth(self.admin)
        res = self.client.get(reverse("advance-summary"))
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual(len(res.data), 1)
        self.assertEqual(Decimal(res.data[0]["total_balance"]), Decimal("6000"))
        self.assertEqual(res.data[0]["last_date"], date(2025, 1, 8))

        self.auth(self.employee)
        res = self.client.get(reverse("advance-employee", args=[self.employee.id]))
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual(len(self.results(res)), 2)
        res = self.client.get(reverse("advance-employee", args=[self.other.id]))
        self.assertEqual(res.status_code, status.HTTP_403_FORBIDDEN)


class FineAPITests(HRTestMixin, APITestCase):
    def test_admin_manages_fines(self):
        self.auth(self.admin)
        payload = {"employee": self.employee.id, "amount": "300.00", "date": "2025-01-05", "description": "Late"}
        res = self.client.post(reverse("fine-list"), payload, format="json")
        self.assertEqual(res.status_code, status.HTTP_201_CREATED)
        self.assertEqual(res.data["status"], FineStatus.PENDING)

        res = self.client.patch(reverse("fine-detail", args=[res.data["id"]]), {"amount": "250.00"}, format="json")
        self.assertEqual(res.status_code, status.HTTP_200_OK)

        res = self.client.get(reverse("fine-summary"))
        self.assertEqual(Decimal(res.data[0]["total_fines"]), Decimal("250"))

    def test_deducted_fine_is_locked(self):
        fine = Fine.objects.create(
            employee=self.employee, amount=Decimal("300"), date=date(2025, 1, 5), status=FineStatus.DEDUCTED
        )
        self.auth(self.admin)
        res = self.client.patch(reverse("fine-detail", args=[fine.id]), {"amount": "10"}, format="json")
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
        res = self.client.delete(reverse("fine-detail", args=[fine.id]))
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)

    def test_employee_sees_only_own_fines(self):
        Fine.objects.create(employee=self.employee, amount=Decimal("100"), date=date(2025, 1, 5))
        Fine.objects.create(employee=self.other, amount=Decimal("100"), date=date(2025, 1, 5))

        self.auth(self.employee)
        res = self.client.get(reverse("fine-list"))
        self.assertEqual(len(self.results(res)), 1)
        res = self.client.delete(reverse("fine-detail", args=[Fine.objects.first().id]))
        self.assertEqual(res.status_code, status.HTTP_403_FORBIDDEN)


# -----------------
# Payroll runs
# -----------------

class PayrollAPITests(HRTestMixin, APITestCase):
    def setUp(self):
        super().setUp()
        self.log_piece = make_log(self.employee, self.piece, date(2025, 1, 3), quantity="12")  # 6000
        self.log_day = make_log(self.employee, self.day, date(2025, 1, 10))  # 10000
        self.log_later = make_log(self.employee, self.piece, date(2025, 1, 20), quantity="1")
        self.delivery = WorkLog.objects.create(
            employee=self.employee,
            main_category=self.main,
            work_date=date(2025, 1, 5),
            quantity=Decimal("40"),
            payment_type_at_time=LogPaymentType.DELIVERY,
            subcategory_name_at_time="Sewing delivery",
            payment_status=PaymentStatus.NA,
        )

        self.adv_old = Advance.objects.create(employee=self.employee, amount=Decimal("3000"), date=date(2024, 12, 1))
        self.adv_new = Advance.objects.create(employee=self.employee, amount=Decimal("5000"), date=date(2024, 12, 15))

        self.fine_in = Fine.objects.create(employee=self.employee, amount=Decimal("500"), date=date(2025, 1, 12))
        self.fine_after = Fine.objects.create(employee=self.employee, amount=Decimal("200"), date=date(2025, 1, 20))

        self.list_url = reverse("payroll-list")
        self.payload = {
            "employee": self.employee.id,
            "start_date": "2025-01-01",
            "end_date": "2025-01-15",
            "advance_deduction": "4000.00",
        }

    def run_payroll(self, **overrides):
        self.auth(self.admin)
        return self.client.post(self.list_url, {**self.payload, **overrides}, format="json")

    def test_run_computes_and_marks_everything(self):
        res = self.run_payroll()
        self.assertEqual(res.status_code, status.HTTP_201_CREATED)
        self.assertEqual(Decimal(res.data["gross_amount"]), Decimal("16000"))
        self.assertEqual(Decimal(res.data["advance_deduction"]), Decimal("4000"))
        self.assertEqual(Decimal(res.data["fine_deduction"]), Decimal("500"))
        self.assertEqual(Decimal(res.data["total_salary"]), Decimal("11500"))
        self.assertEqual(sorted(res.data["work_logs"]), sorted([self.log_piece.id, self.log_day.id]))

        for log in (self.log_piece, self.log_day):
            log.refresh_from_db()
            self.assertEqual(log.payment_status, PaymentStatus.PAID)
        self.log_later.refresh_from_db()
        self.delivery.refresh_from_db()
        self.assertEqual(self.log_later.payment_status, PaymentStatus.UNPAID)
        self.assertEqual(self.delivery.payment_status, PaymentStatus.NA)

        # oldest advance is cleared first
        self.adv_old.refresh_from_db()
        self.adv_new.refresh_from_db()
        self.assertEqual(self.adv_old.status, AdvanceStatus.SETTLED)
        self.assertEqual(self.adv_new.paid_amount, Decimal("1000"))
        self.assertEqual(self.adv_new.status, AdvanceStatus.ONGOING)

        self.fine_in.refresh_from_db()
        self.fine_after.refresh_from_db()
        self.assertEqual(self.fine_in.status, FineStatus.DEDUCTED)
        self.assertEqual(self.fine_after.status, FineStatus.PENDING)

    def test_requested_deduction_capped_at_balances(self):
        res = self.run_payroll(advance_deduction="9999.00")
        self.assertEqual(res.status_code, status.HTTP_201_CREATED)
        self.assertEqual(Decimal(res.data["advance_deduction"]), Decimal("8000"))
        self.assertEqual(Decimal(res.data["total_salary"]), Decimal("7500"))

    def test_negative_net_rejected_and_nothing_changes(self):
        Advance.objects.create(employee=self.employee, amount=Decimal("50000"), date=date(2024, 12, 20))
        res = self.run_payroll(advance_deduction="20000.00")
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("advance_deduction", res.data)

        self.assertFalse(Payroll.objects.exists())
        self.assertFalse(AdvanceSettlement.objects.exists())
        self.log_piece.refresh_from_db()
        self.assertEqual(self.log_piece.payment_status, PaymentStatus.UNPAID)

    def test_second_run_has_no_logs(self):
        self.assertEqual(self.run_payroll().status_code, status.HTTP_201_CREATED)
        res = self.run_payroll(advance_deduction="0")
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)

    def test_employee_cannot_run_payroll(self):
        self.auth(self.employee)
        res = self.client.post(self.list_url, self.payload, format="json")
        self.assertEqual(res.status_code, status.HTTP_403_FORBIDDEN)

    def test_employee_list_sees_self_only(self):
        self.run_payroll()
        other_log = make_log(self.other, self.day, date(2025, 1, 3))
        self.run_payroll(employee=self.other.id, advance_deduction="0")
        self.assertEqual(Payroll.objects.count(), 2)

        self.auth(self.employee)
        items = self.results(self.client.get(self.list_url))
        self.assertEqual(len(items), 1)
        self.assertEqual(items[0]["employee"], self.employee.id)

        other_payroll = Payroll.objects.get(employee=self.other)
        self.assertEqual(other_payroll.work_logs.get(), other_log)
        res = self.client.get(reverse("payroll-detail", args=[other_payroll.id]))
        self.assertEqual(res.status_code, status.HTTP_404_NOT_FOUND)

    def test_delete_reverses_run(self):
        payroll_id = self.run_payroll().data["id"]

        res = self.client.delete(reverse("payroll-detail", args=[payroll_id]))
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertFalse(Payroll.objects.exists())
        self.assertFalse(AdvanceSettlement.objects.exists())

        self.log_piece.refresh_from_db()
        self.assertEqual(self.log_piece.payment_status, PaymentStatus.UNPAID)
        self.assertIsNone(self.log_piece.payment_date)
        self.fine_in.refresh_from_db()
        self.assertEqual(self.fine_in.status, FineStatus.PENDING)
        for advance in (self.adv_old, self.adv_new):
            advance.refresh_from_db()
            self.assertEqual(advance.paid_amount, Decimal("0"))
            self.assertEqual(advance.status, AdvanceStatus.ONGOING)

    def test_employee_summary(self):
        self.auth(self.admin)
        url = reverse("payroll-employee-summary", args=[self.employee.id])
        res = self.client.get(url, {"period": "firstHalf", "month": "2025-01"})
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual(Decimal(res.data["total_salary"]), Decimal("16000"))
        self.assertEqual(res.data["work_log_count"], 2)

        res = self.client.get(url, {"period": "monthly", "month": "2025-01"})
        self.assertEqual(Decimal(res.data["total_salary"]), Decimal("16500"))

        res = self.client.get(url, {"period": "weekly"})
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)

    def test_employee_summary_defaults_to_first_half(self):
        self.auth(self.admin)
        url = reverse("payroll-employee-summary", args=[self.employee.id])
        res = self.client.get(url, {"month": "2025-01"})
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual(res.data["period"], "firstHalf")
        self.assertEqual(res.data["end_date"], date(2025, 1, 15))
        self.assertEqual(Decimal(res.data["total_salary"]), Decimal("16000"))

    def test_current_period_summary(self):
        today = timezone.localdate()
        make_log(self.employee, self.piece, today, quantity="2")
        make_log(self.other, self.day, today)

        self.auth(self.admin)
        res = self.client.get(reverse("payroll-current-summary"))
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        totals = {row["employee"]["id"]: Decimal(row["total_salary"]) for row in res.data["payroll"]}
        self.assertEqual(totals[self.employee.id], Decimal("1000"))
        self.assertEqual(totals[self.other.id], Decimal("10000"))


# -----------------
# Remarks
# -----------------

class RemarkAPITests(HRTestMixin, APITestCase):
    def setUp(self):
        super().setUp()
        self.remark = Remark.objects.create(employee=self.employee, author=self.admin, text="Good work", date=date(2025, 1, 5))
        self.list_url = reverse("remark-list", args=[self.employee.id])

    def test_admin_adds_remark(self):
        self.auth(self.admin)
        res = self.client.post(self.list_url, {"text": "  Needs training  "}, format="json")
        self.assertEqual(res.status_code, status.HTTP_201_CREATED)
        self.assertEqual(res.data["text"], "Needs training")
        self.assertEqual(res.data["author"], self.admin.id)
        self.assertEqual(res.data["date"], str(timezone.localdate()))

    def test_employee_reads_own_only(self):
        self.auth(self.employee)
        res = self.client.get(self.list_url)
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual(len(self.results(res)), 1)

        self.auth(self.other)
        res = self.client.get(self.list_url)
        self.assertEqual(res.status_code, status.HTTP_403_FORBIDDEN)

    def test_employee_cannot_write(self):
        self.auth(self.employee)
        res = self.client.post(self.list_url, {"text": "hi"}, format="json")
        self.assertEqual(res.status_code, status.HTTP_403_FORBIDDEN)
        res = self.client.delete(reverse("remark-detail", args=[self.remark.id]))
        self.assertEqual(res.status_code, status.HTTP_403_FORBIDDEN)

    def test_admin_edits_and_deletes(self):
        self.auth(self.admin)
        url = reverse("remark-detail", args=[self.remark.id])
        res = self.client.patch(url, {"text": "Great work"}, format="json")
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        res = self.client.delete(url)
        self.assertEqual(res.status_code, status.HTTP_204_NO_CONTENT)
