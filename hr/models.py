from decimal import Decimal

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import Sum

from .status import (
    AdvanceStatus,
    FineStatus,
    LogPaymentType,
    PaymentStatus,
    PaymentType,
    PayrollStatus,
    SettlementType,
    WorkLocation,
)

MONEY = dict(max_digits=12, decimal_places=2)


class MainCategory(models.Model):
    name = models.CharField(max_length=200, unique=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name


class Subcategory(models.Model):
    name = models.CharField(max_length=200)

    # Deleting a main category removes its rate table.
    main_category = models.ForeignKey(
        MainCategory,
        on_delete=models.CASCADE,
        related_name="subcategories",
    )
    payment_type = models.CharField(max_length=20, choices=PaymentType.choices)
    rate = models.DecimalField(**MONEY, validators=[MinValueValidator(0)])
    order = models.IntegerField(default=0)
    group_type = models.CharField(max_length=100, blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["order", "name"]

    def __str__(self):
        return f"{self.main_category_id} / {self.name}"


class WorkLog(models.Model):
    employee = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="work_logs",
    )
    subcategory = models.ForeignKey(
        Subcategory,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="work_logs",
    )
    # Only set for delivery logs, which are not tied to a rated subcategory.
    main_category = models.ForeignKey(
        MainCategory,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="work_logs",
    )
    work_date = models.DateField()

    quantity = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0"), validators=[MinValueValidator(0)])
    hours_worked = models.DecimalField(max_digits=6, decimal_places=2, default=Decimal("0"), validators=[MinValueValidator(0)])

    # Frozen from the subcategory when the log is created.
    rate_at_time = models.DecimalField(**MONEY, default=Decimal("0"))
    payment_type_at_time = models.CharField(max_length=20, choices=LogPaymentType.choices)
    subcategory_name_at_time = models.CharField(max_length=200)

    payment_status = models.CharField(max_length=10, choices=PaymentStatus.choices, default=PaymentStatus.UNPAID)
    payment_date = models.DateField(null=True, blank=True)
    payroll = models.ForeignKey(
        "hr.Payroll",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="work_logs",
    )
    location = models.CharField(max_length=20, choices=WorkLocation.choices, default=WorkLocation.NA)

    edited_total_payment = models.DecimalField(**MONEY, null=True, blank=True)
    is_admin_edited = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-work_date", "-created_at"]
        indexes = [
            models.Index(fields=["employee", "work_date"], name="hr_worklog_employe_3a9d4e_idx"),
            models.Index(fields=["work_date"], name="hr_worklog_work_da_8b1f20_idx"),
        ]

    def __str__(self):
        return f"{self.employee_id} - {self.work_date} - {self.subcategory_name_at_time}"


class Advance(models.Model):
    employee = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="advances",
    )
    amount = models.DecimalField(**MONEY, validators=[MinValueValidator(0)])
    paid_amount = models.DecimalField(**MONEY, default=Decimal("0"))
    status = models.CharField(max_length=10, choices=AdvanceStatus.choices, default=AdvanceStatus.ONGOING)
    date = models.DateField()
    description = models.CharField(max_length=255, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-date", "-created_at"]
        indexes = [
            models.Index(fields=["employee", "status"], name="hr_advance_employe_51c7aa_idx"),
        ]

    @property
    def balance(self) -> Decimal:
        return max(self.amount - self.paid_amount, Decimal("0"))

    def recalculate(self, save=True):
        """Paid amount and status always follow the settlement rows."""
        total = self.settlements.aggregate(total=Sum("amount"))["total"] or Decimal("0")
        self.paid_amount = total
        self.status = AdvanceStatus.SETTLED if total >= self.amount else AdvanceStatus.ONGOING
        if save:
            self.save(update_fields=["paid_amount", "status", "updated_at"])
        return self

    def __str__(self):
        return f"{self.employee_id} {self.date} {self.amount}"


class AdvanceSettlement(models.Model):
    advance = models.ForeignKey(
        Advance,
        on_delete=models.CASCADE,
        related_name="settlements",
    )
    amount = models.DecimalField(**MONEY, validators=[MinValueValidator(0)])
    date = models.DateField()
    type = models.CharField(max_length=10, choices=SettlementType.choices, default=SettlementType.PARTIAL)
    description = models.CharField(max_length=255, blank=True)

    # Set when the settlement was taken out of a payroll run.
    payroll = models.ForeignKey(
        "hr.Payroll",
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="advance_settlements",
    )

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["date", "id"]

    def __str__(self):
        return f"{self.advance_id} {self.date} {self.amount}"


class Fine(models.Model):
    employee = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="fines",
    )
    amount = models.DecimalField(**MONEY, validators=[MinValueValidator(0)])
    date = models.DateField()
    description = models.CharField(max_length=255, blank=True)
    status = models.CharField(max_length=10, choices=FineStatus.choices, default=FineStatus.PENDING)
    payroll = models.ForeignKey(
        "hr.Payroll",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="fines",
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-date", "-created_at"]
        indexes = [
            models.Index(fields=["employee", "status"], name="hr_fine_employe_0d93e2_idx"),
        ]

    def __str__(self):
        return f"{self.employee_id} {self.date} {self.amount}"


class Payroll(models.Model):
    employee = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="payrolls",
    )
    start_date = models.DateField()
    end_date = models.DateField()

    gross_amount = models.DecimalField(**MONEY, default=Decimal("0"))
    advance_deduction = models.DecimalField(**MONEY, default=Decimal("0"))
    fine_deduction = models.DecimalField(**MONEY, default=Decimal("0"))
    total_salary = models.DecimalField(**MONEY, validators=[MinValueValidator(0)])

    status = models.CharField(max_length=10, choices=PayrollStatus.choices, default=PayrollStatus.PAID)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-end_date", "-created_at"]
        indexes = [
            models.Index(fields=["employee", "end_date"], name="hr_payroll_employe_6f2c1b_idx"),
        ]

    def __str__(self):
        return f"{self.employee_id} {self.start_date}..{self.end_date}"


class Remark(models.Model):
    employee = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="remarks",
    )
    author = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    text = models.TextField()
    date = models.DateField()

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-date", "-created_at"]

    def __str__(self):
        return f"{self.employee_id} {self.date}"
