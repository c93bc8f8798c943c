import logging
from decimal import Decimal

from django.db import transaction
from django.db.models import Sum
from django.utils import timezone
from rest_framework import serializers

from accounts.models import User
from accounts.serializers import file_url

from .models import (
    Advance,
    AdvanceSettlement,
    Fine,
    MainCategory,
    Payroll,
    Remark,
    Subcategory,
    WorkLog,
)
from .payroll import QUANTITY_TYPES, allocate_deduction, calculate_log_salary, period_bounds, total_salary
from .status import (
    AdvanceStatus,
    FineStatus,
    LogPaymentType,
    PaymentStatus,
    PaymentType,
    SettlementType,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class EmployeeField(serializers.PrimaryKeyRelatedField):
    def get_queryset(self):
        return User.objects.filter(role=User.Role.EMPLOYEE)


def employee_brief(user, request=None):
    if user is None:
        return None
    return {
        "id": user.id,
        "full_name": user.full_name,
        "profile_picture_url": file_url(request, user.profile_picture),
    }


# -----------------
# Categories
# -----------------

class MainCategorySerializer(serializers.ModelSerializer):
    class Meta:
        model = MainCategory
        fields = ["id", "name", "created_at"]
        read_only_fields = ["id", "created_at"]

    def validate_name(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Name cannot be empty.")
        return value


class SubcategorySerializer(serializers.ModelSerializer):
    main_category_name = serializers.CharField(source="main_category.name", read_only=True)

    class Meta:
        model = Subcategory
        fields = [
            "id",
            "name",
            "main_category",
            "main_category_name",
            "payment_type",
            "rate",
            "order",
            "group_type",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "created_at", "updated_at"]

    def validate_name(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Name cannot be empty.")
        return value

    def validate_rate(self, value):
        if value <= 0:
            raise serializers.ValidationError("Rate must be greater than zero.")
        return value


class ReorderItemSerializer(serializers.Serializer):
    id = serializers.IntegerField()
    order = serializers.IntegerField()


class SubcategoryReorderSerializer(serializers.Serializer):
    new_order = ReorderItemSerializer(many=True, allow_empty=True)

    def save(self, **kwargs):
        items = self.validated_data["new_order"]
        by_id = {item["id"]: item["order"] for item in items}
        subcategories = list(Subcategory.objects.filter(id__in=by_id))
        for sub in subcategories:
            sub.order = by_id[sub.id]
        with transaction.atomic():
            Subcategory.objects.bulk_update(subcategories, ["order"])
        return len(subcategories)


# -----------------
# Work logs
# -----------------

class WorkLogSerializer(serializers.ModelSerializer):
    employee_name = serializers.CharField(source="employee.full_name", read_only=True)
    total_payment = serializers.SerializerMethodField()

    class Meta:
        model = WorkLog
        fields = [
            "id",
            "employee",
            "employee_name",
            "subcategory",
            "main_category",
            "work_date",
            "quantity",
            "hours_worked",
            "rate_at_time",
            "payment_type_at_time",
            "subcategory_name_at_time",
            "payment_status",
            "payment_date",
            "payroll",
            "location",
            "edited_total_payment",
            "is_admin_edited",
            "total_payment",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_total_payment(self, obj):
        return str(calculate_log_salary(obj).quantize(Decimal("0.01")))


class WorkLogCreateSerializer(serializers.ModelSerializer):
    subcategory = serializers.PrimaryKeyRelatedField(queryset=Subcategory.objects.all())
    quantity = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=ZERO, required=False)
    hours_worked = serializers.DecimalField(max_digits=6, decimal_places=2, min_value=ZERO, required=False)

    class Meta:
        model = WorkLog
        fields = ["subcategory", "work_date", "quantity", "hours_worked", "location"]

    def validate(self, attrs):
        sub = attrs["subcategory"]

        if sub.payment_type in QUANTITY_TYPES and not attrs.get("quantity"):
            raise serializers.ValidationError({"quantity": "Quantity is required for this subcategory."})
        if sub.payment_type == PaymentType.PER_HOUR and not attrs.get("hours_worked"):
            raise serializers.ValidationError({"hours_worked": "Hours worked is required for this subcategory."})
        return attrs

    def create(self, validated_data):
        sub = validated_data["subcategory"]

        # Rate, type and name are copied so later rate-table edits don't touch past pay.
        return WorkLog.objects.create(
            employee=self.context["request"].user,
            subcategory=sub,
            work_date=validated_data["work_date"],
            quantity=validated_data.get("quantity", ZERO) if sub.payment_type in QUANTITY_TYPES else ZERO,
            hours_worked=validated_data.get("hours_worked", ZERO) if sub.payment_type == PaymentType.PER_HOUR else ZERO,
            rate_at_time=sub.rate,
            payment_type_at_time=sub.payment_type,
            subcategory_name_at_time=sub.name,
            location=validated_data.get("location", WorkLog._meta.get_field("location").default),
        )


class DeliveryLogCreateSerializer(serializers.ModelSerializer):
    main_category = serializers.PrimaryKeyRelatedField(queryset=MainCategory.objects.all())
    quantity = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal("0.01"))
    description = serializers.CharField(max_length=200, required=False, allow_blank=True)
    employee = EmployeeField(required=False)

    class Meta:
        model = WorkLog
        fields = ["main_category", "work_date", "quantity", "description", "employee", "location"]

    def validate(self, attrs):
        user = self.context["request"].user
        # Admins record deliveries for an employee, employees for themselves.
        if not user.is_admin:
            attrs["employee"] = user
        elif not attrs.get("employee"):
            raise serializers.ValidationError({"employee": "Employee is required."})
        return attrs

    def create(self, validated_data):
        category = validated_data["main_category"]
        description = (validated_data.pop("description", "") or "").strip()
        return WorkLog.objects.create(
            employee=validated_data["employee"],
            main_category=category,
            work_date=validated_data["work_date"],
            quantity=validated_data["quantity"],
            rate_at_time=ZERO,
            payment_type_at_time=LogPaymentType.DELIVERY,
            subcategory_name_at_time=description or f"{category.name} delivery",
            payment_status=PaymentStatus.NA,
            location=validated_data.get("location", WorkLog._meta.get_field("location").default),
        )


class WorkLogAdminUpdateSerializer(serializers.ModelSerializer):
    edited_total_payment = serializers.DecimalField(
        max_digits=12, decimal_places=2, min_value=ZERO, required=False, allow_null=True
    )

    class Meta:
        model = WorkLog
        fields = ["work_date", "quantity", "hours_worked", "location", "edited_total_payment"]

    def validate(self, attrs):
        if self.instance and self.instance.payment_status == PaymentStatus.PAID:
            raise serializers.ValidationError({"detail": "Paid work logs cannot be edited."})
        return attrs

    def update(self, instance, validated_data):
        # Sending null clears the override and falls back to the formula.
        if "edited_total_payment" in validated_data:
            instance.is_admin_edited = validated_data["edited_total_payment"] is not None
        return super().update(instance, validated_data)


# -----------------
# Advances
# -----------------

class AdvanceSettlementSerializer(serializers.ModelSerializer):
    class Meta:
        model = AdvanceSettlement
        fields = ["id", "amount", "date", "type", "description", "payroll", "created_at"]
        read_only_fields = ["id", "payroll", "created_at"]

    def validate(self, attrs):
        settlement = self.instance
        if settlement is None:
            return attrs
        if settlement.payroll_id:
            raise serializers.ValidationError({"detail": "Payroll deductions are changed by deleting the payroll."})

        amount = attrs.get("amount", settlement.amount)
        others = (
            settlement.advance.settlements.exclude(id=settlement.id)
            .aggregate(total=Sum("amount"))["total"] or ZERO
        )
        if others + amount > settlement.advance.amount:
            raise serializers.ValidationError({"amount": "Settlements cannot exceed the advance amount."})
        return attrs

    def update(self, instance, validated_data):
        with transaction.atomic():
            instance = super().update(instance, validated_data)
            instance.advance.recalculate()
        return instance


class AdvanceSerializer(serializers.ModelSerializer):
    employee = EmployeeField()
    employee_name = serializers.CharField(source="employee.full_name", read_only=True)
    balance = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)
    settlements = AdvanceSettlementSerializer(many=True, read_only=True)

    class Meta:
        model = Advance
        fields = [
            "id",
            "employee",
            "employee_name",
            "amount",
            "paid_amount",
            "balance",
            "status",
            "date",
            "description",
            "settlements",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "paid_amount", "status", "created_at", "updated_at"]

    def validate_amount(self, value):
        if value <= 0:
            raise serializers.ValidationError("Amount must be greater than zero.")
        if self.instance is not None and value < self.instance.paid_amount:
            raise serializers.ValidationError("Amount cannot be less than what has already been paid.")
        return value

    def update(self, instance, validated_data):
        with transaction.atomic():
            instance = super().update(instance, validated_data)
            instance.recalculate()
        return instance


class AdvanceSettleSerializer(serializers.Serializer):
    type = serializers.ChoiceField(choices=SettlementType.choices)
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal("0.01"), required=False)
    date = serializers.DateField(required=False)
    description = serializers.CharField(max_length=255, required=False, allow_blank=True)

    def validate(self, attrs):
        advance = self.context["advance"]
        balance = advance.balance

        if balance <= 0:
            raise serializers.ValidationError({"detail": "Advance is already settled."})

        if attrs["type"] == SettlementType.FULL:
            attrs["amount"] = balance
        elif "amount" not in attrs:
            raise serializers.ValidationError({"amount": "Amount is required for a partial settlement."})
        elif attrs["amount"] > balance:
            raise serializers.ValidationError({"amount": f"Amount exceeds the remaining balance of {balance}."})
        return attrs

    def save(self, **kwargs):
        advance = self.context["advance"]
        with transaction.atomic():
            AdvanceSettlement.objects.create(
                advance=advance,
                amount=self.validated_data["amount"],
                date=self.validated_data.get("date") or timezone.localdate(),
                type=self.validated_data["type"],
                description=self.validated_data.get("description", ""),
            )
            advance.recalculate()
        logger.info(
            "Advance %s settled %s (%s), balance %s",
            advance.id, self.validated_data["amount"], self.validated_data["type"], advance.balance,
        )
        return advance


# -----------------
# Fines
# -----------------

class FineSerializer(serializers.ModelSerializer):
    employee = EmployeeField()
    employee_name = serializers.CharField(source="employee.full_name", read_only=True)

    class Meta:
        model = Fine
        fields = [
            "id",
            "employee",
            "employee_name",
            "amount",
            "date",
            "description",
            "status",
            "payroll",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "status", "payroll", "created_at", "updated_at"]

    def validate_amount(self, value):
        if value <= 0:
            raise serializers.ValidationError("Amount must be greater than zero.")
        return value

    def validate(self, attrs):
        if self.instance is not None and self.instance.status == FineStatus.DEDUCTED:
            raise serializers.ValidationError({"detail": "Deducted fines cannot be changed."})
        return attrs


# -----------------
# Payroll
# -----------------

class PayrollSerializer(serializers.ModelSerializer):
    employee_name = serializers.CharField(source="employee.full_name", read_only=True)
    work_logs = serializers.PrimaryKeyRelatedField(many=True, read_only=True)

    class Meta:
        model = Payroll
        fields = [
            "id",
            "employee",
            "employee_name",
            "start_date",
            "end_date",
            "gross_amount",
            "advance_deduction",
            "fine_deduction",
            "total_salary",
            "status",
            "work_logs",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class PayrollRunSerializer(serializers.Serializer):
    """
    Pays an employee's unpaid work logs for a period.

    gross   = pay of every unpaid, non-delivery log dated in [start_date, end_date]
    advance = requested deduction spread over ongoing advances, oldest first,
              never more than what is still owed
    fines   = every pending fine dated on or before end_date
    """
    employee = EmployeeField()
    start_date = serializers.DateField(required=False)
    end_date = serializers.DateField(required=False)
    advance_deduction = serializers.DecimalField(
        max_digits=12, decimal_places=2, min_value=ZERO, required=False, default=ZERO
    )

    def validate(self, attrs):
        start, end = attrs.get("start_date"), attrs.get("end_date")
        if (start is None) != (end is None):
            raise serializers.ValidationError({"end_date": "Give both start_date and end_date, or neither."})
        if start is None:
            start, end = period_bounds(timezone.localdate())
        if start > end:
            raise serializers.ValidationError({"end_date": "End date must not be before start date."})
        attrs["start_date"], attrs["end_date"] = start, end
        return attrs

    def _compute_net(self, gross: Decimal, advance: Decimal, fines: Decimal) -> Decimal:
        net = gross - advance - fines
        if net < 0:
            raise serializers.ValidationError({"advance_deduction": "Deductions cannot make net salary negative."})
        return net

    def create(self, validated_data):
        employee = validated_data["employee"]
        start, end = validated_data["start_date"], validated_data["end_date"]
        today = timezone.localdate()

        with transaction.atomic():
            logs = list(
                WorkLog.objects.select_for_update()
                .filter(employee=employee, work_date__range=(start, end), payment_status=PaymentStatus.UNPAID)
                .exclude(payment_type_at_time=LogPaymentType.DELIVERY)
            )
            if not logs:
                raise serializers.ValidationError({"detail": "No unpaid work logs in this period."})
            gross = total_salary(logs)

            advances = list(
                Advance.objects.select_for_update()
                .filter(employee=employee, status=AdvanceStatus.ONGOING)
                .order_by("date", "id")
            )
            allocation = allocate_deduction(advances, validated_data["advance_deduction"])
            advance_total = sum((amount for _, amount in allocation), ZERO)

            fines = list(
                Fine.objects.select_for_update()
                .filter(employee=employee, status=FineStatus.PENDING, date__lte=end)
            )
            fine_total = sum((f.amount for f in fines), ZERO)

            net = self._compute_net(gross, advance_total, fine_total)

            payroll = Payroll.objects.create(
                employee=employee,
                start_date=start,
                end_date=end,
                gross_amount=gross,
                advance_deduction=advance_total,
                fine_deduction=fine_total,
                total_salary=net,
                created_by=self.context["request"].user,
            )

            for advance, amount in allocation:
                AdvanceSettlement.objects.create(
                    advance=advance,
                    amount=amount,
                    date=today,
                    type=SettlementType.FULL if amount >= advance.balance else SettlementType.PARTIAL,
                    description=f"Payroll deduction {start} - {end}",
                    payroll=payroll,
                )
                advance.recalculate()

            Fine.objects.filter(id__in=[f.id for f in fines]).update(
                status=FineStatus.DEDUCTED, payroll=payroll
            )
            WorkLog.objects.filter(id__in=[log.id for log in logs]).update(
                payment_status=PaymentStatus.PAID, payment_date=today, payroll=payroll
            )

        logger.info(
            "Payroll %s for employee %s (%s..%s): gross %s, advance %s, fines %s, net %s",
            payroll.id, employee.id, start, end, gross, advance_total, fine_total, net,
        )
        return payroll


# -----------------
# Remarks
# -----------------

class RemarkSerializer(serializers.ModelSerializer):
    author_name = serializers.CharField(source="author.full_name", read_only=True, default=None)
    date = serializers.DateField(required=False)

    class Meta:
        model = Remark
        fields = ["id", "employee", "author", "author_name", "text", "date", "created_at", "updated_at"]
        read_only_fields = ["id", "employee", "author", "created_at", "updated_at"]

    def validate_text(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Remark cannot be empty.")
        return value

    def create(self, validated_data):
        validated_data.setdefault("date", timezone.localdate())
        return super().create(validated_data)
