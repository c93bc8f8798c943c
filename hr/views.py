import logging
from collections import OrderedDict

from django.db import transaction
from django.db.models import Max, Sum
from django.shortcuts import get_object_or_404
from django.utils import timezone
from rest_framework import status
from rest_framework.exceptions import PermissionDenied, ValidationError
from rest_framework.generics import (
    CreateAPIView,
    GenericAPIView,
    ListAPIView,
    ListCreateAPIView,
    RetrieveDestroyAPIView,
    RetrieveUpdateDestroyAPIView,
)
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from accounts.models import User
from accounts.permissions import IsAdmin, IsApprovedUser

from .helpers import _get_employee, _parse_month, work_date_range
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
from .payroll import (
    FIRST_HALF,
    MONTHLY,
    SECOND_HALF,
    SEMI_MONTHLY,
    calculate_log_salary,
    half_month_bounds,
    period_bounds,
    total_salary,
)
from .serializers import (
    AdvanceSerializer,
    AdvanceSettlementSerializer,
    AdvanceSettleSerializer,
    DeliveryLogCreateSerializer,
    FineSerializer,
    MainCategorySerializer,
    PayrollRunSerializer,
    PayrollSerializer,
    RemarkSerializer,
    SubcategoryReorderSerializer,
    SubcategorySerializer,
    WorkLogAdminUpdateSerializer,
    WorkLogCreateSerializer,
    WorkLogSerializer,
    employee_brief,
)
from .status import AdvanceStatus, FineStatus, LogPaymentType, PaymentStatus

logger = logging.getLogger(__name__)


def _require_admin(request):
    if not request.user.is_admin:
        raise PermissionDenied("Not authorized as an admin.")


def _require_self_or_admin(request, employee_id):
    if request.user.is_admin or request.user.id == employee_id:
        return
    raise PermissionDenied("You can only view your own records.")


class ScopedMixin:
    """Admins see every row, employees only rows where they are the employee."""

    employee_field = "employee"

    def get_queryset(self):
        qs = super().get_queryset()
        user = self.request.user
        if user.is_admin:
            return qs
        return qs.filter(**{self.employee_field: user})


# -----------------
# Categories
# -----------------

class MainCategoryListCreateView(ListCreateAPIView):
    serializer_class = MainCategorySerializer
    permission_classes = [IsAuthenticated, IsApprovedUser]
    queryset = MainCategory.objects.all()

    def create(self, request, *args, **kwargs):
        _require_admin(request)
        return super().create(request, *args, **kwargs)


class MainCategoryDetailView(RetrieveUpdateDestroyAPIView):
    serializer_class = MainCategorySerializer
    permission_classes = [IsAuthenticated, IsApprovedUser]
    queryset = MainCategory.objects.all()

    def update(self, request, *args, **kwargs):
        _require_admin(request)
        return super().update(request, *args, **kwargs)

    def destroy(self, request, *args, **kwargs):
        _require_admin(request)
        instance = self.get_object()
        logger.info("Deleting main category %s with its subcategories", instance.id)
        instance.delete()
        return Response(
            {"detail": "Main category and its subcategories deleted."},
            status=status.HTTP_200_OK,
        )


class SubcategoryListCreateView(ListCreateAPIView):
    serializer_class = SubcategorySerializer
    permission_classes = [IsAuthenticated, IsApprovedUser]
    queryset = Subcategory.objects.select_related("main_category")

    def get_queryset(self):
        qs = super().get_queryset()
        main_category = self.request.query_params.get("main_category")
        if main_category:
            qs = qs.filter(main_category_id=main_category)
        return qs

    def create(self, request, *args, **kwargs):
        _require_admin(request)
        return super().create(request, *args, **kwargs)


class SubcategoryDetailView(RetrieveUpdateDestroyAPIView):
    serializer_class = SubcategorySerializer
    permission_classes = [IsAuthenticated, IsApprovedUser]
    queryset = Subcategory.objects.select_related("main_category")

    def update(self, request, *args, **kwargs):
        _require_admin(request)
        return super().update(request, *args, **kwargs)

    def destroy(self, request, *args, **kwargs):
        _require_admin(request)
        return super().destroy(request, *args, **kwargs)


class SubcategoryReorderView(GenericAPIView):
    serializer_class = SubcategoryReorderSerializer
    permission_classes = [IsAuthenticated, IsAdmin]

    def post(self, request, *args, **kwargs):
        ser = self.get_serializer(data=request.data)
        ser.is_valid(raise_exception=True)
        count = ser.save()
        return Response({"detail": "Subcategories reordered.", "updated": count})

    def put(self, request, *args, **kwargs):
        return self.post(request, *args, **kwargs)


# -----------------
# Work logs
# -----------------

class WorkLogFilterMixin:
    queryset = WorkLog.objects.select_related("employee", "subcategory", "main_category")

    def get_queryset(self):
        qs = super().get_queryset()
        params = self.request.query_params

        date_range = work_date_range(params)
        if date_range is not None:
            qs = qs.filter(work_date__range=date_range)

        payment_status = params.get("payment_status")
        if payment_status:
            qs = qs.filter(payment_status=payment_status)
        return qs


class WorkLogCreateView(CreateAPIView):
    serializer_class = WorkLogCreateSerializer
    permission_classes = [IsAuthenticated, IsApprovedUser]

    def create(self, request, *args, **kwargs):
        ser = self.get_serializer(data=request.data)
        ser.is_valid(raise_exception=True)
        log = ser.save()
        return Response(WorkLogSerializer(log).data, status=status.HTTP_201_CREATED)


class DeliveryLogCreateView(WorkLogCreateView):
    serializer_class = DeliveryLogCreateSerializer


class MyWorkLogListView(WorkLogFilterMixin, ListAPIView):
    serializer_class = WorkLogSerializer
    permission_classes = [IsAuthenticated, IsApprovedUser]

    def get_queryset(self):
        return super().get_queryset().filter(employee=self.request.user)


class AllWorkLogListView(WorkLogFilterMixin, ListAPIView):
    serializer_class = WorkLogSerializer
    permission_classes = [IsAuthenticated, IsAdmin]

    def get_queryset(self):
        qs = super().get_queryset()
        employee = self.request.query_params.get("employee")
        if employee:
            qs = qs.filter(employee_id=employee)
        return qs


class CurrentSalaryView(GenericAPIView):
    permission_classes = [IsAuthenticated, IsApprovedUser]

    def get(self, request, *args, **kwargs):
        start, end = period_bounds(timezone.localdate())
        logs = (
            WorkLog.objects.filter(employee=request.user, work_date__range=(start, end))
            .exclude(payment_type_at_time=LogPaymentType.DELIVERY)
        )
        return Response({
            "start_date": start,
            "end_date": end,
            "total_salary": total_salary(logs),
            "work_log_count": len(logs),
        })


class WorkLogDetailView(ScopedMixin, RetrieveUpdateDestroyAPIView):
    permission_classes = [IsAuthenticated, IsApprovedUser]
    queryset = WorkLog.objects.select_related("employee", "subcategory", "main_category")

    def get_serializer_class(self):
        if self.request.method in ("PUT", "PATCH"):
            return WorkLogAdminUpdateSerializer
        return WorkLogSerializer

    def update(self, request, *args, **kwargs):
        _require_admin(request)
        kwargs["partial"] = True
        super().update(request, *args, **kwargs)
        return Response(WorkLogSerializer(self.get_object()).data)

    def perform_destroy(self, instance):
        if instance.payment_status == PaymentStatus.PAID:
            raise ValidationError({"detail": "Paid work logs cannot be deleted."})
        instance.delete()


# -----------------
# Payroll
# -----------------

class CurrentPeriodSummaryView(GenericAPIView):
    permission_classes = [IsAuthenticated, IsAdmin]

    def get(self, request, *args, **kwargs):
        kind = request.query_params.get("type", SEMI_MONTHLY)
        if kind not in (SEMI_MONTHLY, MONTHLY):
            raise ValidationError({"type": f"Use {SEMI_MONTHLY} or {MONTHLY}."})
        start, end = period_bounds(timezone.localdate(), kind)

        logs = (
            WorkLog.objects.select_related("employee")
            .filter(work_date__range=(start, end))
            .exclude(payment_type_at_time=LogPaymentType.DELIVERY)
            .order_by("employee__full_name", "employee_id")
        )
        rows = OrderedDict()
        for log in logs:
            row = rows.setdefault(log.employee_id, {
                "employee": employee_brief(log.employee, request),
                "total_salary": 0,
                "work_log_count": 0,
            })
            row["total_salary"] += calculate_log_salary(log)
            row["work_log_count"] += 1

        return Response({
            "type": kind,
            "start_date": start,
            "end_date": end,
            "payroll": list(rows.values()),
        })


class EmployeeSummaryView(GenericAPIView):
    permission_classes = [IsAuthenticated, IsApprovedUser]

    def get(self, request, employee_id, *args, **kwargs):
        _require_self_or_admin(request, employee_id)
        employee = _get_employee(employee_id)

        params = request.query_params
        period = params.get("period", FIRST_HALF)
        if period not in (FIRST_HALF, SECOND_HALF, MONTHLY):
            raise ValidationError({"period": f"Use {FIRST_HALF}, {SECOND_HALF} or {MONTHLY}."})

        if params.get("month"):
            year, month = _parse_month(params["month"], "month")
        else:
            today = timezone.localdate()
            year, month = today.year, today.month
        start, end = half_month_bounds(year, month, period)

        logs = (
            WorkLog.objects.filter(employee=employee, work_date__range=(start, end))
            .exclude(payment_type_at_time=LogPaymentType.DELIVERY)
        )
        return Response({
            "employee": employee_brief(employee, request),
            "period": period,
            "start_date": start,
            "end_date": end,
            "total_salary": total_salary(logs),
            "work_log_count": len(logs),
        })


class PayrollListCreateView(ScopedMixin, ListCreateAPIView):
    permission_classes = [IsAuthenticated, IsApprovedUser]
    queryset = Payroll.objects.select_related("employee").prefetch_related("work_logs")

    def get_serializer_class(self):
        if self.request.method == "POST":
            return PayrollRunSerializer
        return PayrollSerializer

    def get_queryset(self):
        qs = super().get_queryset()
        employee = self.request.query_params.get("employee")
        if employee:
            qs = qs.filter(employee_id=employee)
        return qs

    def create(self, request, *args, **kwargs):
        _require_admin(request)
        ser = self.get_serializer(data=request.data)
        ser.is_valid(raise_exception=True)
        payroll = ser.save()
        return Response(PayrollSerializer(payroll).data, status=status.HTTP_201_CREATED)


class PayrollDetailView(ScopedMixin, RetrieveDestroyAPIView):
    serializer_class = PayrollSerializer
    permission_classes = [IsAuthenticated, IsApprovedUser]
    queryset = Payroll.objects.select_related("employee").prefetch_related("work_logs")

    def destroy(self, request, *args, **kwargs):
        _require_admin(request)
        payroll = self.get_object()

        with transaction.atomic():
            advance_ids = list(payroll.advance_settlements.values_list("advance_id", flat=True))
            payroll.advance_settlements.all().delete()
            for advance in Advance.objects.select_for_update().filter(id__in=advance_ids):
                advance.recalculate()

            payroll.work_logs.update(payment_status=PaymentStatus.UNPAID, payment_date=None, payroll=None)
            payroll.fines.update(status=FineStatus.PENDING, payroll=None)
            payroll_id = payroll.id
            payroll.delete()

        logger.info("Payroll %s reversed", payroll_id)
        return Response({"detail": "Payroll deleted and work logs reset to unpaid."})


# -----------------
# Advances
# -----------------

class AdvanceSummaryView(GenericAPIView):
    permission_classes = [IsAuthenticated, IsAdmin]

    def get(self, request, *args, **kwargs):
        advances = (
            Advance.objects.select_related("employee")
            .filter(status=AdvanceStatus.ONGOING)
            .order_by("employee__full_name", "employee_id", "date")
        )
        rows = OrderedDict()
        for advance in advances:
            row = rows.setdefault(advance.employee_id, {
                "employee": employee_brief(advance.employee, request),
                "total_balance": 0,
                "advance_count": 0,
                "last_date": advance.date,
            })
            row["total_balance"] += advance.balance
            row["advance_count"] += 1
            row["last_date"] = max(row["last_date"], advance.date)
        return Response(list(rows.values()))


class AdvanceListCreateView(ScopedMixin, ListCreateAPIView):
    serializer_class = AdvanceSerializer
    permission_classes = [IsAuthenticated, IsApprovedUser]
    queryset = Advance.objects.select_related("employee").prefetch_related("settlements")

    def create(self, request, *args, **kwargs):
        _require_admin(request)
        return super().create(request, *args, **kwargs)


class EmployeeAdvanceListView(ListAPIView):
    serializer_class = AdvanceSerializer
    permission_classes = [IsAuthenticated, IsApprovedUser]

    def get_queryset(self):
        employee_id = self.kwargs["employee_id"]
        _require_self_or_admin(self.request, employee_id)
        employee = _get_employee(employee_id)
        return (
            Advance.objects.select_related("employee")
            .prefetch_related("settlements")
            .filter(employee=employee)
        )


class AdvanceDetailView(ScopedMixin, RetrieveUpdateDestroyAPIView):
    serializer_class = AdvanceSerializer
    permission_classes = [IsAuthenticated, IsApprovedUser]
    queryset = Advance.objects.select_related("employee").prefetch_related("settlements")

    def update(self, request, *args, **kwargs):
        _require_admin(request)
        return super().update(request, *args, **kwargs)

    def destroy(self, request, *args, **kwargs):
        _require_admin(request)
        advance = self.get_object()
        if advance.settlements.filter(payroll__isnull=False).exists():
            raise ValidationError({"detail": "Advance has payroll deductions; delete those payrolls first."})
        advance.delete()
        return Response({"detail": "Advance deleted."})


class AdvanceSettleView(GenericAPIView):
    serializer_class = AdvanceSettleSerializer
    permission_classes = [IsAuthenticated, IsAdmin]

    def get_serializer_context(self):
        ctx = super().get_serializer_context()
        ctx["advance"] = get_object_or_404(Advance, pk=self.kwargs["pk"])
        return ctx

    def post(self, request, *args, **kwargs):
        ser = self.get_serializer(data=request.data)
        ser.is_valid(raise_exception=True)
        advance = ser.save()
        return Response(AdvanceSerializer(advance).data)


class AdvanceSettlementDetailView(RetrieveUpdateDestroyAPIView):
    serializer_class = AdvanceSettlementSerializer
    permission_classes = [IsAuthenticated, IsAdmin]

    def get_queryset(self):
        return AdvanceSettlement.objects.select_related("advance").filter(advance_id=self.kwargs["advance_id"])

    def update(self, request, *args, **kwargs):
        kwargs["partial"] = True
        return super().update(request, *args, **kwargs)

    def destroy(self, request, *args, **kwargs):
        settlement = self.get_object()
        if settlement.payroll_id:
            raise ValidationError({"detail": "Payroll deductions are changed by deleting the payroll."})
        advance = settlement.advance
        with transaction.atomic():
            settlement.delete()
            advance.recalculate()
        return Response(AdvanceSerializer(advance).data)


# -----------------
# Fines
# -----------------

class FineSummaryView(GenericAPIView):
    permission_classes = [IsAuthenticated, IsAdmin]

    def get(self, request, *args, **kwargs):
        totals = (
            Fine.objects.values("employee")
            .annotate(total_fines=Sum("amount"), last_date=Max("date"))
            .order_by("employee")
        )
        pending = dict(
            Fine.objects.filter(status=FineStatus.PENDING)
            .values("employee")
            .annotate(total=Sum("amount"))
            .values_list("employee", "total")
        )
        employees = User.objects.in_bulk([row["employee"] for row in totals])

        data = [
            {
                "employee": employee_brief(employees[row["employee"]], request),
                "total_fines": row["total_fines"],
                "pending_total": pending.get(row["employee"], 0),
                "last_date": row["last_date"],
            }
            for row in totals
        ]
        data.sort(key=lambda row: row["employee"]["full_name"])
        return Response(data)


class FineListCreateView(ScopedMixin, ListCreateAPIView):
    serializer_class = FineSerializer
    permission_classes = [IsAuthenticated, IsApprovedUser]
    queryset = Fine.objects.select_related("employee")

    def create(self, request, *args, **kwargs):
        _require_admin(request)
        return super().create(request, *args, **kwargs)


class EmployeeFineListView(ListAPIView):
    serializer_class = FineSerializer
    permission_classes = [IsAuthenticated, IsApprovedUser]

    def get_queryset(self):
        employee_id = self.kwargs["employee_id"]
        _require_self_or_admin(self.request, employee_id)
        return Fine.objects.select_related("employee").filter(employee=_get_employee(employee_id))


class FineDetailView(RetrieveUpdateDestroyAPIView):
    serializer_class = FineSerializer
    permission_classes = [IsAuthenticated, IsAdmin]
    queryset = Fine.objects.select_related("employee")

    def perform_destroy(self, instance):
        if instance.status == FineStatus.DEDUCTED:
            raise ValidationError({"detail": "Deducted fines cannot be deleted."})
        instance.delete()


# -----------------
# Remarks
# -----------------

class RemarkListCreateView(ListCreateAPIView):
    serializer_class = RemarkSerializer
    permission_classes = [IsAuthenticated, IsApprovedUser]

    def get_queryset(self):
        user_id = self.kwargs["user_id"]
        _require_self_or_admin(self.request, user_id)
        return Remark.objects.select_related("author").filter(employee_id=user_id)

    def create(self, request, *args, **kwargs):
        _require_admin(request)
        return super().create(request, *args, **kwargs)

    def perform_create(self, serializer):
        employee = get_object_or_404(User, pk=self.kwargs["user_id"])
        serializer.save(employee=employee, author=self.request.user)


class RemarkDetailView(RetrieveUpdateDestroyAPIView):
    serializer_class = RemarkSerializer
    permission_classes = [IsAuthenticated, IsAdmin]
    queryset = Remark.objects.select_related("author")
