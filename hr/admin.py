from django.contrib import admin
from .models import Advance, AdvanceSettlement, Fine, MainCategory, Payroll, Remark, Subcategory, WorkLog


class SubcategoryInline(admin.TabularInline):
    model = Subcategory
    extra = 0


@admin.register(MainCategory)
class MainCategoryAdmin(admin.ModelAdmin):
    list_display = ("name", "created_at")
    search_fields = ("name",)
    inlines = [SubcategoryInline]


@admin.register(Subcategory)
class SubcategoryAdmin(admin.ModelAdmin):
    list_display = ("name", "main_category", "payment_type", "rate", "order")
    list_filter = ("main_category", "payment_type")
    search_fields = ("name",)


@admin.register(WorkLog)
class WorkLogAdmin(admin.ModelAdmin):
    list_display = ("employee", "work_date", "subcategory_name_at_time", "payment_type_at_time", "payment_status")
    list_filter = ("payment_status", "payment_type_at_time", "location")
    search_fields = ("employee__full_name", "employee__email", "subcategory_name_at_time")
    date_hierarchy = "work_date"


class AdvanceSettlementInline(admin.TabularInline):
    model = AdvanceSettlement
    extra = 0


@admin.register(Advance)
class AdvanceAdmin(admin.ModelAdmin):
    list_display = ("employee", "date", "amount", "paid_amount", "status")
    list_filter = ("status",)
    search_fields = ("employee__full_name", "employee__email")
    inlines = [AdvanceSettlementInline]


@admin.register(Fine)
class FineAdmin(admin.ModelAdmin):
    list_display = ("employee", "date", "amount", "status")
    list_filter = ("status",)
    search_fields = ("employee__full_name", "employee__email")


@admin.register(Payroll)
class PayrollAdmin(admin.ModelAdmin):
    list_display = ("employee", "start_date", "end_date", "gross_amount", "total_salary", "status")
    list_filter = ("status",)
    search_fields = ("employee__full_name", "employee__email")


@admin.register(Remark)
class RemarkAdmin(admin.ModelAdmin):
    list_display = ("employee", "author", "date")
    search_fields = ("employee__full_name", "text")
