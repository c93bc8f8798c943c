from django.urls import path
from hr.views import (
    AdvanceDetailView,
    AdvanceListCreateView,
    AdvanceSettlementDetailView,
    AdvanceSettleView,
    AdvanceSummaryView,
    AllWorkLogListView,
    CurrentPeriodSummaryView,
    CurrentSalaryView,
    DeliveryLogCreateView,
    EmployeeAdvanceListView,
    EmployeeFineListView,
    EmployeeSummaryView,
    FineDetailView,
    FineListCreateView,
    FineSummaryView,
    MainCategoryDetailView,
    MainCategoryListCreateView,
    MyWorkLogListView,
    PayrollDetailView,
    PayrollListCreateView,
    RemarkDetailView,
    RemarkListCreateView,
    SubcategoryDetailView,
    SubcategoryListCreateView,
    SubcategoryReorderView,
    WorkLogCreateView,
    WorkLogDetailView,
)

urlpatterns = [
    path("main-categories/", MainCategoryListCreateView.as_view(), name="main-category-list"),
    path("main-categories/<int:pk>/", MainCategoryDetailView.as_view(), name="main-category-detail"),
    path("subcategories/", SubcategoryListCreateView.as_view(), name="subcategory-list"),
    path("subcategories/reorder/", SubcategoryReorderView.as_view(), name="subcategory-reorder"),
    path("subcategories/<int:pk>/", SubcategoryDetailView.as_view(), name="subcategory-detail"),

    path("worklogs/", WorkLogCreateView.as_view(), name="worklog-create"),
    path("worklogs/delivery/", DeliveryLogCreateView.as_view(), name="worklog-delivery"),
    path("worklogs/all/", AllWorkLogListView.as_view(), name="worklog-all"),
    path("worklogs/my-logs/", MyWorkLogListView.as_view(), name="worklog-mine"),
    path("worklogs/current-salary/", CurrentSalaryView.as_view(), name="worklog-current-salary"),
    path("worklogs/<int:pk>/", WorkLogDetailView.as_view(), name="worklog-detail"),

    path("payroll/current-period-summary/", CurrentPeriodSummaryView.as_view(), name="payroll-current-summary"),
    path("payroll/employee-summary/<int:employee_id>/", EmployeeSummaryView.as_view(), name="payroll-employee-summary"),
    path("payroll/", PayrollListCreateView.as_view(), name="payroll-list"),
    path("payroll/<int:pk>/", PayrollDetailView.as_view(), name="payroll-detail"),

    path("advances/", AdvanceListCreateView.as_view(), name="advance-list"),
    path("advances/summary/", AdvanceSummaryView.as_view(), name="advance-summary"),
    path("advances/employee/<int:employee_id>/", EmployeeAdvanceListView.as_view(), name="advance-employee"),
    path("advances/<int:pk>/", AdvanceDetailView.as_view(), name="advance-detail"),
    path("advances/<int:pk>/settle/", AdvanceSettleView.as_view(), name="advance-settle"),
    path(
        "advances/<int:advance_id>/settlements/<int:pk>/",
        AdvanceSettlementDetailView.as_view(),
        name="advance-settlement-detail",
    ),

    path("fines/", FineListCreateView.as_view(), name="fine-list"),
    path("fines/summary/", FineSummaryView.as_view(), name="fine-summary"),
    path("fines/employee/<int:employee_id>/", EmployeeFineListView.as_view(), name="fine-employee"),
    path("fines/<int:pk>/", FineDetailView.as_view(), name="fine-detail"),

    path("users/<int:user_id>/remarks/", RemarkListCreateView.as_view(), name="remark-list"),
    path("remarks/<int:pk>/", RemarkDetailView.as_view(), name="remark-detail"),
]
