from django.db import models


class PaymentType(models.TextChoices):
    PER_PIECE = "perPiece", "Per piece"
    PER_DOZEN = "perDozen", "Per dozen"
    PER_HOUR = "perHour", "Per hour"
    PER_DAY = "perDay", "Per day"
    PER_VISS = "perViss", "Per viss"


class LogPaymentType(models.TextChoices):
    # Subcategory rate types plus delivery logs, which carry no pay.
    PER_PIECE = "perPiece", "Per piece"
    PER_DOZEN = "perDozen", "Per dozen"
    PER_HOUR = "perHour", "Per hour"
    PER_DAY = "perDay", "Per day"
    PER_VISS = "perViss", "Per viss"
    DELIVERY = "delivery", "Delivery"


class PaymentStatus(models.TextChoices):
    UNPAID = "unpaid", "Unpaid"
    PAID = "paid", "Paid"
    NA = "na", "Not applicable"


class WorkLocation(models.TextChoices):
    SHOP = "shop", "Shop"
    FACTORY = "factory", "Factory"
    NA = "na", "N/A"


class AdvanceStatus(models.TextChoices):
    ONGOING = "Ongoing", "Ongoing"
    SETTLED = "Settled", "Settled"


class SettlementType(models.TextChoices):
    PARTIAL = "Partial", "Partial"
    FULL = "Full", "Full"


class FineStatus(models.TextChoices):
    PENDING = "Pending", "Pending"
    DEDUCTED = "Deducted", "Deducted"


class PayrollStatus(models.TextChoices):
    PENDING = "Pending", "Pending"
    PAID = "Paid", "Paid"
