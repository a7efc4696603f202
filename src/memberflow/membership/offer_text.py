"""Bilingual retention offer copy.

Pure functions of the offer parameters; the same inputs always produce
the same title and description.
"""

from __future__ import annotations

from decimal import Decimal

from memberflow.core.money import LocalizedText, Money


def _format_number(value: Decimal | int) -> str:
    value = Decimal(value)
    if value == value.to_integral_value():
        return str(int(value))
    return f"{value.normalize():f}"


def free_freeze_text(freeze_days: int) -> tuple[LocalizedText, LocalizedText]:
    title = LocalizedText(en="Take a Break", ar="خذ استراحة")
    description = LocalizedText(
        en=f"Get {freeze_days} FREE freeze days to pause your membership",
        ar=f"احصل على {freeze_days} يوم تجميد مجاني لإيقاف عضويتك مؤقتاً",
    )
    return title, description


def discount_text(percentage: Decimal, months: int) -> tuple[LocalizedText, LocalizedText]:
    pct = _format_number(percentage)
    title = LocalizedText(en="Loyalty Discount", ar="خصم الولاء")
    description = LocalizedText(
        en=f"{pct}% off your next {months} months",
        ar=f"خصم {pct}% على الأشهر الـ {months} القادمة",
    )
    return title, description


def credit_text(amount: Money) -> tuple[LocalizedText, LocalizedText]:
    value = amount.to_string()
    title = LocalizedText(en="Account Credit", ar="رصيد في حسابك")
    description = LocalizedText(
        en=f"Get {amount.currency} {value} credited to your wallet",
        ar=f"احصل على {value} {amount.currency} رصيداً في محفظتك",
    )
    return title, description


def downgrade_text(plan_name: LocalizedText, price: Money) -> tuple[LocalizedText, LocalizedText]:
    name_en = plan_name.get("en")
    name_ar = plan_name.get("ar")
    value = price.to_string()
    title = LocalizedText(en=f"Try {name_en}", ar=f"جرب {name_ar}")
    description = LocalizedText(
        en=f"Switch to {name_en} at {price.currency} {value}/month",
        ar=f"انتقل إلى {name_ar} بسعر {value} {price.currency}/شهرياً",
    )
    return title, description


def extension_text(extra_days: int) -> tuple[LocalizedText, LocalizedText]:
    title = LocalizedText(en="Extra Days On Us", ar="أيام إضافية مجاناً")
    description = LocalizedText(
        en=f"Get {extra_days} extra days added to your membership",
        ar=f"احصل على {extra_days} يوم إضافي في عضويتك",
    )
    return title, description


def personal_training_text(sessions: int) -> tuple[LocalizedText, LocalizedText]:
    title = LocalizedText(en="Free Personal Training", ar="تدريب شخصي مجاني")
    description = LocalizedText(
        en=f"Get {sessions} free personal training sessions",
        ar=f"احصل على {sessions} جلسات تدريب شخصي مجانية",
    )
    return title, description
