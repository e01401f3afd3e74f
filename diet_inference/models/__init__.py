from diet_inference.models.restaurant import Restaurant, MenuCategory, MenuItem
from diet_inference.models.diet import (
    Confidence,
    DietTag,
    DietInferenceResult,
    DietManualOverride,
    MenuItemDietOverride,
)

__all__ = [
    "Restaurant",
    "MenuCategory",
    "MenuItem",
    "Confidence",
    "DietTag",
    "DietInferenceResult",
    "DietManualOverride",
    "MenuItemDietOverride",
]
