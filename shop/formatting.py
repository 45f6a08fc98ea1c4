# shop/formatting.py
def format_vnd(amount) -> str:
    """12345678 -> '12.345.678 ₫' (vi-VN grouping, no minor unit)."""
    value = int(round(float(amount or 0)))
    sign = "-" if value < 0 else ""
    return f"{sign}{abs(value):,} ₫".replace(",", ".")
