"""
                FoodHub Ordering Backend

Order lifecycle, payment session reconciliation and push notification
fan-out for a multi-restaurant food ordering platform.

Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
