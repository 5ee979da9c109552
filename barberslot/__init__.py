"""
Appointment slot computation and conflict-checked booking for a barber shop.
"""

__version__ = "0.1.0"
