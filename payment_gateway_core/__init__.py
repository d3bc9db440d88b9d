"""Mobile-money payment gateway integration and reconciliation core."""

__version__ = "0.1.0"
