from .adjustment import weekly_adjuster, compute_weekly_adjustment
from .calculator import nutrition_calculator
from .progress import progress_service
from .billing import billing_sweeps

__all__ = [
    'weekly_adjuster',
    'compute_weekly_adjustment',
    'nutrition_calculator',
    'progress_service',
    'billing_sweeps'
]
