"""
Social Assistance Allocation Service

Manages finite-capacity social assistance programs: program validity and
quota, recipient enrollment, verification and benefit distribution.
"""

__version__ = "1.0.0"
__author__ = "Social Assistance Team"
__description__ = "Quota allocation and recipient lifecycle for social assistance programs"
