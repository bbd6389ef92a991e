"""Synthetic cohort generation."""

from .generate_cohort_data import CohortDataGenerator, save_cohort

__all__ = ['CohortDataGenerator', 'save_cohort']
