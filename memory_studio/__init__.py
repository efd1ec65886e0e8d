"""
Memory Studio backend.
Face memory with similarity-based recognition, plus vision fine-tuning
dataset curation and job submission.
"""

__version__ = "0.1.0"
