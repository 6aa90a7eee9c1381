"""
ladderbot: ladder quoting with polled order-lifecycle reconciliation.
"""

__version__ = "0.3.0"
