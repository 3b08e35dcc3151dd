"""
E-Commerce Back-Office

Metrics and segmentation over a primary store with a spreadsheet-mirror
fallback, plus audited bulk operations for orders, customers and products.
"""

__version__ = "1.0.0"
