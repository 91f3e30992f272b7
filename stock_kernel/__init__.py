"""
Stock Kernel

An append-only stock movement ledger with:
- Concurrency-safe, partitioned identifier allocation
- Luhn-checked batch and serial numbers with embedded metadata
- Soft-void compensating movements (nothing is ever deleted)
- A rebuildable stock-on-hand projection
"""

__version__ = "0.1.0"
